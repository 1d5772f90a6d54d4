# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Namespace and search endpoints for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ...models.memory import NamespaceResults
from ...services.aggregator import CrossNamespaceAggregator
from ...services.enhanced_search import EnhancedSearch
from ...services.memory_service import MemoryService
from ..dependencies import get_aggregator, get_enhanced_search, get_memory_service, resolve_namespace

router = APIRouter()
logger = logging.getLogger(__name__)


class NamespaceListResponse(BaseModel):
    users: list[str]
    projects: list[str]
    all: bool


class NamespaceDeleteResponse(BaseModel):
    success: bool
    deleted: int
    message: str


class SearchRequest(BaseModel):
    """Cross-namespace search; without ``namespaces`` every active namespace is searched."""

    query: str = Field(..., description="Search text")
    namespaces: list[str] | None = Field(None, description="Restrict the search to these namespaces")
    limit: int = Field(10, ge=1, le=100)


class SearchResponse(BaseModel):
    success: bool
    query: str
    results: list[NamespaceResults]


class EnhancedSearchRequest(BaseModel):
    query: str
    namespace: str | None = None
    session_id: str | None = None
    limit: int = Field(10, ge=1, le=100)


@router.get("/namespaces", response_model=NamespaceListResponse, tags=["namespaces"])
async def list_namespaces(memory_service: MemoryService = Depends(get_memory_service)):
    listing = await memory_service.list_namespaces()
    return NamespaceListResponse(**listing.model_dump())


@router.delete("/namespaces/{namespace}", response_model=NamespaceDeleteResponse, tags=["namespaces"])
async def delete_namespace(namespace: str, memory_service: MemoryService = Depends(get_memory_service)):
    namespace = resolve_namespace(namespace)
    deleted = await memory_service.delete_namespace(namespace)
    return NamespaceDeleteResponse(
        success=True,
        deleted=deleted,
        message=f"Namespace {namespace} deleted with {deleted} memories",
    )


@router.post("/search", response_model=SearchResponse, tags=["search"])
async def search(request: SearchRequest, aggregator: CrossNamespaceAggregator = Depends(get_aggregator)):
    namespaces = [resolve_namespace(ns) for ns in request.namespaces] if request.namespaces else None
    results = await aggregator.search_all(request.query, limit=request.limit, namespaces=namespaces)
    return SearchResponse(success=True, query=request.query, results=results)


@router.post("/enhanced-search", tags=["search"])
async def enhanced_search(
    request: EnhancedSearchRequest,
    pipeline: EnhancedSearch = Depends(get_enhanced_search),
) -> dict[str, Any]:
    """Expanded, session-aware search within one namespace."""
    namespace = resolve_namespace(request.namespace)
    result = await pipeline.search(request.query, namespace, session_id=request.session_id, limit=request.limit)
    return {"success": True, "namespace": namespace, **result.to_dict()}
