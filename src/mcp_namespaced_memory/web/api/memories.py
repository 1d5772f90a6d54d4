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
Memory CRUD endpoints for the HTTP interface.

Service errors propagate to the handlers registered in ``web.app``:
``NotFoundError`` becomes 404 and ``InvalidInputError`` 400.
"""

import logging
import math
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...config import GLOBAL_NAMESPACE
from ...services.categorize import enhanced_store
from ...services.memory_service import MemoryService
from ..dependencies import get_memory_service, resolve_namespace

router = APIRouter()
logger = logging.getLogger(__name__)

BULK_MAX = 100


# Request/Response Models
class MemoryCreateRequest(BaseModel):
    """Request model for creating a new memory."""

    content: str = Field(..., description="The memory content to store")
    namespace: str | None = Field(None, description="Target namespace; defaults to the server namespace")
    tags: list[str] = Field(default=[], description="Hashtags stored with the memory")
    metadata: dict[str, Any] = Field(default={}, description="Additional metadata for the memory")
    auto_categorize: bool = Field(False, description="Derive category and language tags")


class MemoryCreateResponse(BaseModel):
    success: bool
    id: str
    namespace: str
    message: str


class MemoryUpdateRequest(BaseModel):
    content: str = Field(..., description="Replacement content")
    namespace: str | None = None


class MemoryResponse(BaseModel):
    """Response model for memory data."""

    id: str
    namespace: str
    content: str
    created_at: str | None
    updated_at: str | None


class MemoryUpdateResponse(BaseModel):
    success: bool
    message: str
    memory: MemoryResponse


class MemoryDeleteResponse(BaseModel):
    success: bool
    message: str


class BulkDeleteRequest(BaseModel):
    """Request model for deleting several memories in one namespace."""

    memory_ids: list[str] = Field(..., min_length=1, max_length=BULK_MAX)
    namespace: str | None = None


class BulkDeleteResponse(BaseModel):
    success: bool
    deleted: int
    message: str


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class MemoryListResponse(BaseModel):
    """Response model for a page of memories in one namespace."""

    success: bool
    memories: list[MemoryResponse]
    namespace: str
    pagination: Pagination


async def _list_page(memory_service: MemoryService, namespace: str, page: int, limit: int) -> MemoryListResponse:
    records, total = await memory_service.list_memories(namespace, page=page, limit=limit)
    return MemoryListResponse(
        success=True,
        memories=[MemoryResponse(**r.to_api_dict()) for r in records],
        namespace=namespace,
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
    )


@router.post("/memories", response_model=MemoryCreateResponse, tags=["memories"])
async def store_memory(
    request: MemoryCreateRequest,
    memory_service: MemoryService = Depends(get_memory_service),
):
    """Store a new memory."""
    namespace = resolve_namespace(request.namespace)
    metadata = dict(request.metadata)
    if request.tags:
        metadata["tags"] = request.tags

    if request.auto_categorize:
        memory_id, _ = await enhanced_store(memory_service, request.content, namespace, metadata)
    else:
        memory_id = await memory_service.store(request.content, namespace, metadata=metadata)

    return MemoryCreateResponse(
        success=True,
        id=memory_id,
        namespace=namespace,
        message=f"Remembered in {namespace}: {request.content}",
    )


@router.post("/memories/bulk-delete", response_model=BulkDeleteResponse, tags=["memories"])
async def bulk_delete_memories(
    request: BulkDeleteRequest,
    memory_service: MemoryService = Depends(get_memory_service),
):
    namespace = resolve_namespace(request.namespace)
    deleted = await memory_service.bulk_delete(request.memory_ids, namespace)
    return BulkDeleteResponse(
        success=True,
        deleted=deleted,
        message=f"Bulk delete completed in {namespace}: {deleted} memories deleted successfully",
    )


@router.put("/memories/{memory_id}", response_model=MemoryUpdateResponse, tags=["memories"])
async def update_memory(
    memory_id: str,
    request: MemoryUpdateRequest,
    memory_service: MemoryService = Depends(get_memory_service),
):
    """Replace a memory's content; the id stays the same."""
    namespace = resolve_namespace(request.namespace)
    record = await memory_service.update(memory_id, namespace, request.content)
    return MemoryUpdateResponse(
        success=True,
        message=f"Memory {memory_id} updated in {namespace}",
        memory=MemoryResponse(**record.to_api_dict()),
    )


@router.delete("/memories/{memory_id}", response_model=MemoryDeleteResponse, tags=["memories"])
async def delete_memory(
    memory_id: str,
    namespace: str | None = Query(None),
    memory_service: MemoryService = Depends(get_memory_service),
):
    namespace = resolve_namespace(namespace)
    await memory_service.delete(memory_id, namespace)
    return MemoryDeleteResponse(success=True, message=f"Memory {memory_id} deleted from {namespace}")


@router.get("/all/memories", response_model=MemoryListResponse, tags=["memories"])
async def list_global_memories(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """List memories in the global ``all`` namespace, newest first."""
    return await _list_page(memory_service, GLOBAL_NAMESPACE, page, limit)


@router.get("/{namespace_type}/{identifier}/memories", response_model=MemoryListResponse, tags=["memories"])
async def list_memories(
    namespace_type: Literal["user", "project"],
    identifier: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    memory_service: MemoryService = Depends(get_memory_service),
):
    """List memories in ``user:<id>`` or ``project:<id>``, newest first."""
    namespace = resolve_namespace(f"{namespace_type}:{identifier}")
    return await _list_page(memory_service, namespace, page, limit)
