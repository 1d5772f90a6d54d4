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
FastAPI dependencies for the HTTP interface.
"""

import logging

from fastapi import Depends, HTTPException

from ..config import settings
from ..errors import InvalidInputError
from ..models.validators import validate_user_namespace
from ..services.aggregator import CrossNamespaceAggregator
from ..services.enhanced_search import EnhancedSearch
from ..services.memory_service import MemoryService
from ..storage.factory import StorageBackends

logger = logging.getLogger(__name__)

# Global storage backends, set by the app lifespan
_storage: StorageBackends | None = None


def set_storage(storage: StorageBackends | None) -> None:
    global _storage
    _storage = storage


def get_storage() -> StorageBackends:
    """Get the global storage backends."""
    if _storage is None:
        raise HTTPException(status_code=503, detail="Storage not initialized")
    return _storage


def get_memory_service(storage: StorageBackends = Depends(get_storage)) -> MemoryService:
    return MemoryService(
        storage.embedder,
        storage.vector_index,
        storage.record_store,
        search_settings=settings.search,
    )


def get_aggregator(memory_service: MemoryService = Depends(get_memory_service)) -> CrossNamespaceAggregator:
    return CrossNamespaceAggregator(memory_service)


def get_enhanced_search(memory_service: MemoryService = Depends(get_memory_service)) -> EnhancedSearch:
    return EnhancedSearch(memory_service, session_settings=settings.session)


def resolve_namespace(namespace: str | None) -> str:
    """Apply the bound default and reject malformed or reserved namespaces."""
    try:
        return validate_user_namespace(namespace or settings.default_namespace)
    except ValueError as e:
        raise InvalidInputError(str(e)) from e
