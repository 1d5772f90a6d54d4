"""MCP tool input models.

Each MCP tool validates its arguments by constructing the corresponding
model; required fields, namespace syntax and range limits live here as
declarative constraints.  ``namespace`` is optional everywhere it is a
target: the server substitutes its bound default when it is omitted.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from .validators import Namespace, NonEmptyText, SearchLimit, Tags


class AddMemoryParams(BaseModel):
    """Validated input for the ``add_memory`` MCP tool."""

    content: NonEmptyText
    namespace: Namespace | None = None
    tags: Tags = []
    metadata: dict[str, Any] | None = None
    auto_categorize: bool = False


class SearchMemoryParams(BaseModel):
    """Validated input for the ``search_memory`` MCP tool."""

    query: NonEmptyText
    namespace: Namespace | None = None
    limit: SearchLimit = 10


class SearchAllParams(BaseModel):
    query: NonEmptyText
    limit: SearchLimit = 10


class UpdateMemoryParams(BaseModel):
    memory_id: str = Field(min_length=1)
    content: NonEmptyText
    namespace: Namespace | None = None


class DeleteMemoryParams(BaseModel):
    memory_id: str = Field(min_length=1)
    namespace: Namespace | None = None


class BulkDeleteParams(BaseModel):
    memory_ids: list[str] = Field(min_length=1)
    namespace: Namespace | None = None


class DeleteNamespaceParams(BaseModel):
    """Validated input for ``delete_namespace``; the namespace is always explicit."""

    namespace: Namespace


class EnhancedSearchParams(BaseModel):
    query: NonEmptyText
    namespace: Namespace | None = None
    session_id: str | None = None
    limit: SearchLimit = 10


class QueryExpansionParams(BaseModel):
    """Validated input for the ``learn_query_expansion`` MCP tool."""

    query: NonEmptyText
    related_queries: list[str] = Field(min_length=1)


class PreferenceParams(BaseModel):
    content: NonEmptyText


class SessionSummaryParams(BaseModel):
    session_id: str = Field(min_length=1)


class ProcedureStepParams(BaseModel):
    order: int = Field(ge=0)
    action: NonEmptyText
    command: str | None = None
    expected_result: str | None = None
    error_handling: str | None = None
    notes: str | None = None


class RememberHowToParams(BaseModel):
    """Validated input for the ``remember_how_to`` MCP tool."""

    title: NonEmptyText
    steps: list[ProcedureStepParams] = Field(min_length=1)
    description: str = ""
    category: str | None = None
    tags: Tags = []
    prerequisites: list[str] = []
    success_criteria: str | None = None
    troubleshooting: dict[str, str] = {}


class FindHowToParams(BaseModel):
    query: NonEmptyText
    category: str | None = None
    limit: SearchLimit = 10


class ProcedureIdParams(BaseModel):
    procedure_id: str = Field(min_length=1)
