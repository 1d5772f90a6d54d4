#!/usr/bin/env python3
"""FastMCP server for MCP Namespaced Memory.

Tools validate their arguments with the pydantic models in
``models.mcp_inputs``, resolve an omitted namespace to the server's bound
default, and always answer with a dict: ``success`` plus either a
human-readable ``message`` with structured data, or an ``error``.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .config import SERVICE_NAME, settings
from .errors import MemoryServiceError
from .models.mcp_inputs import (
    AddMemoryParams,
    BulkDeleteParams,
    DeleteMemoryParams,
    DeleteNamespaceParams,
    EnhancedSearchParams,
    FindHowToParams,
    PreferenceParams,
    ProcedureIdParams,
    QueryExpansionParams,
    RememberHowToParams,
    SearchAllParams,
    SearchMemoryParams,
    SessionSummaryParams,
    UpdateMemoryParams,
)
from .models.memory import MemoryMatch, NamespaceResults
from .models.procedure import Procedure, ProcedureStep
from .services.aggregator import CrossNamespaceAggregator
from .services.categorize import enhanced_store
from .services.enhanced_search import EnhancedSearch
from .services.memory_service import MemoryService
from .services.procedures import ProcedureLibrary
from .services.query_expansion import QueryExpander
from .services.relevance_scoring import RelevanceScorer
from .services.session_context import SessionContext
from .storage.factory import StorageBackends

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context shared by every tool call."""

    backends: StorageBackends
    memory_service: MemoryService
    aggregator: CrossNamespaceAggregator
    expander: QueryExpander
    scorer: RelevanceScorer
    enhanced_search: EnhancedSearch
    procedures: ProcedureLibrary


def build_server_context(backends: StorageBackends) -> MCPServerContext:
    memory_service = MemoryService(
        backends.embedder,
        backends.vector_index,
        backends.record_store,
        search_settings=settings.search,
    )
    expander = QueryExpander(memory_service)
    scorer = RelevanceScorer(memory_service)
    return MCPServerContext(
        backends=backends,
        memory_service=memory_service,
        aggregator=CrossNamespaceAggregator(memory_service),
        expander=expander,
        scorer=scorer,
        enhanced_search=EnhancedSearch(memory_service, expander, scorer, settings.session),
        procedures=ProcedureLibrary(memory_service),
    )


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Initialize the shared storage on start and release it on shutdown."""
    from .shared_storage import close_shared_storage, get_shared_storage, is_storage_initialized

    owns_storage = not is_storage_initialized()
    if owns_storage:
        logger.info("No shared storage found, initializing new instance (standalone mode)")
    backends = await get_shared_storage()

    context = build_server_context(backends)
    try:
        purged = await SessionContext.purge_expired(backends.record_store, settings.session)
        if purged:
            logger.info(f"Purged {purged} expired sessions")
    except Exception as e:
        logger.warning(f"Session purge failed (non-fatal): {e}")

    try:
        yield context
    finally:
        await context.enhanced_search.drain()
        if owns_storage:
            logger.info("Shutting down MCP Namespaced Memory components...")
            await close_shared_storage()


mcp = FastMCP(SERVICE_NAME, lifespan=mcp_server_lifespan)


def _context(ctx: Context) -> MCPServerContext:
    return ctx.request_context.lifespan_context


def _namespace(namespace: str | None) -> str:
    return namespace or settings.default_namespace


def _failure(operation: str, e: Exception) -> dict[str, Any]:
    if isinstance(e, MemoryServiceError):
        logger.info(f"{operation} rejected: {e}")
    else:
        logger.error(f"{operation} failed: {e}")
    return {"success": False, "error": str(e)}


def format_match(match: MemoryMatch) -> str:
    line = f"{match.content} (score: {match.score:.4f})"
    created_at = match.metadata.get("created_at")
    if isinstance(created_at, str) and "T" in created_at:
        line += f" [{created_at.split('T')[0]}]"
    return line


def format_namespace_results(results: list[NamespaceResults]) -> str:
    if not results:
        return "No relevant memories found across any namespace."
    sections = [
        f"\nIn {group.namespace}:\n" + "\n".join(f"{m.content} (score: {m.score:.4f})" for m in group.memories)
        for group in results
    ]
    return "Found memories across all namespaces:\n" + "\n".join(sections)


# =============================================================================
# CORE MEMORY OPERATIONS
# =============================================================================


@mcp.tool()
async def add_memory(
    content: str,
    ctx: Context,
    namespace: str | None = None,
    tags: str | list[str] | None = None,
    metadata: dict[str, Any] | None = None,
    auto_categorize: bool = False,
) -> dict[str, Any]:
    """Remember a piece of information in a namespace.

    Args:
        content: Text to remember (embedded for semantic search)
        namespace: "user:<id>", "project:<id>" or "all"; defaults to the server namespace
        tags: Labels, as ["#a", "#b"] or "#a,#b"
        metadata: Extra attributes stored alongside the vector
        auto_categorize: Derive category/language tags and learn query expansions

    Returns:
        {success, id, namespace, message}
    """
    try:
        params = AddMemoryParams(
            content=content, namespace=namespace, tags=tags, metadata=metadata, auto_categorize=auto_categorize
        )
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    app = _context(ctx)
    target = _namespace(params.namespace)
    extra = dict(params.metadata or {})
    if params.tags:
        extra["tags"] = params.tags

    try:
        if params.auto_categorize:
            memory_id, categorization = await enhanced_store(
                app.memory_service, params.content, target, extra, expander=app.expander
            )
            extra_fields = {"categorization": categorization.to_dict()}
        else:
            memory_id = await app.memory_service.store(params.content, target, metadata=extra)
            extra_fields = {}
    except Exception as e:
        return _failure("add_memory", e)

    return {
        "success": True,
        "id": memory_id,
        "namespace": target,
        "message": f"Remembered in {target}: {params.content}",
        **extra_fields,
    }


@mcp.tool()
async def search_memory(
    query: str,
    ctx: Context,
    namespace: str | None = None,
    limit: int = 10,
) -> dict[str, Any]:
    """Semantic search within one namespace.

    Only matches scoring above the similarity threshold are returned, best
    first.

    Returns:
        {success, namespace, results: [{id, content, score, metadata}], message}
    """
    try:
        params = SearchMemoryParams(query=query, namespace=namespace, limit=limit)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    target = _namespace(params.namespace)
    try:
        matches = await _context(ctx).memory_service.search(params.query, target, limit=params.limit)
    except Exception as e:
        return _failure("search_memory", e)

    if matches:
        message = f"Found memories in {target}:\n" + "\n".join(format_match(m) for m in matches)
    else:
        message = f"No relevant memories found in {target}."
    return {
        "success": True,
        "namespace": target,
        "results": [m.model_dump() for m in matches],
        "message": message,
    }


@mcp.tool()
async def search_all_memories(query: str, ctx: Context, limit: int = 10) -> dict[str, Any]:
    """Search every namespace and group the matches by namespace.

    Returns:
        {success, results: [{namespace, memories: [{content, score}]}], message}
    """
    try:
        params = SearchAllParams(query=query, limit=limit)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        results = await _context(ctx).aggregator.search_all(params.query, limit=params.limit)
    except Exception as e:
        return _failure("search_all_memories", e)

    return {
        "success": True,
        "results": [r.model_dump() for r in results],
        "message": format_namespace_results(results),
    }


@mcp.tool()
async def update_memory(
    memory_id: str,
    content: str,
    ctx: Context,
    namespace: str | None = None,
) -> dict[str, Any]:
    """Replace the content of an existing memory, keeping its id."""
    try:
        params = UpdateMemoryParams(memory_id=memory_id, content=content, namespace=namespace)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    target = _namespace(params.namespace)
    try:
        record = await _context(ctx).memory_service.update(params.memory_id, target, params.content)
    except Exception as e:
        return _failure("update_memory", e)

    return {
        "success": True,
        "memory": record.to_api_dict(),
        "message": f"Memory {params.memory_id} updated in {target}",
    }


@mcp.tool()
async def delete_memory(memory_id: str, ctx: Context, namespace: str | None = None) -> dict[str, Any]:
    """Delete one memory from a namespace.

    The record is soft-deleted and never appears in searches again.
    """
    try:
        params = DeleteMemoryParams(memory_id=memory_id, namespace=namespace)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    target = _namespace(params.namespace)
    try:
        await _context(ctx).memory_service.delete(params.memory_id, target)
    except Exception as e:
        return _failure("delete_memory", e)

    return {"success": True, "message": f"Memory {params.memory_id} deleted from {target}"}


@mcp.tool()
async def bulk_delete_memories(
    memory_ids: list[str],
    ctx: Context,
    namespace: str | None = None,
) -> dict[str, Any]:
    """Delete several memories from one namespace; unknown ids are skipped."""
    try:
        params = BulkDeleteParams(memory_ids=memory_ids, namespace=namespace)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    target = _namespace(params.namespace)
    try:
        deleted = await _context(ctx).memory_service.bulk_delete(params.memory_ids, target)
    except Exception as e:
        return _failure("bulk_delete_memories", e)

    return {
        "success": True,
        "deleted": deleted,
        "message": f"Bulk delete completed in {target}: {deleted} memories deleted successfully",
    }


@mcp.tool()
async def delete_namespace(namespace: str, ctx: Context) -> dict[str, Any]:
    """Delete every memory in a namespace. Returns how many were deleted."""
    try:
        params = DeleteNamespaceParams(namespace=namespace)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        deleted = await _context(ctx).memory_service.delete_namespace(params.namespace)
    except Exception as e:
        return _failure("delete_namespace", e)

    return {
        "success": True,
        "deleted": deleted,
        "message": f"Namespace {params.namespace} deleted with {deleted} memories",
    }


@mcp.tool()
async def list_namespaces(ctx: Context) -> dict[str, Any]:
    """List known user and project namespaces.

    Returns:
        {success, users: [id], projects: [id], all: bool}
    """
    try:
        listing = await _context(ctx).memory_service.list_namespaces()
    except Exception as e:
        return _failure("list_namespaces", e)
    return {"success": True, **listing.model_dump()}


@mcp.tool()
async def check_database_health(ctx: Context) -> dict[str, Any]:
    """Check record store connectivity."""
    result = await _context(ctx).memory_service.check_health()
    return {"success": result["healthy"], **result}


# =============================================================================
# SEARCH ENRICHMENT
# =============================================================================


@mcp.tool()
async def enhanced_search(
    query: str,
    ctx: Context,
    namespace: str | None = None,
    session_id: str | None = None,
    limit: int = 10,
) -> dict[str, Any]:
    """Search with query expansion, relevance boosts and session tracking.

    Pass a caller-chosen ``session_id`` to track the search; it is created on
    first use, and its recent searches influence ranking on later calls.
    Without one the search is untracked.

    Returns:
        {success, results, expanded_queries, suggested_searches, session_id}
    """
    try:
        params = EnhancedSearchParams(query=query, namespace=namespace, session_id=session_id, limit=limit)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    target = _namespace(params.namespace)
    try:
        result = await _context(ctx).enhanced_search.search(
            params.query, target, session_id=params.session_id, limit=params.limit
        )
    except Exception as e:
        return _failure("enhanced_search", e)

    return {"success": True, "namespace": target, **result.to_dict()}


@mcp.tool()
async def learn_query_expansion(query: str, related_queries: list[str], ctx: Context) -> dict[str, Any]:
    """Teach the server that ``query`` should also search ``related_queries``."""
    try:
        params = QueryExpansionParams(query=query, related_queries=related_queries)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        expansion_id = await _context(ctx).expander.store_expansion(params.query, params.related_queries)
    except Exception as e:
        return _failure("learn_query_expansion", e)

    return {
        "success": True,
        "id": expansion_id,
        "message": f"Learned {len(params.related_queries)} related queries for '{params.query}'",
    }


@mcp.tool()
async def record_preference(content: str, ctx: Context) -> dict[str, Any]:
    """Record a user preference; memories similar to it rank higher later."""
    try:
        params = PreferenceParams(content=content)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        preference_id = await _context(ctx).scorer.record_preference(params.content)
    except Exception as e:
        return _failure("record_preference", e)

    return {"success": True, "id": preference_id, "message": f"Preference recorded: {params.content}"}


@mcp.tool()
async def session_summary(session_id: str, ctx: Context) -> dict[str, Any]:
    """Summarise a search session: duration, searches, views and suggested topics."""
    try:
        params = SessionSummaryParams(session_id=session_id)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        session = await SessionContext.load(_context(ctx).backends.record_store, params.session_id, settings.session)
    except Exception as e:
        return _failure("session_summary", e)

    if session is None:
        return {"success": False, "error": f"Session {params.session_id} not found or expired"}
    return {"success": True, **session.get_session_summary()}


# =============================================================================
# PROCEDURES
# =============================================================================


def format_procedure(procedure: Procedure) -> str:
    lines = []
    for step in procedure.steps:
        line = f"{step.order}. {step.action}"
        if step.command:
            line += f"\n   Command: {step.command}"
        if step.expected_result:
            line += f"\n   Expected: {step.expected_result}"
        lines.append(line)
    text = f"**{procedure.title}**\n{procedure.description}\n\nSteps:\n" + "\n".join(lines) + "\n"
    if procedure.success_criteria:
        text += f"\nSuccess: {procedure.success_criteria}\n"
    return text


def format_capabilities(capabilities: list[dict[str, str]]) -> str:
    if not capabilities:
        return "No capabilities stored yet."
    grouped: dict[str, list[dict[str, str]]] = {}
    for capability in capabilities:
        grouped.setdefault(capability["category"], []).append(capability)
    sections = [
        f"**{category}**\n" + "\n".join(f"- {c['title']}: {c['description']}" for c in items)
        for category, items in grouped.items()
    ]
    return f"I know how to do {len(capabilities)} things:\n\n" + "\n\n".join(sections)


@mcp.tool()
async def remember_how_to(
    title: str,
    steps: list[dict[str, Any]],
    ctx: Context,
    description: str = "",
    category: str | None = None,
    tags: str | list[str] | None = None,
    prerequisites: list[str] | None = None,
    success_criteria: str | None = None,
    troubleshooting: dict[str, str] | None = None,
) -> dict[str, Any]:
    """Remember step-by-step instructions for completing a task.

    Args:
        title: What the procedure accomplishes
        steps: [{order, action, command?, expected_result?, error_handling?, notes?}]
        description: Longer explanation of the procedure
        category: e.g. "mcp-setup", "debugging"; detected when omitted
        tags: Labels for discovery; detected tags are merged in when omitted
        prerequisites: What must be in place before starting
        success_criteria: How to verify the procedure worked
        troubleshooting: Problem to remedy mapping

    Returns:
        {success, id, procedure, message}
    """
    try:
        params = RememberHowToParams(
            title=title,
            steps=steps,
            description=description,
            category=category,
            tags=tags,
            prerequisites=prerequisites or [],
            success_criteria=success_criteria,
            troubleshooting=troubleshooting or {},
        )
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        procedure = await _context(ctx).procedures.remember(
            params.title,
            [ProcedureStep(**s.model_dump()) for s in params.steps],
            description=params.description,
            category=params.category,
            tags=params.tags,
            prerequisites=params.prerequisites,
            success_criteria=params.success_criteria,
            troubleshooting=params.troubleshooting,
        )
    except Exception as e:
        return _failure("remember_how_to", e)

    return {
        "success": True,
        "id": procedure.id,
        "procedure": procedure.to_dict(),
        "message": f"Remembered how to: {procedure.title}\nID: {procedure.id}\nSteps: {len(procedure.steps)}",
    }


@mcp.tool()
async def find_how_to(query: str, ctx: Context, category: str | None = None, limit: int = 10) -> dict[str, Any]:
    """Find remembered procedures for a task.

    Returns:
        {success, procedures, message}
    """
    try:
        params = FindHowToParams(query=query, category=category, limit=limit)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        procedures = await _context(ctx).procedures.find(params.query, category=params.category, limit=params.limit)
    except Exception as e:
        return _failure("find_how_to", e)

    if procedures:
        message = f"Found {len(procedures)} procedure(s):\n\n" + "\n---\n".join(format_procedure(p) for p in procedures)
    else:
        message = "No procedures found for that query."
    return {"success": True, "procedures": [p.to_dict() for p in procedures], "message": message}


@mcp.tool()
async def get_how_to(procedure_id: str, ctx: Context) -> dict[str, Any]:
    """Fetch one remembered procedure by id."""
    try:
        params = ProcedureIdParams(procedure_id=procedure_id)
    except ValidationError as e:
        return {"success": False, "error": str(e)}

    try:
        procedure = await _context(ctx).procedures.get(params.procedure_id)
    except Exception as e:
        return _failure("get_how_to", e)

    if procedure is None:
        return {"success": False, "error": f"Procedure {params.procedure_id} not found"}
    return {"success": True, "procedure": procedure.to_dict(), "message": format_procedure(procedure)}


@mcp.tool()
async def list_capabilities(ctx: Context, category: str | None = None) -> dict[str, Any]:
    """List every remembered procedure, grouped by category in the message.

    Returns:
        {success, capabilities: [{id, title, description, category}], message}
    """
    try:
        capabilities = await _context(ctx).procedures.list_capabilities(category=category or None)
    except Exception as e:
        return _failure("list_capabilities", e)
    return {"success": True, "capabilities": capabilities, "message": format_capabilities(capabilities)}


def main():
    """Main entry point for the MCP server."""
    port = int(os.getenv("MCP_SERVER_PORT", "8000"))
    host = os.getenv("MCP_SERVER_HOST", "0.0.0.0")
    transport_mode = os.getenv("MCP_TRANSPORT_MODE", "http")

    logger.info(f"Starting {SERVICE_NAME} (default namespace: {settings.default_namespace})")

    if transport_mode == "stdio":
        mcp.run(transport="stdio")
    else:
        logger.info(f"Listening on {host}:{port}")
        mcp.run(transport="http", host=host, port=port, stateless_http=True)


if __name__ == "__main__":
    main()
