"""Tests for remembered procedures."""

import json

import pytest

from mcp_namespaced_memory.config import PROCEDURES_NAMESPACE
from mcp_namespaced_memory.errors import InvalidInputError
from mcp_namespaced_memory.models.procedure import Procedure, ProcedureStep
from mcp_namespaced_memory.services.procedures import ProcedureLibrary, searchable_content


def _steps(*orders: int) -> list[ProcedureStep]:
    return [ProcedureStep(order=o, action=f"step {o}") for o in orders]


@pytest.fixture
def library(memory_service):
    return ProcedureLibrary(memory_service)


class TestSearchableContent:
    def test_includes_title_tags_and_steps(self):
        procedure = Procedure(
            id="p1",
            title="Rotate logs",
            steps=[ProcedureStep(order=1, action="stop the agent", command="systemctl stop agent")],
            created_at="2024-01-01T00:00:00+00:00",
            tags=["#ops"],
            success_criteria="agent restarts cleanly",
        )

        text = searchable_content(procedure)

        assert text.split("\n") == [
            "Rotate logs",
            "general",
            "#ops",
            "agent restarts cleanly",
            "stop the agent systemctl stop agent",
        ]


class TestRemember:
    async def test_steps_sorted_and_stored_in_reserved_namespace(self, library, record_store):
        procedure = await library.remember("Rotate logs", _steps(3, 1, 2), category="ops", tags=["#ops"])

        assert [s.order for s in procedure.steps] == [1, 2, 3]
        assert procedure.id.startswith("procedure-")
        record = await record_store.get(procedure.id, PROCEDURES_NAMESPACE)
        assert json.loads(record.content)["title"] == "Rotate logs"

    async def test_missing_category_and_tags_detected(self, library):
        procedure = await library.remember(
            "Fix the locked sqlite database",
            [ProcedureStep(order=1, action="stop the writer"), ProcedureStep(order=2, action="remove the journal")],
        )

        assert procedure.category == "error-fix"
        assert procedure.tags == ["#error-fix", "#database"]

    async def test_caller_category_kept_and_tags_merged(self, library):
        procedure = await library.remember("Fix the sqlite lock", _steps(1), category="maintenance")

        assert procedure.category == "maintenance"
        assert "#database" in procedure.tags

    async def test_caller_category_and_tags_skip_detection(self, library):
        procedure = await library.remember("Fix the sqlite lock", _steps(1), category="maintenance", tags=["#db"])

        assert procedure.category == "maintenance"
        assert procedure.tags == ["#db"]

    async def test_requires_steps(self, library):
        with pytest.raises(InvalidInputError):
            await library.remember("Nothing to do", [])

    async def test_requires_title(self, library):
        with pytest.raises(InvalidInputError):
            await library.remember("  ", _steps(1))

    async def test_hidden_from_namespace_listing(self, library, memory_service):
        await library.remember("Rotate logs", _steps(1))

        listing = await memory_service.list_namespaces()

        assert listing.users == [] and listing.projects == [] and listing.all is False


class TestFind:
    async def test_similar_question_finds_procedure(self, library, embedder):
        procedure = await library.remember("Rotate logs", _steps(1, 2), category="ops", tags=["#ops"])
        embedder.aliases["how do I rotate logs"] = searchable_content(procedure)

        found = await library.find("how do I rotate logs")

        assert [p.id for p in found] == [procedure.id]
        assert [s.action for s in found[0].steps] == ["step 1", "step 2"]

    async def test_category_filter(self, library, embedder):
        procedure = await library.remember("Rotate logs", _steps(1), category="ops", tags=["#ops"])
        embedder.aliases["rotate logs"] = searchable_content(procedure)

        assert await library.find("rotate logs", category="debugging") == []
        assert [p.id for p in await library.find("rotate logs", category="ops")] == [procedure.id]

    async def test_plain_memories_not_returned(self, library, memory_service):
        await memory_service.store("rotate logs", "all")

        assert await library.find("rotate logs") == []

    async def test_empty_query_rejected(self, library):
        with pytest.raises(InvalidInputError):
            await library.find("")


class TestListAndGet:
    async def test_empty_library(self, library):
        assert await library.list_capabilities() == []

    async def test_lists_summaries_with_category_filter(self, library):
        first = await library.remember("Rotate logs", _steps(1), description="weekly", category="ops", tags=["#ops"])
        second = await library.remember("Profile a slow query", _steps(1), category="debugging", tags=["#perf"])

        everything = await library.list_capabilities()
        ops_only = await library.list_capabilities(category="ops")

        assert {c["id"] for c in everything} == {first.id, second.id}
        assert ops_only == [{"id": first.id, "title": "Rotate logs", "description": "weekly", "category": "ops"}]

    async def test_unreadable_records_skipped(self, library, memory_service):
        await memory_service.store("not a procedure", PROCEDURES_NAMESPACE)
        kept = await library.remember("Rotate logs", _steps(1), category="ops", tags=["#ops"])

        assert [c["id"] for c in await library.list_capabilities()] == [kept.id]

    async def test_get_by_id(self, library):
        procedure = await library.remember("Rotate logs", _steps(2, 1), category="ops", tags=["#ops"])

        fetched = await library.get(procedure.id)

        assert fetched == procedure
        assert await library.get("procedure-missing") is None
