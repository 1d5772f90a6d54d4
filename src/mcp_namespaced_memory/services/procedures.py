"""
Remembered procedures ("how-to" memories).

A procedure is stored as one record in the reserved procedures namespace:
the record content is the procedure as JSON, and the vector is the embedding
of a flattened searchable text (title, description, tags, steps), so a
question like "how do I deploy" finds it by similarity.  Missing category or
tags are filled in by the keyword categoriser.
"""

import json
import logging
import uuid
from datetime import datetime, timezone

from ..config import PROCEDURES_NAMESPACE
from ..errors import InvalidInputError
from ..models.procedure import Procedure, ProcedureStep
from .categorize import categorize
from .memory_service import MemoryService, require_text

logger = logging.getLogger(__name__)

PROCEDURE_TYPE = "procedure"


def searchable_content(procedure: Procedure) -> str:
    """Flatten a procedure into the text that gets embedded."""
    parts = [
        procedure.title,
        procedure.description,
        procedure.category,
        *procedure.tags,
        *procedure.prerequisites,
        procedure.success_criteria or "",
        *(
            " ".join(p for p in (step.action, step.command, step.expected_result, step.notes) if p)
            for step in procedure.steps
        ),
    ]
    return "\n".join(p for p in parts if p)


def _parse_procedure(content: str) -> Procedure | None:
    try:
        return Procedure.from_dict(json.loads(content))
    except (json.JSONDecodeError, TypeError, KeyError, ValueError) as e:
        logger.warning(f"Skipping unreadable procedure record: {e}")
        return None


class ProcedureLibrary:
    """Stores, finds and lists procedures in the reserved procedures namespace."""

    def __init__(self, memory_service: MemoryService):
        self.memory_service = memory_service

    async def remember(
        self,
        title: str,
        steps: list[ProcedureStep],
        description: str = "",
        category: str | None = None,
        tags: list[str] | None = None,
        prerequisites: list[str] | None = None,
        success_criteria: str | None = None,
        troubleshooting: dict[str, str] | None = None,
    ) -> Procedure:
        """
        Store a procedure; steps are kept sorted by ``order``.

        When the caller gives no category or no tags, the categoriser runs on
        the searchable text: its category fills a missing one and its tags are
        merged into the caller's.

        Raises:
            InvalidInputError: empty title or no steps
        """
        require_text(title, "title")
        if not steps:
            raise InvalidInputError("a procedure needs at least one step")

        procedure = Procedure(
            id=f"procedure-{uuid.uuid4()}",
            title=title,
            steps=sorted(steps, key=lambda s: s.order),
            created_at=datetime.now(timezone.utc).isoformat(),
            description=description or "",
            category=category or "general",
            tags=list(tags or []),
            prerequisites=list(prerequisites or []),
            success_criteria=success_criteria,
            troubleshooting=dict(troubleshooting or {}),
        )

        if not category or not tags:
            categorization = categorize(searchable_content(procedure))
            procedure.category = category or categorization.category
            procedure.tags = list(dict.fromkeys([*procedure.tags, *categorization.tags]))

        await self.memory_service.store(
            json.dumps(procedure.to_dict()),
            PROCEDURES_NAMESPACE,
            metadata={
                "type": PROCEDURE_TYPE,
                "title": procedure.title,
                "category": procedure.category,
                "tags": procedure.tags,
                "step_count": len(procedure.steps),
            },
            memory_id=procedure.id,
            embed_text=searchable_content(procedure),
        )
        logger.info(f"Remembered procedure {procedure.id}: {title} ({len(procedure.steps)} steps)")
        return procedure

    async def find(self, query: str, category: str | None = None, limit: int = 10) -> list[Procedure]:
        """Procedures similar to ``query``, best first, optionally within one category."""
        require_text(query, "query")
        filters = {"type": PROCEDURE_TYPE}
        if category:
            filters["category"] = category

        matches = await self.memory_service.search(query, PROCEDURES_NAMESPACE, limit=limit, filters=filters)
        return [p for m in matches if (p := _parse_procedure(m.content)) is not None]

    async def list_capabilities(self, category: str | None = None) -> list[dict[str, str]]:
        """Every stored procedure as ``{id, title, description, category}``, newest first."""
        record_store = self.memory_service.record_store
        total = await record_store.count_active(PROCEDURES_NAMESPACE)
        if not total:
            return []

        records = await record_store.list_active(PROCEDURES_NAMESPACE, limit=total)
        procedures = [p for r in records if (p := _parse_procedure(r.content)) is not None]
        return [p.summary() for p in procedures if not category or p.category == category]

    async def get(self, procedure_id: str) -> Procedure | None:
        record = await self.memory_service.get(procedure_id, PROCEDURES_NAMESPACE)
        if record is None:
            return None
        return _parse_procedure(record.content)
