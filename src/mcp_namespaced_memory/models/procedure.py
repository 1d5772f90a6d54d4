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

"""Procedure models: remembered step-by-step instructions."""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class ProcedureStep:
    """One step of a procedure."""

    order: int
    action: str
    command: str | None = None
    expected_result: str | None = None
    error_handling: str | None = None
    notes: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "action": self.action,
            "command": self.command,
            "expected_result": self.expected_result,
            "error_handling": self.error_handling,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProcedureStep":
        return cls(
            order=int(data.get("order", 0)),
            action=data["action"],
            command=data.get("command"),
            expected_result=data.get("expected_result"),
            error_handling=data.get("error_handling"),
            notes=data.get("notes"),
        )


@dataclass
class Procedure:
    """A titled list of steps, stored whole as the record content."""

    id: str
    title: str
    steps: list[ProcedureStep]
    created_at: str
    description: str = ""
    category: str = "general"
    tags: list[str] = field(default_factory=list)
    prerequisites: list[str] = field(default_factory=list)
    success_criteria: str | None = None
    troubleshooting: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "tags": list(self.tags),
            "prerequisites": list(self.prerequisites),
            "steps": [s.to_dict() for s in self.steps],
            "created_at": self.created_at,
            "success_criteria": self.success_criteria,
            "troubleshooting": dict(self.troubleshooting),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Procedure":
        """Create instance from dictionary."""
        return cls(
            id=data["id"],
            title=data["title"],
            steps=[ProcedureStep.from_dict(s) for s in data.get("steps", [])],
            created_at=data.get("created_at", ""),
            description=data.get("description") or "",
            category=data.get("category") or "general",
            tags=list(data.get("tags") or []),
            prerequisites=list(data.get("prerequisites") or []),
            success_criteria=data.get("success_criteria"),
            troubleshooting=dict(data.get("troubleshooting") or {}),
        )

    def summary(self) -> dict[str, str]:
        """Short form used when listing capabilities."""
        return {"id": self.id, "title": self.title, "description": self.description, "category": self.category}
