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

"""Session models for search personalisation."""

import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class SessionSearch:
    """One search issued during a session."""

    query: str
    timestamp: float = field(default_factory=time.time)
    results_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"query": self.query, "timestamp": self.timestamp, "results_count": self.results_count}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SessionSearch":
        return cls(
            query=data["query"],
            timestamp=data.get("timestamp", 0.0),
            results_count=data.get("results_count", 0),
        )


@dataclass
class SessionData:
    """Snapshot of a caller's session, persisted whole on every change."""

    session_id: str
    start_time: float = field(default_factory=time.time)
    searches: list[SessionSearch] = field(default_factory=list)
    viewed_memories: list[str] = field(default_factory=list)
    suggested_topics: list[str] = field(default_factory=list)
    last_activity_time: float = field(default_factory=time.time)

    # Monotonic version; 0 means never saved
    version: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "session_id": self.session_id,
            "start_time": self.start_time,
            "searches": [s.to_dict() for s in self.searches],
            "viewed_memories": list(self.viewed_memories),
            "suggested_topics": list(self.suggested_topics),
            "last_activity_time": self.last_activity_time,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any], version: int = 0) -> "SessionData":
        """Create instance from dictionary."""
        return cls(
            session_id=data["session_id"],
            start_time=data.get("start_time", 0.0),
            searches=[SessionSearch.from_dict(s) for s in data.get("searches", [])],
            viewed_memories=list(data.get("viewed_memories", [])),
            suggested_topics=list(data.get("suggested_topics", [])),
            last_activity_time=data.get("last_activity_time", 0.0),
            version=version,
        )
