"""
Rule-based auto-categorisation and the categorising store.

Keyword rules tag a memory with a category, an optional programming language
and a few domain hashtags.  ``enhanced_store`` stores the memory with those
tags and teaches the query expander about synonyms it finds in the content.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .memory_service import MemoryService, require_namespace, require_text
from .query_expansion import QueryExpander

logger = logging.getLogger(__name__)

# (keywords, category, tag); first match wins
CATEGORY_RULES = (
    (("error", "fix", "bug"), "error-fix", "#error-fix"),
    (("pattern", "approach"), "patterns", "#pattern"),
    (("preference", "style", "convention"), "preferences", "#user-preference"),
    (("test", "tdd", "add"), "testing", "#testing"),
)
DEFAULT_CATEGORY = "general"

DOMAIN_RULES = (
    (("database", "sqlite"), "#database"),
    (("api", "endpoint", "rest"), "#api"),
    (("async", "promise", "await"), "#async"),
)

# Synonym groups learned as query expansions when several members co-occur
TERM_GROUPS = (
    ("add", "tdd", "test driven development"),
    ("api", "endpoint", "rest"),
    ("error", "exception", "bug"),
    ("async", "promise", "await"),
)


@dataclass
class Categorization:
    tags: list[str] = field(default_factory=list)
    category: str = DEFAULT_CATEGORY
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"tags": self.tags, "category": self.category, "language": self.language}


def _detect_language(content: str, lowered: str) -> str | None:
    if "```typescript" in content or "```ts" in content or "typescript" in lowered:
        return "typescript"
    if "```javascript" in content or "```js" in content:
        return "javascript"
    if "```sql" in content or "select " in lowered or "insert " in lowered:
        return "sql"
    return None


def categorize(content: str) -> Categorization:
    """Derive category, language and hashtags from keywords in ``content``."""
    lowered = content.lower()
    result = Categorization()

    for keywords, category, tag in CATEGORY_RULES:
        if any(k in lowered for k in keywords):
            result.category = category
            result.tags.append(tag)
            break

    result.language = _detect_language(content, lowered)
    if result.language:
        result.tags.append(f"#{result.language}")

    for keywords, tag in DOMAIN_RULES:
        if any(k in lowered for k in keywords):
            result.tags.append(tag)

    result.tags = list(dict.fromkeys(result.tags))
    return result


async def learn_expansions(expander: QueryExpander, content: str) -> int:
    """
    Store an expansion for every term of a synonym group when more than one
    term of that group appears in ``content``.  Returns expansions stored.
    """
    lowered = content.lower()
    stored = 0
    for group in TERM_GROUPS:
        found = [term for term in group if term in lowered]
        if len(found) < 2:
            continue
        for term in found:
            await expander.store_expansion(term, [t for t in group if t != term])
            stored += 1
    return stored


async def enhanced_store(
    memory_service: MemoryService,
    content: str,
    namespace: str,
    metadata: dict[str, Any] | None = None,
    expander: QueryExpander | None = None,
) -> tuple[str, Categorization]:
    """
    Categorise and store a memory, then learn expansions from its content.

    Caller-supplied ``category``/``language`` win over detected ones; tags are
    merged.  Expansion learning is best-effort.
    """
    require_text(content, "content")
    require_namespace(namespace)
    metadata = dict(metadata or {})
    categorization = categorize(content)

    enriched = {
        **metadata,
        "tags": list(dict.fromkeys([*(metadata.get("tags") or []), *categorization.tags])),
        "category": metadata.get("category") or categorization.category,
        "language": metadata.get("language") or categorization.language,
        "auto_categorized": True,
        "categorized_at": datetime.now(timezone.utc).isoformat(),
    }
    memory_id = await memory_service.store(content, namespace, metadata=enriched)

    try:
        await learn_expansions(expander or QueryExpander(memory_service), content)
    except Exception as e:
        logger.warning(f"Expansion learning failed for {memory_id}: {e}")

    return memory_id, categorization
