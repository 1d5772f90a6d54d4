"""Shared Pydantic types and namespace helpers.

Centralises namespace parsing, tag normalisation and range-clamped numeric
types so the service layer, MCP inputs and REST models agree on the rules.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import AfterValidator, BeforeValidator, Field

from ..config import GLOBAL_NAMESPACE, NAMESPACE_TYPES, SYSTEM_NAMESPACE_PREFIX

# ---------------------------------------------------------------------------
# Namespaces
# ---------------------------------------------------------------------------


def parse_namespace(namespace: str) -> tuple[str, str] | None:
    """Split ``type:identifier`` into its parts.

    Returns ``None`` for ``all`` and for anything not following the
    ``user:<id>`` / ``project:<id>`` convention.
    """
    ns_type, sep, identifier = namespace.partition(":")
    if not sep or not identifier or ns_type not in NAMESPACE_TYPES:
        return None
    return ns_type, identifier


def is_reserved_namespace(namespace: str) -> bool:
    return namespace.startswith(SYSTEM_NAMESPACE_PREFIX)


def validate_user_namespace(v: str) -> str:
    """Accept ``all`` or ``user:<id>`` / ``project:<id>``; reject reserved names."""
    v = v.strip()
    if is_reserved_namespace(v):
        raise ValueError(f"namespace '{v}' is reserved for internal use")
    if v != GLOBAL_NAMESPACE and parse_namespace(v) is None:
        raise ValueError(f"namespace must be 'all', 'user:<id>' or 'project:<id>', got '{v}'")
    return v


Namespace = Annotated[str, AfterValidator(validate_user_namespace)]
"""A caller-supplied namespace: ``all``, ``user:<id>`` or ``project:<id>``."""


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean ``list[str]``.

    * ``"#a, #b"`` → ``["#a", "#b"]``
    * ``["#a", None, " #b "]`` → ``["#a", "#b"]``
    * ``None`` → ``[]``
    """
    if v is None:
        return []
    if isinstance(v, str):
        return [t.strip() for t in v.split(",") if t.strip()]
    if isinstance(v, list):
        return [s for item in v if item is not None and (s := str(item).strip())]
    return []


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]


# ---------------------------------------------------------------------------
# Strings and numbers
# ---------------------------------------------------------------------------


def _require_text(v: str) -> str:
    if not v.strip():
        raise ValueError("text must not be empty")
    return v


NonEmptyText = Annotated[str, Field(min_length=1), AfterValidator(_require_text)]
"""Content or query text; whitespace-only strings are rejected."""

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
SearchLimit = Annotated[int, Field(ge=1, le=100)]
PageNumber = Annotated[int, Field(ge=1)]
