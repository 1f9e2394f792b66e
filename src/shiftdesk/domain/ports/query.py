"""Backend-neutral query descriptions understood by every store adapter."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class Eq:
    """``column = value``."""

    column: str
    value: object


@dataclass(frozen=True, slots=True)
class IsNull:
    column: str


@dataclass(frozen=True, slots=True)
class Contains:
    """Case-insensitive substring match on a text column."""

    column: str
    text: str


@dataclass(frozen=True, slots=True)
class AnyContains:
    """Disjunction of case-insensitive substring matches (free-text search)."""

    columns: tuple[str, ...]
    text: str


type Filter = Eq | IsNull | Contains | AnyContains


@dataclass(frozen=True, slots=True)
class OrderBy:
    column: str
    descending: bool = False
    nulls_last: bool = True


@dataclass(frozen=True, slots=True)
class Embed:
    """Attach the row of ``table`` referenced by ``foreign_key`` under ``name``."""

    name: str
    table: str
    foreign_key: str


@dataclass(frozen=True, slots=True)
class Select:
    table: str
    filters: tuple[Filter, ...] = ()
    order: tuple[OrderBy, ...] = ()
    offset: int | None = None
    limit: int | None = None
    count: bool = False
    embeds: tuple[Embed, ...] = ()


@dataclass(slots=True)
class QueryResult:
    rows: list[dict[str, object]] = field(default_factory=list)
    count: int | None = None


def escape_like(text: str, escape: str = "\\") -> str:
    """Escape LIKE wildcards so user text matches literally."""

    return (
        text.replace(escape, escape * 2).replace("%", f"{escape}%").replace("_", f"{escape}_")
    )


__all__ = [
    "AnyContains",
    "Contains",
    "Embed",
    "Eq",
    "Filter",
    "IsNull",
    "OrderBy",
    "QueryResult",
    "Select",
    "escape_like",
]
