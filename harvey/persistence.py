from __future__ import annotations

import uuid
from typing import Any, Mapping, Optional, Protocol

APPOINTMENTS = "appointments"
CONSULTATIONS = "consultations"
TRANSCRIPTIONS = "transcriptions"
SUMMARIES = "summaries"
SUMMARY_REVIEWS = "summary_reviews"
PROFILES = "profiles"

Row = dict[str, Any]


class Persistence(Protocol):
    """Row-level access to the managed backend.

    ``where`` filters are ANDed equalities; ``any_of`` is a single OR group of
    equalities (used for "patient or doctor" lookups). Implementations raise
    :class:`harvey.models.PersistenceError` on failure.
    """

    async def select(
        self,
        table: str,
        *,
        where: Optional[Mapping[str, Any]] = None,
        any_of: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> list[Row]: ...

    async def insert(self, table: str, row: Mapping[str, Any]) -> Row: ...

    async def update(
        self, table: str, row_id: str, changes: Mapping[str, Any]
    ) -> Optional[Row]: ...

    async def delete(self, table: str, *, where: Mapping[str, Any]) -> int: ...

    async def count(self, table: str, *, where: Optional[Mapping[str, Any]] = None) -> int: ...


def new_id() -> str:
    return str(uuid.uuid4())


async def select_one(
    store: Persistence, table: str, **where: Any
) -> Optional[Row]:
    rows = await store.select(table, where=where, limit=1)
    return rows[0] if rows else None
