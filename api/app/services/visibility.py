from __future__ import annotations

from collections.abc import Iterable
from datetime import date
from typing import Literal

from app.core.auth import Principal
from app.services.records import PostingRecord

PostingOrder = Literal["newest", "deadline"]


def can_view(posting: PostingRecord, viewer: Principal | None, *, today: date) -> bool:
    if viewer is not None and (viewer.is_admin or viewer.owns(posting.created_by)):
        return True
    return posting.is_open(today)


def visible_postings(
    postings: Iterable[PostingRecord],
    viewer: Principal | None,
    *,
    today: date,
    order: PostingOrder = "newest",
) -> list[PostingRecord]:
    """Return the postings ``viewer`` may see, in a deterministic order.

    ``viewer=None`` is the anonymous public board. Equal sort keys fall back to
    ascending id so paging over the result never skips or repeats a row.
    """
    rows = sorted((posting for posting in postings if can_view(posting, viewer, today=today)), key=lambda p: p.id)
    if order == "deadline":
        rows.sort(key=lambda p: p.deadline)
    else:
        rows.sort(key=lambda p: p.created_at, reverse=True)
    return rows


def paginate(rows: list[PostingRecord], *, limit: int, offset: int) -> list[PostingRecord]:
    return rows[offset : offset + limit]
