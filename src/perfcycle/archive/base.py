"""HR archive interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable
from uuid import UUID

from perfcycle.archive.records import HRReviewRecord


@runtime_checkable
class HRArchive(Protocol):
    """Long-term store of consolidated review records.

    Archiving the same (cycle, subject) pair again must produce the same
    logical record and must not fail because it already exists.
    """

    async def archive(self, cycle_id: UUID, subject_id: UUID) -> HRReviewRecord:
        ...
