"""HTTP client for the HR records store."""

from __future__ import annotations

from typing import TYPE_CHECKING
from uuid import UUID

import httpx

from perfcycle.archive.records import HRRecordBuilder, HRReviewRecord
from perfcycle.config import ArchiveConfig
from perfcycle.errors import ExternalDependencyError
from perfcycle.logging import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


class HttpHRArchive:
    """Stores review records in the HR records service.

    Records are written with ``PUT {url}/{record_id}``, so re-archiving a
    subject overwrites the same document instead of creating a new one.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: ArchiveConfig,
        builder: HRRecordBuilder | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.builder = builder or HRRecordBuilder()
        self.logger = get_logger(__name__)
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.timeout_seconds)
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if this archive created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def archive(self, cycle_id: UUID, subject_id: UUID) -> HRReviewRecord:
        """Build and store the subject's record.

        Raises:
            EntityNotFoundError: If there is nothing to archive.
            ExternalDependencyError: If the records service rejects the record
                or cannot be reached.
        """
        async with self.session_factory() as session:
            record = await self.builder.build(session, cycle_id, subject_id)

        headers = {"Content-Type": "application/json"}
        if self.config.auth_header:
            headers["Authorization"] = self.config.auth_header

        url = f"{self.config.url.rstrip('/')}/{record.record_id}"
        try:
            client = await self._get_client()
            response = await client.put(
                url,
                json=record.model_dump(mode="json"),
                headers=headers,
            )
        except httpx.RequestError as e:
            raise ExternalDependencyError("hr_archive", str(e)) from e

        if not response.is_success:
            raise ExternalDependencyError(
                "hr_archive",
                f"status {response.status_code}: {response.text[:200]}",
            )

        self.logger.info(
            "review_archived",
            record_id=record.record_id,
            cycle_id=str(cycle_id),
            subject_id=str(subject_id),
            final_rating=record.final_rating,
        )
        return record
