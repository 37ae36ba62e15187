"""Append-only store for effective-dated facts."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from finance_lifecycle.errors import Conflict, MissingReason, OverlappingVersion, ValidationError
from finance_lifecycle.models import VersionedFact
from finance_lifecycle.services.audit_recorder import AuditRecorder

logger = logging.getLogger(__name__)


def _interval(version: VersionedFact) -> dict[str, Any]:
    return {
        "version_id": version.id,
        "effective_from": version.effective_from,
        "effective_to": version.effective_to,
    }


class VersionedFactStore:
    """Stores facts as non-overlapping ``[effective_from, effective_to)`` versions.

    Versions are never edited or deleted. The only permitted change to an
    existing row is truncating an open-ended version's ``effective_to``
    when a later open-ended version supersedes it. A bounded version that
    starts inside an open-ended one is an overlap.
    """

    def __init__(self, session: AsyncSession, audit: AuditRecorder | None = None):
        self.session = session
        self.audit = audit or AuditRecorder(session)

    async def append_version(
        self,
        owner_id: UUID,
        fact_type: str,
        payload: dict[str, Any],
        effective_from: date,
        effective_to: date | None,
        reason: str,
        actor_id: UUID,
    ) -> VersionedFact:
        """Append a new version.

        Raises:
            MissingReason: If reason is empty
            ValidationError: If effective_from is not before effective_to
            OverlappingVersion: If the interval intersects an existing version
        """
        trimmed = (reason or "").strip()
        if not trimmed:
            raise MissingReason("append_version")
        if effective_to is not None and effective_from >= effective_to:
            raise ValidationError(
                "effective_from must be before effective_to", field="effective_to"
            )

        # Overlap check and insert happen under the same row locks
        versions = await self._load_for_update(owner_id, fact_type)

        superseded: VersionedFact | None = None
        for version in versions:
            if (
                effective_to is None
                and version.effective_to is None
                and version.effective_from < effective_from
            ):
                superseded = version
                continue
            if version.overlaps(effective_from, effective_to):
                raise OverlappingVersion(
                    version.id, version.effective_from, version.effective_to
                )

        before: dict[str, Any] | None = None
        if superseded is not None:
            before = _interval(superseded)
            superseded.effective_to = effective_from

        new_version = VersionedFact(
            owner_id=owner_id,
            fact_type=fact_type,
            payload_json=payload,
            effective_from=effective_from,
            effective_to=effective_to,
            reason=trimmed,
            created_by=actor_id,
        )
        self.session.add(new_version)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise Conflict(
                f"{fact_type} history for {owner_id} changed concurrently"
            ) from exc

        after = {**_interval(new_version), "payload": payload}
        if superseded is not None:
            after["superseded_version_id"] = superseded.id
            after["superseded_effective_to"] = superseded.effective_to

        await self.audit.record(
            entity_type=fact_type,
            entity_id=owner_id,
            action="FACT_VERSION_APPEND",
            actor_id=actor_id,
            reason=trimmed,
            before=before,
            after=after,
            sensitive=True,
        )
        logger.info(
            "%s version %s appended for %s from %s",
            fact_type, new_version.id, owner_id, effective_from,
        )
        return new_version

    async def current_version(
        self,
        owner_id: UUID,
        fact_type: str,
        as_of_date: date,
    ) -> VersionedFact | None:
        """Return the version whose interval contains ``as_of_date``."""
        result = await self.session.execute(
            select(VersionedFact)
            .where(
                VersionedFact.owner_id == owner_id,
                VersionedFact.fact_type == fact_type,
                VersionedFact.effective_from <= as_of_date,
                (
                    VersionedFact.effective_to.is_(None)
                    | (VersionedFact.effective_to > as_of_date)
                ),
            )
            .order_by(VersionedFact.effective_from.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, owner_id: UUID, fact_type: str) -> list[VersionedFact]:
        """All versions ordered by effective_from ascending."""
        result = await self.session.execute(
            select(VersionedFact)
            .where(
                VersionedFact.owner_id == owner_id,
                VersionedFact.fact_type == fact_type,
            )
            .order_by(VersionedFact.effective_from.asc())
        )
        return list(result.scalars().all())

    async def _load_for_update(self, owner_id: UUID, fact_type: str) -> list[VersionedFact]:
        result = await self.session.execute(
            select(VersionedFact)
            .where(
                VersionedFact.owner_id == owner_id,
                VersionedFact.fact_type == fact_type,
            )
            .order_by(VersionedFact.effective_from.asc())
            .with_for_update()
        )
        return list(result.scalars().all())
