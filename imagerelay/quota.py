"""Daily per-client quota bookkeeping."""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import Settings
from .errors import InfrastructureError
from .schemas import AdmissionResult, ClientQuotaRecord, QuotaStatus, QuotaTier
from .storageservice.storageservice import StorageService

logger = logging.getLogger(__name__)

DAILY_LIMIT_EXCEEDED = "daily limit exceeded"


@dataclass(frozen=True)
class QuotaPolicy:
    daily_limit: int = 3
    window: timedelta = timedelta(hours=24)
    retention: timedelta = timedelta(days=30)

    @classmethod
    def from_settings(cls, settings: Settings) -> "QuotaPolicy":
        return cls(
            daily_limit=settings.daily_request_limit,
            retention=timedelta(days=settings.quota_retention_days),
        )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evaluate_admission(record: ClientQuotaRecord, now: datetime, policy: QuotaPolicy) -> AdmissionResult:
    """Decide whether ``record`` may make one more request at ``now``.

    Returns the record as it should be persisted. On denial only the window
    reset (if any) is applied; on admission the count is incremented and the
    timestamp moved to ``now``.
    """
    updated = record.model_copy()
    if now - updated.last_request_timestamp >= policy.window:
        updated.requests_made = 0

    if updated.tier == QuotaTier.FREE and updated.requests_made >= policy.daily_limit:
        return AdmissionResult(admitted=False, record=updated, reason=DAILY_LIMIT_EXCEEDED)

    updated.requests_made += 1
    updated.last_request_timestamp = now
    return AdmissionResult(admitted=True, record=updated)


class QuotaLedger:
    """Admission control backed by :class:`StorageService`."""

    def __init__(
        self,
        storage: StorageService,
        policy: Optional[QuotaPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self.policy = policy or QuotaPolicy()
        self._clock = clock

    def admit(self, client_id: str) -> AdmissionResult:
        if not client_id:
            raise ValueError("client_id must be a non-empty string")

        now = self._clock()
        try:
            with self._storage.transaction():
                record = self._storage.get_quota_record(client_id)
                if record is None:
                    record = ClientQuotaRecord(client_id=client_id, last_request_timestamp=now)
                result = evaluate_admission(record, now, self.policy)
                self._storage.save_quota_record(result.record)
        except sqlite3.Error as exc:
            logger.exception("Quota storage unavailable while admitting %s", client_id)
            raise InfrastructureError(f"quota storage failed: {exc}") from exc

        if result.admitted:
            logger.debug("Admitted %s (%s requests in window)", client_id, result.record.requests_made)
        else:
            logger.info("Denied %s: %s", client_id, result.reason)
        return result

    def status(self, client_id: str) -> QuotaStatus:
        now = self._clock()
        try:
            record = self._storage.get_quota_record(client_id)
        except sqlite3.Error as exc:
            logger.exception("Quota storage unavailable while reading %s", client_id)
            raise InfrastructureError(f"quota storage failed: {exc}") from exc

        if record is None:
            return QuotaStatus(
                clientId=client_id,
                tier=QuotaTier.FREE,
                requestsMade=0,
                limit=self.policy.daily_limit,
                remaining=self.policy.daily_limit,
            )

        window_resets_at = record.last_request_timestamp + self.policy.window
        requests_made = record.requests_made if now < window_resets_at else 0
        if record.tier == QuotaTier.PRO:
            return QuotaStatus(
                clientId=client_id,
                tier=record.tier,
                requestsMade=requests_made,
                windowResetsAt=window_resets_at,
            )
        return QuotaStatus(
            clientId=client_id,
            tier=record.tier,
            requestsMade=requests_made,
            limit=self.policy.daily_limit,
            remaining=max(0, self.policy.daily_limit - requests_made),
            windowResetsAt=window_resets_at,
        )

    def purge_expired(self) -> int:
        cutoff = self._clock() - self.policy.retention
        purged = self._storage.purge_quota_records(QuotaTier.FREE, cutoff)
        if purged:
            logger.info("Purged %s free-tier quota records idle since before %s", purged, cutoff.isoformat())
        return purged
