"""Rate limiting utilities: in-memory request throttle and per-user email send policy."""

from __future__ import annotations

import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Dict, Optional

from sqlalchemy.orm import Session

from app.core.security import utcnow
from app.services.token_service import TokenKind, token_service

DAILY_WINDOW = timedelta(hours=24)


@dataclass
class _Bucket:
    timestamps: Deque[float]
    window_seconds: int


class InMemoryRateLimiter:
    """Sliding-window rate limiter suitable for single-node deployments."""

    def __init__(self, max_buckets: int = 10000) -> None:
        self._lock = threading.Lock()
        self._buckets: Dict[str, _Bucket] = {}
        self._max_buckets = max_buckets
        self._sweep_at = max_buckets

    def _sweep(self, now: float) -> None:
        """Drop buckets whose every timestamp has left its window."""
        stale = [
            key
            for key, bucket in self._buckets.items()
            if not bucket.timestamps or bucket.timestamps[-1] < now - bucket.window_seconds
        ]
        for key in stale:
            del self._buckets[key]
        self._sweep_at = max(self._max_buckets, 2 * len(self._buckets))

    def allow(self, key: str, limit: int, window_seconds: int) -> bool:
        now = time.time()
        cutoff = now - window_seconds

        with self._lock:
            if len(self._buckets) >= self._sweep_at:
                self._sweep(now)
            bucket = self._buckets.setdefault(
                key, _Bucket(timestamps=deque(), window_seconds=window_seconds)
            )
            while bucket.timestamps and bucket.timestamps[0] < cutoff:
                bucket.timestamps.popleft()

            if len(bucket.timestamps) >= limit:
                return False

            bucket.timestamps.append(now)
            return True

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._sweep_at = self._max_buckets


@dataclass(frozen=True)
class SendLimits:
    cooldown_seconds: int
    daily_limit: int
    label: str


class EmailSendPolicy:
    """
    Cooldown plus trailing-24h cap for verification/reset emails.

    State lives in the token ledger: the newest row's ``created_at`` drives
    the cooldown and the row count over the last 24 hours drives the cap.
    """

    @staticmethod
    def check(
        db: Session,
        kind: TokenKind,
        user_id: str,
        limits: SendLimits,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Return a user-facing refusal message, or None when sending is allowed."""
        now = now or utcnow()

        last = token_service.latest_issued_at(db, kind, user_id)
        if last is not None and limits.cooldown_seconds > 0:
            elapsed = (now - last).total_seconds()
            if elapsed < limits.cooldown_seconds:
                wait = math.ceil(limits.cooldown_seconds - elapsed)
                return f"Please wait {wait}s before requesting another {limits.label}."

        sent_today = token_service.count_issued_since(db, kind, user_id, now - DAILY_WINDOW)
        if sent_today >= limits.daily_limit:
            return f"Daily limit for {limits.label}s reached. Try again later."

        return None


rate_limiter = InMemoryRateLimiter()
email_send_policy = EmailSendPolicy()
