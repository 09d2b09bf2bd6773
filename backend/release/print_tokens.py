"""Short-lived, single-use print tokens.

A print token authorises exactly one decrypt-and-stream of a job's document.
Tokens live for 60 seconds, at most one per job id; minting again replaces
the previous entry. Minting is rate limited per client IP over a rolling
window.

Consumption marks the entry used synchronously, before any await, so two
concurrent presentations of the same token cannot both pass. Spent tokens
are remembered until their natural expiry so a replay is reported as
"already used" even after the entry itself has been discarded.
"""

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta

from release.errors import (
    PrintTokenExpired,
    PrintTokenInvalid,
    PrintTokenMissing,
    PrintTokenUsed,
    RateLimited,
)
from release.state import Clock, utcnow
from security.tokens import print_token, tokens_match

audit = logging.getLogger("secureprint.audit")

PRINT_TOKEN_TTL_SECONDS = 60
RATE_LIMIT_WINDOW_SECONDS = 60
RATE_LIMIT_MAX_MINTS = 10


@dataclass
class PrintToken:
    token: str
    expires_at: datetime
    created_at: datetime
    client_ip: str
    used: bool = False


class PrintTokenRegistry:
    """Print tokens keyed by job id, plus per-IP mint history."""

    def __init__(
        self,
        clock: Clock = utcnow,
        ttl_seconds: int = PRINT_TOKEN_TTL_SECONDS,
        window_seconds: int = RATE_LIMIT_WINDOW_SECONDS,
        max_mints: int = RATE_LIMIT_MAX_MINTS,
    ):
        self._clock = clock
        self._ttl = timedelta(seconds=ttl_seconds)
        self._window = timedelta(seconds=window_seconds)
        self._max_mints = max_mints
        self._tokens: dict[str, PrintToken] = {}
        self._spent: dict[str, datetime] = {}
        self._mints: dict[str, deque[datetime]] = {}

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._tokens

    def get(self, job_id: str) -> PrintToken | None:
        return self._tokens.get(job_id)

    def check_rate(self, client_ip: str) -> None:
        """Count one mint attempt for ``client_ip``.

        Raises:
            RateLimited: If the IP already minted ``max_mints`` times within
                the rolling window. Rejected attempts are not counted.
        """
        now = self._clock()
        stamps = self._mints.setdefault(client_ip, deque())
        while stamps and now - stamps[0] >= self._window:
            stamps.popleft()
        if len(stamps) >= self._max_mints:
            audit.warning(f"[AUDIT] Rate limit exceeded for IP: {client_ip}")
            raise RateLimited()
        stamps.append(now)

    def mint(self, job_id: str, client_ip: str) -> PrintToken:
        """Issue a fresh token for ``job_id``, replacing any previous one."""
        now = self._clock()
        self.discard(job_id)
        entry = PrintToken(
            token=print_token(),
            expires_at=now + self._ttl,
            created_at=now,
            client_ip=client_ip,
        )
        self._tokens[job_id] = entry
        audit.info(f"[AUDIT] Print token created for job ID: {job_id}")
        return entry

    def consume(self, job_id: str, presented: str | None) -> PrintToken:
        """Validate a presented token and mark it used.

        Any failure discards the job's entry.

        Raises:
            PrintTokenMissing, PrintTokenInvalid, PrintTokenExpired, PrintTokenUsed
        """
        now = self._clock()
        if not presented:
            self.discard(job_id)
            audit.info(f"[AUDIT] Missing print token for job ID: {job_id}")
            raise PrintTokenMissing()

        entry = self._tokens.get(job_id)
        if entry is None or not tokens_match(presented, entry.token):
            self.discard(job_id)
            if self._is_spent(presented, now):
                audit.warning(f"[AUDIT] Reused token attempt for job ID: {job_id}")
                raise PrintTokenUsed()
            audit.warning(f"[AUDIT] Invalid print token for job ID: {job_id}")
            raise PrintTokenInvalid()

        if now > entry.expires_at:
            self.discard(job_id)
            audit.info(f"[AUDIT] Expired token attempt for job ID: {job_id}")
            raise PrintTokenExpired()

        if entry.used:
            self.discard(job_id)
            audit.warning(f"[AUDIT] Reused token attempt for job ID: {job_id}")
            raise PrintTokenUsed()

        entry.used = True
        return entry

    def discard(self, job_id: str, token: str | None = None) -> None:
        """Drop the job's token; a used token is remembered as spent.

        With ``token`` given, the entry is dropped only if it still holds that
        token, so a token minted since then survives.
        """
        entry = self._tokens.get(job_id)
        if entry is None or (token is not None and entry.token != token):
            return
        del self._tokens[job_id]
        if entry.used:
            self._spent[entry.token] = entry.expires_at

    def purge(self) -> int:
        """Drop expired tokens, spent markers and stale mint history.

        Returns:
            Number of live token entries removed.
        """
        now = self._clock()
        expired = [job_id for job_id, entry in self._tokens.items() if now >= entry.expires_at]
        for job_id in expired:
            self.discard(job_id)
        self._spent = {tok: exp for tok, exp in self._spent.items() if now < exp}
        for ip in list(self._mints):
            stamps = self._mints[ip]
            while stamps and now - stamps[0] >= self._window:
                stamps.popleft()
            if not stamps:
                del self._mints[ip]
        return len(expired)

    def _is_spent(self, presented: str, now: datetime) -> bool:
        expires_at = self._spent.get(presented)
        return expires_at is not None and now < expires_at
