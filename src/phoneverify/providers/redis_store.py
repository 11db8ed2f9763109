"""Redis implementation of the challenge store."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..models import VerificationChallenge
from .base import ChallengeStore

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)


class RedisChallengeStore(ChallengeStore):
    """
    Challenge records as pydantic JSON under ``<prefix><account_id>``.

    Keys outlive ``expires_at`` by ``retention_seconds`` so that a late
    confirmation still sees the record and reports it as expired.
    """

    def __init__(
        self,
        redis_client: Redis,
        prefix: str = "phone_verification_codes:",
        retention_seconds: int = 3600,
    ) -> None:
        self._redis = redis_client
        self._prefix = prefix
        self._retention_seconds = retention_seconds

    def _key(self, account_id: str) -> str:
        return f"{self._prefix}{account_id}"

    def _ttl(self, challenge: VerificationChallenge) -> int | None:
        if challenge.expires_at is None:
            return None
        lifetime = (challenge.expires_at - challenge.issued_at).total_seconds()
        return max(int(lifetime), 0) + self._retention_seconds

    async def create(self, challenge: VerificationChallenge) -> None:
        key = self._key(challenge.handle)
        ttl = self._ttl(challenge)
        if ttl:
            await self._redis.setex(key, ttl, challenge.model_dump_json())
        else:
            await self._redis.set(key, challenge.model_dump_json())

    async def get(self, account_id: str) -> VerificationChallenge | None:
        val = await self._redis.get(self._key(account_id))
        if not val:
            return None
        return VerificationChallenge.model_validate_json(val)

    async def update(self, account_id: str, *, attempts: int) -> None:
        key = self._key(account_id)
        record = await self.get(account_id)
        if record is None:
            logger.warning("Challenge record %s vanished before update", key)
            return
        record.attempts = attempts
        # KEEPTTL preserves the expiry set on create
        await self._redis.set(key, record.model_dump_json(), keepttl=True)

    async def delete(self, account_id: str) -> None:
        await self._redis.delete(self._key(account_id))
