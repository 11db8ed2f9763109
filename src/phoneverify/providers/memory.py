"""In-memory stores for development and tests."""

from __future__ import annotations

from typing import Any

from ..models import VerificationChallenge
from .base import AccountStore, ChallengeStore


class InMemoryChallengeStore(ChallengeStore):
    """Challenge records held in a dict, copied on the way in and out."""

    def __init__(self) -> None:
        self._records: dict[str, VerificationChallenge] = {}

    def __contains__(self, account_id: object) -> bool:
        return account_id in self._records

    async def create(self, challenge: VerificationChallenge) -> None:
        self._records[challenge.handle] = challenge.model_copy()

    async def get(self, account_id: str) -> VerificationChallenge | None:
        record = self._records.get(account_id)
        return record.model_copy() if record is not None else None

    async def update(self, account_id: str, *, attempts: int) -> None:
        record = self._records.get(account_id)
        if record is not None:
            self._records[account_id] = record.model_copy(update={"attempts": attempts})

    async def delete(self, account_id: str) -> None:
        self._records.pop(account_id, None)


class InMemoryAccountStore(AccountStore):
    """Account profiles held in a dict of merged fields."""

    def __init__(self) -> None:
        self.profiles: dict[str, dict[str, Any]] = {}

    async def mark_phone_verified(
        self, account_id: str, phone_number: str, purpose: str
    ) -> None:
        profile = self.profiles.setdefault(account_id, {})
        if purpose == "hosting":
            profile.update(
                phone_verified_for_hosting=True,
                host_phone_number=phone_number,
            )
        else:
            profile.update(phone_verified=True, phone_number=phone_number)
