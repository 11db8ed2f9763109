"""External collaborators: identity provider, SMS gateway and storage."""

from .base import AccountStore, ChallengeStore, IdentityProvider, SmsSender
from .identity_toolkit import IdentityToolkitProvider
from .memory import InMemoryAccountStore, InMemoryChallengeStore
from .redis_store import RedisChallengeStore
from .sms import ConsoleSmsSender, TwilioSmsSender

__all__ = [
    "AccountStore",
    "ChallengeStore",
    "ConsoleSmsSender",
    "IdentityProvider",
    "IdentityToolkitProvider",
    "InMemoryAccountStore",
    "InMemoryChallengeStore",
    "RedisChallengeStore",
    "SmsSender",
    "TwilioSmsSender",
]
