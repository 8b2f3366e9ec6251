"""
Pending OAuth authorizations.

WHAT: Holds each started authorization (state, PKCE verifier, country,
provider) until the provider redirects back.

WHY: The redirect can land on any worker, and a state must be usable
exactly once. Redis gives both: SETEX expires abandoned attempts and
GETDEL hands the request to one caller only.

HOW: The request is serialized to JSON and encrypted with the token
encryption key before it is stored, so the verifier is never readable
in Redis.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from redis.exceptions import RedisError

from casenotify.core.config import settings
from casenotify.core.exceptions import EncryptionError, TransientNetworkError
from casenotify.models.base import utcnow
from casenotify.models.email_credential import MailProvider
from casenotify.services.encryption_service import EncryptionService, get_encryption_service


logger = logging.getLogger(__name__)


KEY_PREFIX = "casenotify:oauth:pending:"


@dataclass
class AuthorizationRequest:
    """A pending authorization waiting for the provider's redirect."""

    state: str
    country: str
    provider: MailProvider
    authorization_url: str
    code_verifier: str = field(repr=False)
    actor: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_json(self) -> str:
        return json.dumps(
            {
                "state": self.state,
                "country": self.country,
                "provider": self.provider.value,
                "authorization_url": self.authorization_url,
                "code_verifier": self.code_verifier,
                "actor": self.actor,
                "created_at": self.created_at.isoformat(),
            }
        )

    @classmethod
    def from_json(cls, raw: str) -> "AuthorizationRequest":
        data = json.loads(raw)
        data["provider"] = MailProvider(data["provider"])
        data["created_at"] = datetime.fromisoformat(data["created_at"])
        return cls(**data)


class PendingAuthorizationStore:
    """
    Redis-backed store of authorizations awaiting their redirect.

    Example:
        store = PendingAuthorizationStore(await get_redis())
        await store.save(request)
        request = await store.take(callback.state)  # None the second time
    """

    def __init__(
        self,
        redis,
        ttl_seconds: Optional[int] = None,
        encryption: Optional[EncryptionService] = None,
    ):
        self.redis = redis
        self.ttl_seconds = ttl_seconds or settings.PENDING_AUTH_TTL_SECONDS
        self._encryption = encryption or get_encryption_service()

    @staticmethod
    def _key(state: str) -> str:
        return f"{KEY_PREFIX}{state}"

    async def save(self, request: AuthorizationRequest) -> None:
        """
        Raises:
            TransientNetworkError: Redis unreachable
        """
        try:
            await self.redis.setex(
                self._key(request.state),
                self.ttl_seconds,
                self._encryption.encrypt(request.to_json()),
            )
        except RedisError as e:
            logger.error(f"Failed to store pending authorization: {e}")
            raise TransientNetworkError(message="Authorization could not be started") from e

    async def take(self, state: str) -> Optional[AuthorizationRequest]:
        """
        Remove and return the request for ``state``.

        Returns None for an unknown, expired or already used state.

        Raises:
            TransientNetworkError: Redis unreachable
        """
        try:
            raw = await self.redis.getdel(self._key(state))
        except RedisError as e:
            logger.error(f"Failed to read pending authorization: {e}")
            raise TransientNetworkError(message="Authorization could not be completed") from e
        if raw is None:
            return None
        try:
            return AuthorizationRequest.from_json(self._encryption.decrypt(raw))
        except (EncryptionError, ValueError, KeyError, TypeError):
            logger.warning("Discarding unreadable pending authorization")
            return None

    async def discard(self, state: str) -> None:
        try:
            await self.redis.delete(self._key(state))
        except RedisError as e:
            logger.warning(f"Failed to discard pending authorization: {e}")
