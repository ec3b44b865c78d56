"""Actor resolution.

Identity is owned by an external provider; this module only maps an
`X-API-Key` header onto the actor recorded against each write. Keys are
held as SHA-256 hashes.
"""

import hashlib
import secrets
from typing import Annotated, Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, Field

from etocal.core.config import settings

logger = structlog.get_logger(__name__)

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)


class Actor(BaseModel):
    """The authenticated user behind a request."""

    user_id: str
    key_id: Optional[str] = None
    farm_ids: list[int] = Field(default_factory=list)


class APIKeyStore:
    """
    In-memory API key registry.

    Keys are issued by the identity service and registered here at startup.
    """

    def __init__(self):
        self._actors: dict[str, Actor] = {}  # key_hash -> Actor

    def register(self, raw_key: str, actor: Actor) -> None:
        self._actors[self._hash_key(raw_key)] = actor
        logger.info("api_key_registered", key_id=actor.key_id, user_id=actor.user_id)

    def issue(self, user_id: str) -> tuple[str, Actor]:
        """
        Create and register a new key for a user.

        Returns:
            Tuple of (raw_key, Actor); the raw key is not retrievable later.
        """
        raw_key = f"eto_{secrets.token_urlsafe(32)}"
        actor = Actor(user_id=user_id, key_id=f"key_{secrets.token_urlsafe(8)}")
        self.register(raw_key, actor)
        return raw_key, actor

    def resolve(self, raw_key: str) -> Optional[Actor]:
        return self._actors.get(self._hash_key(raw_key))

    def revoke(self, raw_key: str) -> bool:
        return self._actors.pop(self._hash_key(raw_key), None) is not None

    @staticmethod
    def _hash_key(raw_key: str) -> str:
        return hashlib.sha256(raw_key.encode()).hexdigest()


_api_key_store: Optional[APIKeyStore] = None


def get_api_key_store() -> APIKeyStore:
    """Get the API key store singleton."""
    global _api_key_store
    if _api_key_store is None:
        _api_key_store = APIKeyStore()
        if settings.is_development or settings.testing:
            _api_key_store.register(
                settings.dev_api_key,
                Actor(user_id="dev_user", key_id="key_dev_known"),
            )
    return _api_key_store


async def get_optional_actor(
    api_key_header: Annotated[Optional[str], Depends(API_KEY_HEADER)],
    request: Request,
) -> Optional[Actor]:
    """
    Resolve the actor for a request, or None when the key is missing or
    unknown.

    Rejection is left to the service layer so the same 401 is produced
    whether the call arrives over HTTP or in-process.
    """
    if not api_key_header:
        return None

    actor = get_api_key_store().resolve(api_key_header)
    if actor is None:
        logger.warning("api_key_unknown", path=request.url.path)
        return None

    request.state.user_id = actor.user_id
    return actor
