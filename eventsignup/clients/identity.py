from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import jwt  # PyJWT

from ..config import Settings
from ..domain.errors import Unauthorized, UpstreamUnavailable

logger = logging.getLogger(__name__)

ALGO = "HS256"


@dataclass(frozen=True)
class AuthUser:
    id: uuid.UUID
    email: Optional[str]


@dataclass(frozen=True)
class Profile:
    is_member: bool
    email: Optional[str]


class IdentityProvider:
    """Supabase auth: bearer JWTs are checked locally, profiles come from PostgREST."""

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._secret = settings.AUTH_JWT_SECRET
        self._audience = settings.AUTH_JWT_AUDIENCE
        self._base_url = (settings.AUTH_URL or "").rstrip("/")
        self._service_key = settings.AUTH_SERVICE_KEY
        self._client = client or httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SEC)

    def _decode(self, token: str) -> Dict[str, Any]:
        return jwt.decode(token, self._secret, algorithms=[ALGO], audience=self._audience)

    async def get_user_from_token(self, bearer: str) -> AuthUser:
        try:
            claims = self._decode(bearer)
            return AuthUser(id=uuid.UUID(str(claims["sub"])), email=claims.get("email"))
        except (jwt.PyJWTError, KeyError, ValueError):
            raise Unauthorized("Invalid or expired token.")

    async def get_profile(self, user_id: uuid.UUID) -> Profile:
        if not self._base_url or not self._service_key:
            logger.error("profile_lookup_not_configured")
            raise UpstreamUnavailable("Failed to verify membership.")
        try:
            resp = await self._client.get(
                f"{self._base_url}/rest/v1/profiles",
                params={"id": f"eq.{user_id}", "select": "is_member,email"},
                headers={"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"},
            )
            resp.raise_for_status()
            rows = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("profile_lookup_failed", extra={"user_id": str(user_id), "error": str(e)})
            raise UpstreamUnavailable("Failed to verify membership.")
        row = rows[0] if isinstance(rows, list) and rows else {}
        return Profile(is_member=bool(row.get("is_member")), email=row.get("email"))

    async def aclose(self) -> None:
        await self._client.aclose()
