from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..config import Settings

logger = logging.getLogger(__name__)


class TurnstileVerifier:
    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None) -> None:
        self._secret = settings.TURNSTILE_SECRET_KEY
        self._url = settings.TURNSTILE_VERIFY_URL
        self._client = client or httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SEC)

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    async def verify(self, token: Optional[str], client_ip: Optional[str]) -> bool:
        """True when the challenge token checks out.

        An unreachable verifier counts as a failed check.
        """
        if not token:
            return False
        data = {"secret": self._secret, "response": token}
        if client_ip and client_ip != "unknown":
            data["remoteip"] = client_ip
        try:
            resp = await self._client.post(self._url, data=data)
            resp.raise_for_status()
            return bool(resp.json().get("success"))
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("turnstile_verify_failed", extra={"error": str(e)})
            return False

    async def aclose(self) -> None:
        await self._client.aclose()
