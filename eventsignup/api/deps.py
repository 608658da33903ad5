from __future__ import annotations
from typing import Any, Callable

from ..clients.bot_check import TurnstileVerifier
from ..clients.content import ContentSource
from ..clients.identity import IdentityProvider
from ..config import get_settings
from ..repos.registrations import RegistrationStore
from ..services.notifications import NotificationDispatcher
from ..services.rate_limit import RateLimiter, build_rate_limiter
from ..services.registration_engine import RegistrationEngine

S = get_settings()

# process-wide collaborators, built on first use
_instances: dict[str, Any] = {}


def _singleton(name: str, factory: Callable[[], Any]) -> Any:
    if name not in _instances:
        _instances[name] = factory()
    return _instances[name]


def _build_store() -> RegistrationStore:
    if S.REGISTRATION_STORE == "memory":
        from ..repos.registrations_memory import MemoryRegistrationStore
        return MemoryRegistrationStore()
    from ..db import SessionLocal
    from ..repos.registrations import SqlRegistrationStore
    return SqlRegistrationStore(SessionLocal)


def get_store() -> RegistrationStore:
    return _singleton("store", _build_store)


def get_content() -> ContentSource:
    return _singleton("content", lambda: ContentSource(S))


def get_identity() -> IdentityProvider:
    return _singleton("identity", lambda: IdentityProvider(S))


def get_bot_verifier() -> TurnstileVerifier:
    return _singleton("bot_verifier", lambda: TurnstileVerifier(S))


def get_dispatcher() -> NotificationDispatcher:
    return _singleton("dispatcher", lambda: NotificationDispatcher(S))


def get_rate_limiter() -> RateLimiter:
    return _singleton("rate_limiter", lambda: build_rate_limiter(S))


def get_engine() -> RegistrationEngine:
    return _singleton("engine", lambda: RegistrationEngine(get_store(), get_content(), settings=S))


async def close_clients() -> None:
    for obj in list(_instances.values()):
        aclose = getattr(obj, "aclose", None)
        if aclose is not None:
            await aclose()
    _instances.clear()
