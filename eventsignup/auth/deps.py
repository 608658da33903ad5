from __future__ import annotations
from typing import Optional

from ..clients.bot_check import TurnstileVerifier
from ..clients.identity import IdentityProvider
from ..domain.errors import Forbidden, ValidationFailed
from ..services.registration_engine import Caller


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


async def authenticated_caller(identity: IdentityProvider, bearer: str) -> Caller:
    user = await identity.get_user_from_token(bearer)
    profile = await identity.get_profile(user.id)
    email = (profile.email or user.email or "").strip().lower()
    if not email:
        raise ValidationFailed("Your account has no email address.")
    return Caller(email=email, user_id=user.id, is_member=profile.is_member)


async def guest_caller(
    verifier: TurnstileVerifier,
    *,
    email: Optional[str],
    turnstile_token: Optional[str],
    client_ip: str,
) -> Caller:
    if not email:
        raise ValidationFailed("Missing email.")
    if verifier.enabled and not await verifier.verify(turnstile_token, client_ip):
        raise Forbidden("Bot verification failed. Please try again.")
    return Caller(email=email)
