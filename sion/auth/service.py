"""
Authentication service: session tokens and wallet sign-in.
"""

import time
from functools import lru_cache
from typing import Optional

import jwt

from ..config import settings
from .models import (
    Actor,
    ActorKind,
    AuthError,
    InvalidSignatureError,
    SessionExpiredError,
    TokenPayload,
)
from .solana_signin import parse_solana_signin_message, verify_solana_signature


class AuthService:
    """
    Verifies callers and issues session tokens.

    Two ways in:
    - ``Authorization: Bearer <jwt>`` signed with ``auth_jwt_secret``
    - a Sign-In with Solana message signed by the wallet it names
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = "HS256",
        token_ttl_seconds: int = 86400,
    ):
        self.secret = secret
        self.algorithm = algorithm
        self.token_ttl_seconds = token_ttl_seconds

    def issue_token(self, actor: Actor, now: Optional[int] = None) -> str:
        if not self.secret:
            raise AuthError("Token signing is not configured")
        issued = int(now if now is not None else time.time())
        payload = {
            "sub": actor.id,
            "kind": actor.kind.value,
            "iat": issued,
            "exp": issued + self.token_ttl_seconds,
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify_token(self, token: str) -> Actor:
        if not self.secret:
            raise AuthError("Token verification is not configured")
        try:
            raw = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError as exc:
            raise SessionExpiredError("Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthError(f"Invalid token: {exc}") from exc

        payload = TokenPayload(**raw)
        return Actor(id=payload.sub, kind=payload.kind)

    def verify_wallet(self, message: str, signature: str, address: Optional[str] = None) -> Actor:
        """Check a signed sign-in message and return the wallet actor.

        When ``address`` is given it must match the address in the message.
        """
        try:
            parsed = parse_solana_signin_message(message)
        except ValueError as exc:
            raise AuthError(str(exc)) from exc

        if address and address != parsed.address:
            raise InvalidSignatureError("Wallet address does not match the signed message")
        if parsed.is_expired():
            raise SessionExpiredError("Sign-in message has expired")

        try:
            verify_solana_signature(message, signature, parsed.address)
        except ValueError as exc:
            raise InvalidSignatureError(str(exc)) from exc
        return Actor(id=parsed.address, kind=ActorKind.WALLET)


@lru_cache
def get_auth_service() -> AuthService:
    return AuthService(
        secret=settings.auth_jwt_secret,
        algorithm=settings.auth_jwt_algorithm,
        token_ttl_seconds=settings.auth_token_ttl_seconds,
    )
