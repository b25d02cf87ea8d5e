"""
Authentication models and exceptions.
"""

from enum import Enum

from pydantic import BaseModel


class AuthError(Exception):
    """Base authentication error."""
    pass


class SessionExpiredError(AuthError):
    """Token has expired."""
    pass


class InvalidSignatureError(AuthError):
    """Wallet signature is invalid."""
    pass


class ActorKind(str, Enum):
    USER = "user"
    WALLET = "wallet"


class Actor(BaseModel):
    """Authenticated caller: a session user or a wallet-only identity."""
    id: str
    kind: ActorKind


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str
    kind: ActorKind = ActorKind.USER
    exp: int
    iat: int
