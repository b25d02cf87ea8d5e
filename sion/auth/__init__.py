from .service import AuthService, get_auth_service
from .models import Actor, ActorKind, AuthError, InvalidSignatureError, SessionExpiredError, TokenPayload
from .middleware import get_current_actor, require_actor

__all__ = [
    "AuthService",
    "get_auth_service",
    "Actor",
    "ActorKind",
    "AuthError",
    "InvalidSignatureError",
    "SessionExpiredError",
    "TokenPayload",
    "get_current_actor",
    "require_actor",
]
