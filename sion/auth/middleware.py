"""
FastAPI authentication dependencies.
"""

import base64
import binascii
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .models import Actor, AuthError
from .service import AuthService, get_auth_service


# HTTP Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


def _decode_wallet_message(raw: str) -> str:
    # Sign-in messages span several lines, so the header carries them base64 encoded.
    try:
        return base64.b64decode(raw, validate=True).decode("utf-8")
    except (ValueError, binascii.Error) as exc:
        raise AuthError("X-Wallet-Message must be base64 encoded") from exc


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    wallet_address: Optional[str] = Header(default=None, alias="X-Wallet-Address"),
    wallet_message: Optional[str] = Header(default=None, alias="X-Wallet-Message"),
    wallet_signature: Optional[str] = Header(default=None, alias="X-Wallet-Signature"),
    auth_service: AuthService = Depends(get_auth_service),
) -> Optional[Actor]:
    """
    Resolve the caller from a bearer token or wallet headers.

    Returns None when no credentials are sent. Invalid credentials are a 401.
    """
    try:
        if credentials is not None:
            return auth_service.verify_token(credentials.credentials)
        if wallet_address and wallet_message and wallet_signature:
            return auth_service.verify_wallet(
                _decode_wallet_message(wallet_message),
                wallet_signature,
                address=wallet_address,
            )
    except AuthError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
    return None


async def require_actor(actor: Optional[Actor] = Depends(get_current_actor)) -> Actor:
    """
    Require an authenticated actor for an endpoint.

    Raises HTTPException 401 if not authenticated.
    """
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor
