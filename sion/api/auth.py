"""
Authentication API endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from ..auth import Actor, AuthError, AuthService, get_auth_service, require_actor
from ..types import WalletSignInRequest, WalletSignInResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/wallet", response_model=WalletSignInResponse)
async def wallet_sign_in(
    request: WalletSignInRequest,
    auth_service: AuthService = Depends(get_auth_service),
):
    """
    Verify a signed Sign-In with Solana message and issue a session token.

    The wallet address in the message becomes the actor id.
    """
    try:
        actor = auth_service.verify_wallet(request.message, request.signature)
        token = auth_service.issue_token(actor)
    except AuthError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

    return WalletSignInResponse(
        access_token=token,
        expires_in=auth_service.token_ttl_seconds,
        actor_id=actor.id,
    )


@router.get("/me", response_model=Actor)
async def current_actor(actor: Actor = Depends(require_actor)):
    return actor
