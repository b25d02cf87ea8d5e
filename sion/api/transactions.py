"""
Transaction pipeline read API and the operator's protection control.
"""

import hmac
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..auth import Actor, require_actor
from ..core.errors import NotFound
from ..core.transactions import ProtectionConfig, ProtectionStrategy, TxStatus
from ..dependencies import AppServices, get_services

router = APIRouter()


class ProtectionUpdate(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    enabled: bool
    strategy: ProtectionStrategy
    max_priority_fee: int = Field(ge=0)
    bundle_size: int = Field(default=3, ge=1, le=5)
    delay_ms: int = Field(default=0, ge=0)


def require_operator(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
    services: AppServices = Depends(get_services),
) -> None:
    expected = services.settings.admin_token
    if not expected:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Protection changes are disabled")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid admin token")


@router.get("/transactions/protection")
async def get_protection(services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    return services.pipeline.config.to_dict()


@router.put("/transactions/protection", dependencies=[Depends(require_operator)])
async def update_protection(
    update: ProtectionUpdate,
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    try:
        config = ProtectionConfig(
            enabled=update.enabled,
            strategy=update.strategy,
            max_priority_fee=update.max_priority_fee,
            bundle_size=update.bundle_size,
            delay_ms=update.delay_ms,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    previous = services.pipeline.reconfigure(config)
    return {"previous": previous.to_dict(), "current": config.to_dict()}


@router.get("/transactions")
async def list_transactions(
    status_filter: Optional[TxStatus] = Query(default=None, alias="status"),
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
) -> List[Dict[str, Any]]:
    items = services.pipeline.list(owner_id=actor.id, status=status_filter)
    return [item.to_dict() for item in items]


@router.get("/transactions/{tx_id}")
async def get_transaction(
    tx_id: str,
    actor: Actor = Depends(require_actor),
    services: AppServices = Depends(get_services),
) -> Dict[str, Any]:
    pending = services.pipeline.get(tx_id)
    if pending.owner_id != actor.id:
        raise NotFound(f"Transaction {tx_id} not found")
    if pending.status in (TxStatus.SUBMITTED, TxStatus.TIMED_OUT):
        pending = await services.pipeline.refresh(tx_id)
    return pending.to_dict()
