from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import AppServices, get_services
from ..providers.llm import get_available_providers

router = APIRouter()


@router.get("/healthz")
async def health_check(services: AppServices = Depends(get_services)) -> Dict[str, Any]:
    """Health check endpoint that verifies provider status"""
    provider_status: Dict[str, Any] = {}
    for provider in services.providers:
        provider_status[provider.name] = await provider.health_check()

    rpc_status = await services.rpc.health_check() if services.rpc is not None else {"status": "unavailable"}

    llm = get_available_providers(services.settings)
    llm_ready = any(info["status"] == "available" for info in llm.values())

    available_providers = sum(
        1 for status in provider_status.values()
        if status["status"] in ("healthy", "configured")
    )

    return {
        "status": "healthy" if llm_ready and rpc_status["status"] == "healthy" else "degraded",
        "providers": provider_status,
        "available_providers": available_providers,
        "total_providers": len(provider_status),
        "llm": llm,
        "rpc": rpc_status,
        "agent": {"identity": services.agent.identity or None},
        "protection": services.pipeline.config.to_dict(),
        "errors": services.error_tracker.snapshot(),
    }
