from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..services.monitoring import WalletMonitor, get_wallet_monitor

router = APIRouter()


@router.get("/healthz")
async def health_check(monitor: WalletMonitor = Depends(get_wallet_monitor)) -> Dict[str, Any]:
    """Health check endpoint that reports chain client and monitor status"""

    try:
        provider_status = await monitor.client.health_check()
    except Exception as exc:  # noqa: BLE001
        provider_status = {"status": "error", "error": str(exc)}

    provider_ok = provider_status.get("status") in ["healthy", "configured"]
    monitor_status = monitor.status()

    return {
        "status": "healthy" if provider_ok and monitor_status["running"] else "degraded",
        "provider": provider_status,
        "monitor": monitor_status,
    }
