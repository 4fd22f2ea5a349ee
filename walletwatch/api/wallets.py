"""
Wallet Monitoring API Endpoints

Thin REST surface over the shared WalletMonitor: manage the watch set,
seed it from a token's holders, trigger a reap and read recommendations.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from ..services.address import is_valid_solana_address, normalize_address
from ..services.decisions import TokenScore, TokenScorer
from ..services.monitoring import WalletMonitor, get_wallet_monitor

router = APIRouter(tags=["Wallets"])


# =============================================================================
# Request/Response Models
# =============================================================================


class AddWalletRequest(BaseModel):
    address: str = Field(..., description="Solana wallet address")


class AddWalletResponse(BaseModel):
    address: str
    added: bool


class RemoveWalletResponse(BaseModel):
    address: str
    removed: bool


class WalletListResponse(BaseModel):
    monitored: List[str]
    active: List[str]
    count: int


class HolderScanResponse(BaseModel):
    mint: str
    holders: List[str]
    count: int


class RecommendationsResponse(BaseModel):
    wallets: int
    tokens: List[TokenScore]


# =============================================================================
# Dependencies
# =============================================================================


def get_token_scorer(monitor: WalletMonitor = Depends(get_wallet_monitor)) -> TokenScorer:
    return TokenScorer(monitor.validator)


def _require_address(value: str, label: str = "address") -> str:
    value = normalize_address(value)
    if not is_valid_solana_address(value):
        raise HTTPException(status_code=400, detail=f"Invalid Solana {label}: {value}")
    return value


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/wallets", response_model=WalletListResponse)
async def list_wallets(monitor: WalletMonitor = Depends(get_wallet_monitor)) -> WalletListResponse:
    """List monitored wallets and the subset active within the TTL."""
    monitored = monitor.get_monitored_wallets()
    return WalletListResponse(
        monitored=monitored,
        active=monitor.get_active_wallets(),
        count=len(monitored),
    )


@router.post("/wallets", response_model=AddWalletResponse)
async def add_wallet(
    request: AddWalletRequest,
    monitor: WalletMonitor = Depends(get_wallet_monitor),
) -> AddWalletResponse:
    address = normalize_address(request.address)
    added = await monitor.add_wallet(address)
    return AddWalletResponse(address=address, added=added)


@router.delete("/wallets/{address}", response_model=RemoveWalletResponse)
async def remove_wallet(
    address: str,
    monitor: WalletMonitor = Depends(get_wallet_monitor),
) -> RemoveWalletResponse:
    address = normalize_address(address)
    removed = await monitor.remove_wallet(address)
    return RemoveWalletResponse(address=address, removed=removed)


@router.post("/tokens/{mint}/holders", response_model=HolderScanResponse)
async def scan_token_holders(
    mint: str,
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Holder accounts to consider"),
    monitor: WalletMonitor = Depends(get_wallet_monitor),
) -> HolderScanResponse:
    """Start monitoring the owners of a token's holder accounts."""
    mint = _require_address(mint, "token mint")
    holders = await monitor.discover_top_holders(mint, limit=limit)
    return HolderScanResponse(mint=mint, holders=holders, count=len(holders))


@router.get("/recommendations", response_model=RecommendationsResponse)
async def get_recommendations(
    monitor: WalletMonitor = Depends(get_wallet_monitor),
    scorer: TokenScorer = Depends(get_token_scorer),
) -> RecommendationsResponse:
    """Rank tokens held across the watched wallets."""
    wallets = monitor.get_watched_wallets()
    tokens = await scorer.score_tokens(wallets)
    return RecommendationsResponse(wallets=len(wallets), tokens=tokens)


@router.post("/reap")
async def run_reaper(monitor: WalletMonitor = Depends(get_wallet_monitor)) -> Dict[str, Any]:
    """Run one inactivity sweep now and return its report."""
    report = await monitor.reap()
    return report.to_dict()
