from pathlib import Path
from typing import Any, Literal

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

SOLANA_RPC_ENDPOINTS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("solana_network", mode="before")
    @classmethod
    def _normalize_network(cls, value: Any) -> Any:
        """Accept the cluster name used by the public RPC hosts (``mainnet-beta``)."""

        if isinstance(value, str):
            value = value.strip().lower()
            if value == "mainnet-beta":
                return "mainnet"
        return value

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Solana network
    solana_network: Literal["mainnet", "devnet"] = Field(
        default="mainnet",
        description="Cluster to watch",
        validation_alias=AliasChoices("solana_network", "network", "SOLANA_NETWORK", "NETWORK"),
    )
    solana_rpc_url: str = Field(
        default="",
        description="Override the JSON-RPC HTTP endpoint derived from solana_network",
    )
    solana_ws_url: str = Field(
        default="",
        description="Override the pubsub websocket endpoint derived from the RPC URL",
    )
    solana_commitment: Literal["processed", "confirmed", "finalized"] = Field(
        default="confirmed",
        description="Commitment level for reads and subscriptions",
    )
    rpc_timeout_seconds: float = Field(default=30, gt=0, description="JSON-RPC request timeout")
    ws_reconnect_max_delay_seconds: float = Field(
        default=60,
        gt=0,
        description="Upper bound for the pubsub reconnect backoff",
    )

    # Monitoring
    significance_threshold: float = Field(
        default=1.0,
        ge=0,
        description="Native-unit value above which an event is significant",
    )
    inactivity_ttl_seconds: float = Field(
        default=86400,
        gt=0,
        description="Wallets quiet for longer than this are reaped (default: 24 hours)",
    )
    reap_interval_seconds: float = Field(
        default=3600,
        gt=0,
        description="How often the reaper sweeps (default: 1 hour)",
    )
    min_wallet_balance: float = Field(
        default=0.01,
        ge=0,
        description="Minimum native balance for a wallet to be accepted",
    )
    min_holder_scan_count: int = Field(
        default=100,
        ge=1,
        description="Maximum token accounts considered by a holder scan",
    )
    event_channel_size: int = Field(
        default=1000,
        ge=1,
        description="Queue bound for each significant-activity channel",
    )

    # Token scoring
    min_confidence: float = Field(
        default=0.75,
        ge=0,
        le=1,
        description="Minimum insight confidence for a scored token when an insight provider is set",
    )

    monitor_autostart: bool = Field(
        default=True,
        description="Start the wallet monitor alongside FastAPI",
    )

    @property
    def rpc_http_url(self) -> str:
        if self.solana_rpc_url:
            return self.solana_rpc_url
        return SOLANA_RPC_ENDPOINTS[self.solana_network]

    @property
    def rpc_ws_url(self) -> str:
        if self.solana_ws_url:
            return self.solana_ws_url
        http_url = self.rpc_http_url
        if http_url.startswith("https://"):
            return "wss://" + http_url[len("https://"):]
        if http_url.startswith("http://"):
            return "ws://" + http_url[len("http://"):]
        return http_url


# Global settings instance
settings = Settings()
