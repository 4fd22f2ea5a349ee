from .base import ChainClient, ChainClientError, Provider
from .solana import SolanaRpcClient

__all__ = ["ChainClient", "ChainClientError", "Provider", "SolanaRpcClient"]
