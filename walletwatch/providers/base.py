from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional


# Pubsub callbacks receive the notification ``value`` and its ``context`` ({"slot": ...}).
NotificationCallback = Callable[[Dict[str, Any], Dict[str, Any]], Any]


class ChainClientError(Exception):
    """Raised for JSON-RPC error objects and transport failures."""

    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.method = method


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class ChainClient(Provider):
    """Read and subscribe access to a Solana cluster.

    Parsed payloads follow the ``jsonParsed`` JSON-RPC encoding. Subscription
    handles are opaque integers owned by the caller until released.
    """

    @abstractmethod
    async def get_account_info(self, address: str) -> Optional[Dict[str, Any]]:
        """Account record ({lamports, owner, executable, ...}) or None if it does not exist"""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Balance in lamports"""
        pass

    @abstractmethod
    async def get_signatures_for_address(self, address: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent signatures first"""
        pass

    @abstractmethod
    async def get_parsed_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        """Parsed transaction or None when the node has no body for the signature"""
        pass

    @abstractmethod
    async def get_parsed_program_accounts(
        self, program_id: str, filters: Optional[List[Dict[str, Any]]] = None
    ) -> List[Dict[str, Any]]:
        """Accounts owned by ``program_id`` as [{pubkey, account}]"""
        pass

    @abstractmethod
    async def get_parsed_token_accounts_by_owner(self, owner: str, program_id: str) -> List[Dict[str, Any]]:
        """Token accounts held by ``owner`` as [{pubkey, account}]"""
        pass

    @abstractmethod
    async def on_account_change(self, address: str, callback: NotificationCallback) -> int:
        pass

    @abstractmethod
    async def on_logs(self, address: str, callback: NotificationCallback) -> int:
        pass

    @abstractmethod
    async def remove_account_change_listener(self, handle: int) -> None:
        pass

    @abstractmethod
    async def remove_on_logs_listener(self, handle: int) -> None:
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
