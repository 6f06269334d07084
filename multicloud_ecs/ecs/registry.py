"""
Provider registry.

Maps normalized provider codes to provider clients. This is the single source
of truth for which backends exist and which of them are usable. One registry
is constructed at process start and handed to the scheduler and the service.
"""

import logging
import threading
from typing import Optional

from .base import LookupResult
from .client import ProviderClient
from .errors import EcsValidationError, ErrorCode, ProviderNotFoundError


def normalize_provider_code(provider_code: Optional[str]) -> str:
    """Trim and uppercase a provider code."""
    if provider_code is None or not provider_code.strip():
        raise EcsValidationError(
            ErrorCode.PROVIDER_CODE_REQUIRED, "provider code must not be blank"
        )
    return provider_code.strip().upper()


class ProviderRegistry:
    """Thread-safe registry of provider clients."""

    def __init__(self):
        """Initialize an empty registry."""
        self._clients: dict[str, ProviderClient] = {}
        self._lock = threading.RLock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def register(
        self, client: ProviderClient, provider_code: Optional[str] = None
    ) -> bool:
        """
        Register a provider client.

        Args:
            client: The client to register
            provider_code: Code to register under; defaults to the client's own

        Returns:
            True if an existing client was replaced
        """
        if client is None:
            raise EcsValidationError(
                ErrorCode.CLIENT_REQUIRED, "provider client must not be None"
            )
        code = normalize_provider_code(provider_code or client.provider_code)

        with self._lock:
            existing = self._clients.get(code)
            self._clients[code] = client

        if existing is not None:
            self.logger.warning(
                f"Provider client replaced: {code}",
                extra={
                    "provider_code": code,
                    "old_client": type(existing.backend).__name__,
                    "new_client": type(client.backend).__name__,
                },
            )
            return True

        self.logger.info(
            f"Registered provider: {code}",
            extra={
                "provider_code": code,
                "provider_name": client.provider_name,
                "client": type(client.backend).__name__,
            },
        )
        return False

    def unregister(self, provider_code: str) -> Optional[ProviderClient]:
        """
        Remove a provider client.

        Returns:
            The removed client, or None if nothing was registered
        """
        code = normalize_provider_code(provider_code)
        with self._lock:
            removed = self._clients.pop(code, None)
        if removed is not None:
            self.logger.info(f"Unregistered provider: {code}")
        return removed

    def lookup(self, provider_code: str) -> LookupResult[ProviderClient]:
        """Look up a client without raising when it is missing."""
        code = normalize_provider_code(provider_code)
        with self._lock:
            client = self._clients.get(code)
        if client is None:
            return LookupResult.not_found(key=code)
        return LookupResult.found(client, key=code)

    def get(self, provider_code: str) -> ProviderClient:
        """
        Get a registered client.

        Raises:
            ProviderNotFoundError: If no client is registered under the code
        """
        result = self.lookup(provider_code)
        if not result.is_found:
            raise ProviderNotFoundError(
                f"Provider client not registered: {result.key}, "
                f"registered providers: {self.list_codes()}"
            )
        return result.value  # type: ignore[return-value]

    def is_registered(self, provider_code: str) -> bool:
        return self.lookup(provider_code).is_found

    def list_codes(self) -> list[str]:
        """List registered provider codes in registration order."""
        with self._lock:
            return list(self._clients.keys())

    def list_clients(self) -> list[ProviderClient]:
        with self._lock:
            return list(self._clients.values())

    def list_available(self) -> list[ProviderClient]:
        """
        List available clients sorted by ascending priority.

        Ties keep registration order. Availability is checked outside the
        lock so a slow vendor check never blocks registration.
        """
        available = [client for client in self.list_clients() if client.is_available()]
        available.sort(key=lambda client: client.priority)
        return available

    def size(self) -> int:
        with self._lock:
            return len(self._clients)

    def clear(self) -> None:
        """Remove all registered clients."""
        with self._lock:
            self._clients.clear()
        self.logger.info("Cleared all provider registrations")
