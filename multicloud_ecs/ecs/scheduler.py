"""
Request-to-provider scheduling.

A scheduler picks exactly one provider client for a creation request. The
fixed strategy routes on the request's provider hint. Cost- or
availability-aware strategies plug in behind the same interface and may
ignore the hint.
"""

import logging
from abc import ABC, abstractmethod

from .base import CreateInstanceRequest
from .client import ProviderClient
from .errors import (
    EcsValidationError,
    ErrorCode,
    NotImplementedCapabilityError,
    ProviderRequiredError,
    ProviderUnavailableError,
)
from .registry import ProviderRegistry


class Scheduler(ABC):
    """Selects a provider client for a request."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    def select(self, request: CreateInstanceRequest) -> ProviderClient:
        """
        Select a client. Must not mutate the request or the registry.

        Raises:
            SchedulingError: If no usable client can be selected
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Scheduler name."""

    @property
    def description(self) -> str:
        return self.name

    @property
    def requires_provider_hint(self) -> bool:
        """Whether requests must name a provider."""
        return True


class FixedScheduler(Scheduler):
    """Routes to the provider named in the request."""

    def select(self, request: CreateInstanceRequest) -> ProviderClient:
        provider = request.provider
        if provider is None or not provider.strip():
            raise ProviderRequiredError(
                f"{self.name} requires a provider code on the request"
            )

        client = self.registry.get(provider)

        if not client.is_available():
            raise ProviderUnavailableError(f"Provider client unavailable: {provider}")

        self.logger.debug(
            f"Selected provider {client.provider_code}",
            extra={
                "provider_code": client.provider_code,
                "scheduler": self.name,
                "client": type(client.backend).__name__,
            },
        )
        return client

    @property
    def name(self) -> str:
        return "FixedScheduler"

    @property
    def description(self) -> str:
        return "Fixed scheduler - routes directly to the requested provider"


SCHEDULER_TYPES = {
    "fixed": FixedScheduler,
}

# Strategies with a reserved name but no implementation yet
RESERVED_SCHEDULER_TYPES = ("cost", "availability")


def create_scheduler(scheduler_type: str, registry: ProviderRegistry) -> Scheduler:
    """Build a scheduler by configured type name."""
    key = (scheduler_type or "").strip().lower()
    if key in SCHEDULER_TYPES:
        return SCHEDULER_TYPES[key](registry)
    if key in RESERVED_SCHEDULER_TYPES:
        raise NotImplementedCapabilityError(
            f"Scheduler type '{key}' is not implemented yet"
        )
    raise EcsValidationError(
        ErrorCode.INVALID_SCHEDULER,
        f"Unknown scheduler type '{scheduler_type}', "
        f"expected one of {sorted(SCHEDULER_TYPES)}",
    )
