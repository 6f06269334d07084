"""
Virtual machine control plane across cloud vendors.

Callers create and manage instances through ``MultiCloudEcsService``. Vendor
clients are registered in a ``ProviderRegistry`` and picked by a
``Scheduler``; each client runs its vendor backend under one lifecycle and
resolves per-user network resources before creation.
"""

from .base import (
    BandwidthMode,
    CreateInstanceRequest,
    InstanceChargeMode,
    LookupResult,
    LookupStatus,
    NetworkResources,
    PriceInfo,
    ProviderCode,
    VirtualMachine,
    VmStatus,
)
from .client import ProviderBackend, ProviderClient
from .errors import (
    EcsError,
    EcsValidationError,
    ErrorCode,
    NotImplementedCapabilityError,
    ProviderNotFoundError,
    ProviderOperationError,
    ProviderRequiredError,
    ProviderUnavailableError,
    QuotaExceededError,
    SchedulingError,
)
from .factory import build_service
from .network import NetworkApi, NetworkProvisioner, PostProvisioningOutcome
from .registry import ProviderRegistry
from .scheduler import FixedScheduler, Scheduler, create_scheduler
from .service import MultiCloudEcsService
from .tags import TenantTagInjector

__all__ = [
    "BandwidthMode",
    "CreateInstanceRequest",
    "InstanceChargeMode",
    "LookupResult",
    "LookupStatus",
    "NetworkResources",
    "PriceInfo",
    "ProviderCode",
    "VirtualMachine",
    "VmStatus",
    "ProviderBackend",
    "ProviderClient",
    "EcsError",
    "EcsValidationError",
    "ErrorCode",
    "NotImplementedCapabilityError",
    "ProviderNotFoundError",
    "ProviderOperationError",
    "ProviderRequiredError",
    "ProviderUnavailableError",
    "QuotaExceededError",
    "SchedulingError",
    "build_service",
    "NetworkApi",
    "NetworkProvisioner",
    "PostProvisioningOutcome",
    "ProviderRegistry",
    "FixedScheduler",
    "Scheduler",
    "create_scheduler",
    "MultiCloudEcsService",
    "TenantTagInjector",
]
