"""
Core data model for the multi-cloud ECS layer.

These types normalize away vendor differences: a single request shape for
instance creation, a single instance snapshot shape, and a single status
vocabulary shared by every provider.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import REGISTRY_SOURCE, EcsError, ErrorCode

T = TypeVar("T")


class ProviderCode(Enum):
    """Known cloud vendor codes. The registry accepts codes outside this list."""

    ALIYUN = ("ALIYUN", "Alibaba Cloud")
    TENCENT = ("TENCENT", "Tencent Cloud")
    HUAWEI = ("HUAWEI", "Huawei Cloud")
    AWS = ("AWS", "Amazon Web Services")
    SCC = ("SCC", "China Mobile Cloud (Suzhou)")
    MOBILECLOUD = ("MOBILECLOUD", "China Mobile Cloud")

    def __init__(self, code: str, display_name: str):
        self.code = code
        self.display_name = display_name

    @classmethod
    def from_code(cls, code: Optional[str]) -> Optional["ProviderCode"]:
        if code is None:
            return None
        normalized = code.strip().upper()
        for provider in cls:
            if provider.code == normalized:
                return provider
        return None

    @classmethod
    def is_valid_code(cls, code: Optional[str]) -> bool:
        return cls.from_code(code) is not None


class VmStatus(str, Enum):
    """Normalized virtual machine status."""

    PENDING = "PENDING"
    STARTING = "STARTING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    REBOOTING = "REBOOTING"
    DELETING = "DELETING"
    DELETED = "DELETED"
    ERROR = "ERROR"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def from_code(cls, code: Optional[str]) -> "VmStatus":
        if code is None:
            return cls.UNKNOWN
        try:
            return cls(code.strip().upper())
        except ValueError:
            return cls.UNKNOWN

    def is_final_state(self) -> bool:
        """No further vendor-driven transition is expected without caller action."""
        return self in (VmStatus.RUNNING, VmStatus.STOPPED, VmStatus.DELETED, VmStatus.ERROR)

    def is_operable_state(self) -> bool:
        """Eligible for start/stop/restart."""
        return self in (VmStatus.RUNNING, VmStatus.STOPPED)


class BandwidthMode(str, Enum):
    """Public bandwidth billing mode."""

    TRAFFIC = "TRAFFIC"  # pay per GB transferred
    FIXED = "FIXED"  # pay for a fixed Mbps cap

    @classmethod
    def from_code(cls, code: Optional[str]) -> Optional["BandwidthMode"]:
        if code is None:
            return None
        try:
            return cls(code.strip().upper())
        except ValueError:
            return None


class InstanceChargeMode(str, Enum):
    """Instance billing mode."""

    ON_DEMAND = "ON_DEMAND"
    PREPAID = "PREPAID"

    @classmethod
    def from_code(cls, code: Optional[str]) -> Optional["InstanceChargeMode"]:
        if code is None:
            return None
        try:
            return cls(code.strip().upper())
        except ValueError:
            return None


class CreateInstanceRequest(BaseModel):
    """Vendor-neutral instance creation request."""

    model_config = ConfigDict(validate_assignment=True)

    provider: Optional[str] = None
    region: Optional[str] = None
    zone: Optional[str] = None
    tenant_id: Optional[str] = None
    user_id: Optional[str] = None
    instance_name: Optional[str] = None

    # Sizing: a named type, or explicit cpu/memory, or a GPU model to map
    instance_type: Optional[str] = None
    gpu_model: Optional[str] = None
    cpu: Optional[int] = Field(default=None, gt=0)
    memory: Optional[int] = Field(default=None, gt=0)  # GB

    image_key: Optional[str] = None
    system_disk_size: Optional[int] = Field(default=None, gt=0)  # GB
    system_disk_type: Optional[str] = None

    allocate_public_ip: bool = False
    open_ports: list[int] = Field(default_factory=list)
    public_ip_bandwidth: Optional[int] = Field(default=None, gt=0)  # Mbps
    bandwidth_mode: BandwidthMode = BandwidthMode.FIXED

    password: Optional[str] = None
    key_pair_name: Optional[str] = None

    instance_charge_mode: InstanceChargeMode = InstanceChargeMode.ON_DEMAND
    duration: Optional[int] = Field(default=None, gt=0)  # months, prepaid only
    quantity: int = Field(default=1, gt=0)

    description: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)
    extensions: dict[str, Any] = Field(default_factory=dict)

    @field_validator("open_ports")
    @classmethod
    def validate_ports(cls, v):
        """Validate port numbers."""
        for port in v:
            if not 1 <= port <= 65535:
                raise ValueError(f"Port out of range: {port}")
        return v

    @field_validator("tags", "extensions", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return {} if v is None else v

    def get_extension(self, key: str, expected_type: type, default: Any = None) -> Any:
        """Return an extension value if present and of the expected type."""
        value = self.extensions.get(key)
        if isinstance(value, expected_type):
            return value
        return default


class VirtualMachine(BaseModel):
    """Point-in-time snapshot of a vendor instance."""

    model_config = ConfigDict(frozen=True)

    instance_id: Optional[str] = None
    instance_name: Optional[str] = None
    status: VmStatus = VmStatus.UNKNOWN
    raw_status: Optional[str] = None  # diagnostic only
    provider: Optional[str] = None
    region: Optional[str] = None
    zone: Optional[str] = None
    instance_type: Optional[str] = None
    image_id: Optional[str] = None
    cpu: Optional[int] = None
    memory: Optional[int] = None
    private_ip: Optional[str] = None
    public_ip: Optional[str] = None
    created_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    tenant_id: Optional[str] = None
    tags: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None
    request_id: Optional[str] = None
    task_id: Optional[str] = None

    @model_validator(mode="after")
    def check_error_implies_error_status(self):
        if self.error_message is not None and self.status != VmStatus.ERROR:
            raise ValueError(
                f"error_message requires status ERROR, got {self.status.value}"
            )
        return self

    @property
    def is_success(self) -> bool:
        return self.status != VmStatus.ERROR and self.error_message is None

    @property
    def is_final_state(self) -> bool:
        return self.status.is_final_state()

    @property
    def is_running(self) -> bool:
        return self.status == VmStatus.RUNNING

    def get_metadata(self, key: str, expected_type: type) -> Any:
        value = self.metadata.get(key)
        return value if isinstance(value, expected_type) else None

    @classmethod
    def error(
        cls, provider: str, error_message: str, request_id: Optional[str] = None
    ) -> "VirtualMachine":
        """Build an error snapshot."""
        return cls(
            provider=provider,
            status=VmStatus.ERROR,
            error_message=error_message,
            request_id=request_id,
        )


class PriceInfo(BaseModel):
    """Freshly computed price quote. Never cached."""

    provider: Optional[str] = None
    region: Optional[str] = None
    instance_type: Optional[str] = None

    instance_price_per_hour: Optional[Decimal] = None
    instance_price_per_month: Optional[Decimal] = None
    system_disk_price_per_gb_per_month: Optional[Decimal] = None
    bandwidth_price_per_mbps_per_month: Optional[Decimal] = None
    traffic_price_per_gb: Optional[Decimal] = None

    total_price_per_hour: Optional[Decimal] = None
    total_price_per_month: Optional[Decimal] = None

    currency: str = "CNY"
    query_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    price_validity_seconds: Optional[int] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass(frozen=True)
class NetworkResources:
    """Tenant-scoped network sandbox, owned by a user rather than a VM."""

    vpc_id: str
    subnet_id: str
    security_group_id: str
    cidr_block: Optional[str] = None
    zone: Optional[str] = None
    created: bool = False


class LookupStatus(Enum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class LookupResult(Generic[T]):
    """Outcome of a read that may legitimately find nothing."""

    status: LookupStatus
    value: Optional[T] = None
    error: Optional[EcsError] = None
    key: Optional[str] = None

    @classmethod
    def found(cls, value: T, key: Optional[str] = None) -> "LookupResult[T]":
        return cls(LookupStatus.FOUND, value=value, key=key)

    @classmethod
    def not_found(cls, key: Optional[str] = None) -> "LookupResult[T]":
        return cls(LookupStatus.NOT_FOUND, key=key)

    @classmethod
    def failed(cls, error: EcsError, key: Optional[str] = None) -> "LookupResult[T]":
        return cls(LookupStatus.ERROR, error=error, key=key)

    @property
    def is_found(self) -> bool:
        return self.status == LookupStatus.FOUND

    def unwrap(self) -> T:
        """Return the value or raise the carried (or a not-found) error."""
        if self.status == LookupStatus.FOUND:
            return self.value  # type: ignore[return-value]
        if self.error is not None:
            raise self.error
        raise EcsError(
            f"Not found: {self.key}",
            provider_code=REGISTRY_SOURCE,
            error_code=ErrorCode.INSTANCE_NOT_FOUND,
        )
