"""
Domain errors for the multi-cloud ECS layer.

Every failure that crosses a public boundary of this package is an
``EcsError`` carrying the provider code, a machine-readable error code and,
where the vendor supplied them, the raw vendor message and request id.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes."""

    # Validation
    REQUEST_NULL = "REQUEST_NULL"
    TENANT_ID_REQUIRED = "TENANT_ID_REQUIRED"
    USER_ID_REQUIRED = "USER_ID_REQUIRED"
    INSTANCE_NAME_REQUIRED = "INSTANCE_NAME_REQUIRED"
    REGION_REQUIRED = "REGION_REQUIRED"
    IMAGE_REQUIRED = "IMAGE_REQUIRED"
    INSTANCE_ID_REQUIRED = "INSTANCE_ID_REQUIRED"
    PROVIDER_CODE_REQUIRED = "PROVIDER_CODE_REQUIRED"
    CLIENT_REQUIRED = "CLIENT_REQUIRED"
    INVALID_SCHEDULER = "INVALID_SCHEDULER"

    # Scheduling
    PROVIDER_REQUIRED = "PROVIDER_REQUIRED"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"

    # Vendor operations
    CREATE_FAILED = "CREATE_FAILED"
    DELETE_FAILED = "DELETE_FAILED"
    START_FAILED = "START_FAILED"
    STOP_FAILED = "STOP_FAILED"
    RESTART_FAILED = "RESTART_FAILED"
    GET_INSTANCE_FAILED = "GET_INSTANCE_FAILED"
    FIND_INSTANCE_FAILED = "FIND_INSTANCE_FAILED"
    CALCULATE_PRICE_FAILED = "CALCULATE_PRICE_FAILED"
    NETWORK_CREATE_FAILED = "NETWORK_CREATE_FAILED"
    INSTANCE_NOT_FOUND = "INSTANCE_NOT_FOUND"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"

    NOT_IMPLEMENTED = "NOT_IMPLEMENTED"


# Pseudo provider codes used for errors raised before a vendor is involved
VALIDATION_SOURCE = "VALIDATION"
SCHEDULER_SOURCE = "SCHEDULER"
REGISTRY_SOURCE = "REGISTRY"

QUOTA_MARKER = "QuotaExceeded"
NETWORK_RESOURCE_MARKERS = ("Vpc", "VSwitch", "Subnet", "SecurityGroup")


class EcsError(Exception):
    """Base exception for all multi-cloud ECS errors."""

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        error_code: Optional[str] = None,
        cloud_error_message: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.provider_code = provider_code
        self.error_code = (
            error_code.value if isinstance(error_code, ErrorCode) else error_code
        )
        self.cloud_error_message = cloud_error_message
        self.request_id = request_id

    def is_quota_exceeded(self) -> bool:
        """Whether this error reports an exhausted vendor quota."""
        if self.error_code == ErrorCode.QUOTA_EXCEEDED.value:
            return True
        return bool(
            self.cloud_error_message and QUOTA_MARKER in self.cloud_error_message
        )

    def is_network_quota_exceeded(self) -> bool:
        """Whether this is a quota error on a network resource."""
        if not self.is_quota_exceeded():
            return False
        text = self.cloud_error_message or self.message
        return any(marker in text for marker in NETWORK_RESOURCE_MARKERS)

    def __repr__(self) -> str:
        parts = []
        if self.provider_code:
            parts.append(f"provider={self.provider_code!r}")
        if self.error_code:
            parts.append(f"error_code={self.error_code!r}")
        if self.request_id:
            parts.append(f"request_id={self.request_id!r}")
        parts.append(f"message={self.message!r}")
        return f"{self.__class__.__name__}({', '.join(parts)})"


class EcsValidationError(EcsError):
    """A required field is missing or malformed. Raised before any dispatch."""

    def __init__(self, error_code: ErrorCode, message: str):
        super().__init__(
            message, provider_code=VALIDATION_SOURCE, error_code=error_code
        )


class SchedulingError(EcsError):
    """No usable provider client could be selected."""


class ProviderRequiredError(SchedulingError):
    """The active scheduler needs a provider hint and none was given."""

    def __init__(self, message: str, provider_code: str = SCHEDULER_SOURCE):
        super().__init__(
            message,
            provider_code=provider_code,
            error_code=ErrorCode.PROVIDER_REQUIRED,
        )


class ProviderNotFoundError(SchedulingError):
    """No client is registered under the requested provider code."""

    def __init__(self, message: str):
        super().__init__(
            message,
            provider_code=REGISTRY_SOURCE,
            error_code=ErrorCode.PROVIDER_NOT_FOUND,
        )


class ProviderUnavailableError(SchedulingError):
    """A client is registered but reports itself unavailable."""

    def __init__(self, message: str):
        super().__init__(
            message,
            provider_code=SCHEDULER_SOURCE,
            error_code=ErrorCode.PROVIDER_UNAVAILABLE,
        )


class ProviderOperationError(EcsError):
    """A vendor operation failed."""


class QuotaExceededError(ProviderOperationError):
    """A vendor refused the operation because a capacity limit was reached."""

    def __init__(
        self,
        message: str,
        provider_code: Optional[str] = None,
        cloud_error_message: Optional[str] = None,
        request_id: Optional[str] = None,
    ):
        super().__init__(
            message,
            provider_code=provider_code,
            error_code=ErrorCode.QUOTA_EXCEEDED,
            cloud_error_message=cloud_error_message,
            request_id=request_id,
        )


class NotImplementedCapabilityError(EcsError):
    """The vendor client has not wired up the requested capability."""

    def __init__(self, message: str, provider_code: Optional[str] = None):
        super().__init__(
            message,
            provider_code=provider_code,
            error_code=ErrorCode.NOT_IMPLEMENTED,
        )
