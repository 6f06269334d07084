"""
Provider client lifecycle.

A vendor integration implements ``ProviderBackend``: a small set of hooks
that talk to the vendor. ``ProviderClient`` wraps a backend and gives every
operation the same lifecycle: precondition checks, structured start and
outcome logging, and error normalization. Anything the backend raises that is
not already an ``EcsError`` is wrapped into an operation-specific
``<OPERATION>_FAILED`` error carrying the provider code.
"""

import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .base import (
    CreateInstanceRequest,
    LookupResult,
    NetworkResources,
    PriceInfo,
    VirtualMachine,
)
from .errors import (
    EcsError,
    EcsValidationError,
    ErrorCode,
    NotImplementedCapabilityError,
    ProviderOperationError,
)
from .network import NetworkProvisioner
from .tags import TenantTagInjector

T = TypeVar("T")

DEFAULT_PRIORITY = 100


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def validate_create_request(request: Optional[CreateInstanceRequest]) -> None:
    """Check the fields every vendor needs before anything is dispatched."""
    if request is None:
        raise EcsValidationError(
            ErrorCode.REQUEST_NULL, "CreateInstanceRequest must not be None"
        )
    required = (
        (request.tenant_id, ErrorCode.TENANT_ID_REQUIRED, "tenant_id"),
        (request.instance_name, ErrorCode.INSTANCE_NAME_REQUIRED, "instance_name"),
        (request.region, ErrorCode.REGION_REQUIRED, "region"),
        (request.image_key, ErrorCode.IMAGE_REQUIRED, "image_key"),
        (request.user_id, ErrorCode.USER_ID_REQUIRED, "user_id"),
    )
    for value, code, field_name in required:
        if _is_blank(value):
            raise EcsValidationError(code, f"{field_name} must not be blank")


class ProviderBackend(ABC):
    """Vendor-specific operations plugged into a ``ProviderClient``."""

    @property
    @abstractmethod
    def provider_code(self) -> str:
        """Short uppercase vendor code used for registration and routing."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human readable vendor name."""

    @property
    def priority(self) -> int:
        """Scheduling priority, lower is preferred."""
        return DEFAULT_PRIORITY

    def is_available(self) -> bool:
        """Whether this backend is configured well enough to take traffic."""
        return True

    async def calculate_price(self, request: CreateInstanceRequest) -> PriceInfo:
        """Quote a price. Vendors without a pricing integration must not return zero."""
        raise NotImplementedCapabilityError(
            f"Price calculation is not implemented for {self.provider_code}",
            provider_code=self.provider_code,
        )

    @abstractmethod
    async def create_instance(
        self,
        request: CreateInstanceRequest,
        network: Optional[NetworkResources] = None,
    ) -> VirtualMachine:
        """
        Create an instance. Returns as soon as the vendor accepted the request.

        Args:
            request: Validated and tagged request
            network: Owner network triple when the client provisions networks
        """

    @abstractmethod
    async def delete_instance(self, instance_id: str) -> bool:
        """Delete an instance."""

    @abstractmethod
    async def start_instance(self, instance_id: str) -> bool:
        """Start a stopped instance."""

    @abstractmethod
    async def stop_instance(self, instance_id: str) -> bool:
        """Stop a running instance."""

    @abstractmethod
    async def restart_instance(self, instance_id: str) -> bool:
        """Reboot an instance."""

    @abstractmethod
    async def get_instance(self, instance_id: str) -> Optional[VirtualMachine]:
        """Describe an instance, or None if the vendor does not know it."""

    @abstractmethod
    async def find_instance_id_by_name(self, instance_name: str) -> Optional[str]:
        """Resolve an instance name to a vendor instance id."""


class ProviderClient:
    """Uniform lifecycle around a vendor backend."""

    def __init__(
        self,
        backend: ProviderBackend,
        tag_injector: Optional[TenantTagInjector] = None,
        network: Optional[NetworkProvisioner] = None,
    ):
        self.backend = backend
        self.tag_injector = tag_injector or TenantTagInjector()
        self.network = network
        self.logger = logging.getLogger(
            f"{self.__class__.__name__}:{backend.provider_code}"
        )

    @property
    def provider_code(self) -> str:
        return self.backend.provider_code

    @property
    def provider_name(self) -> str:
        return self.backend.provider_name

    @property
    def priority(self) -> int:
        return self.backend.priority

    def is_available(self) -> bool:
        return self.backend.is_available()

    async def calculate_price(self, request: CreateInstanceRequest) -> PriceInfo:
        validate_create_request(request)
        return await self._run(
            "calculate_price",
            ErrorCode.CALCULATE_PRICE_FAILED,
            lambda: self.backend.calculate_price(request),
            {
                "instance_name": request.instance_name,
                "instance_type": request.instance_type,
                "region": request.region,
            },
        )

    async def create_instance(
        self, request: CreateInstanceRequest, correlation_id: Optional[str] = None
    ) -> VirtualMachine:
        """
        Create an instance through the backend.

        When a network provisioner is attached, the owner's network triple is
        resolved first and public address binding and port opening run
        afterwards as best-effort steps.
        """
        validate_create_request(request)
        self.tag_injector.inject(request)

        resources: Optional[NetworkResources] = None
        if self.network is not None:
            network = self.network
            resources = await self._run(
                "ensure_network_resources",
                ErrorCode.NETWORK_CREATE_FAILED,
                lambda: network.ensure_network_resources(
                    request.user_id,  # type: ignore[arg-type]
                    request.region,  # type: ignore[arg-type]
                    request.zone,
                    request.tags,
                    correlation_id=correlation_id,
                ),
                {"user_id": request.user_id, "region": request.region},
            )

        vm = await self._run(
            "create_instance",
            ErrorCode.CREATE_FAILED,
            lambda: self.backend.create_instance(request, resources),
            {
                "instance_name": request.instance_name,
                "tenant_id": request.tenant_id,
                "user_id": request.user_id,
                "region": request.region,
                "image_key": request.image_key,
                "gpu_model": request.gpu_model,
            },
        )
        self.logger.info(
            f"[{self.provider_code}] Instance accepted: {vm.instance_id}",
            extra={
                "provider_code": self.provider_code,
                "instance_id": vm.instance_id,
                "instance_name": vm.instance_name,
                "status": vm.status.value,
            },
        )

        wants_follow_up = request.allocate_public_ip or bool(request.open_ports)
        if self.network is not None and resources is not None and wants_follow_up:
            if not vm.instance_id:
                self.logger.warning(
                    f"[{self.provider_code}] Skipping post-provisioning, "
                    "backend returned no instance id",
                    extra={"provider_code": self.provider_code},
                )
                return vm
            outcome = await self.network.finish_provisioning(
                vm.instance_id,
                request.region,  # type: ignore[arg-type]
                resources,
                allocate_public_ip=request.allocate_public_ip,
                open_ports=request.open_ports,
                bandwidth=request.public_ip_bandwidth,
                correlation_id=correlation_id,
            )
            if outcome.public_address:
                vm = vm.model_copy(update={"public_ip": outcome.public_address})
        return vm

    async def delete_instance(self, instance_id: str) -> bool:
        return await self._instance_action(
            "delete_instance", ErrorCode.DELETE_FAILED, instance_id,
            self.backend.delete_instance,
        )

    async def start_instance(self, instance_id: str) -> bool:
        return await self._instance_action(
            "start_instance", ErrorCode.START_FAILED, instance_id,
            self.backend.start_instance,
        )

    async def stop_instance(self, instance_id: str) -> bool:
        return await self._instance_action(
            "stop_instance", ErrorCode.STOP_FAILED, instance_id,
            self.backend.stop_instance,
        )

    async def restart_instance(self, instance_id: str) -> bool:
        return await self._instance_action(
            "restart_instance", ErrorCode.RESTART_FAILED, instance_id,
            self.backend.restart_instance,
        )

    async def get_instance(self, instance_id: str) -> Optional[VirtualMachine]:
        return await self._instance_action(
            "get_instance", ErrorCode.GET_INSTANCE_FAILED, instance_id,
            self.backend.get_instance, level=logging.DEBUG,
        )

    async def find_instance_id_by_name(self, instance_name: str) -> Optional[str]:
        if _is_blank(instance_name):
            raise EcsValidationError(
                ErrorCode.INSTANCE_NAME_REQUIRED, "instance_name must not be blank"
            )
        return await self._run(
            "find_instance_id_by_name",
            ErrorCode.FIND_INSTANCE_FAILED,
            lambda: self.backend.find_instance_id_by_name(instance_name),
            {"instance_name": instance_name},
            level=logging.DEBUG,
        )

    async def lookup_instance_id_by_name(self, instance_name: str) -> LookupResult[str]:
        """Like ``find_instance_id_by_name`` but reports failures as a result."""
        try:
            instance_id = await self.find_instance_id_by_name(instance_name)
        except EcsError as e:
            return LookupResult.failed(e, key=instance_name)
        if instance_id is None:
            return LookupResult.not_found(key=instance_name)
        return LookupResult.found(instance_id, key=instance_name)

    async def _instance_action(
        self,
        operation: str,
        error_code: ErrorCode,
        instance_id: str,
        hook: Callable[[str], Awaitable[T]],
        level: int = logging.INFO,
    ) -> T:
        if _is_blank(instance_id):
            raise EcsValidationError(
                ErrorCode.INSTANCE_ID_REQUIRED, "instance_id must not be blank"
            )
        return await self._run(
            operation,
            error_code,
            lambda: hook(instance_id),
            {"instance_id": instance_id},
            level=level,
        )

    async def _run(
        self,
        operation: str,
        error_code: ErrorCode,
        call: Callable[[], Awaitable[T]],
        context: dict[str, Any],
        level: int = logging.INFO,
    ) -> T:
        """Execute a backend hook with logging and error normalization."""
        log_context = {
            "provider_code": self.provider_code,
            "operation": operation,
            **context,
        }
        start_time = time.monotonic()
        self.logger.log(
            level,
            f"[{self.provider_code}] {operation} started",
            extra={**log_context, "phase": "start"},
        )

        try:
            result = await call()
        except EcsError as e:
            self.logger.error(
                f"[{self.provider_code}] {operation} failed: {e.message}",
                extra={
                    **log_context,
                    "phase": "error",
                    "error_code": e.error_code,
                    "request_id": e.request_id,
                    "duration_seconds": time.monotonic() - start_time,
                },
            )
            raise
        except Exception as e:
            self.logger.error(
                f"[{self.provider_code}] {operation} raised unexpectedly",
                exc_info=True,
                extra={
                    **log_context,
                    "phase": "unexpected_error",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                    "duration_seconds": time.monotonic() - start_time,
                },
            )
            raise ProviderOperationError(
                f"{operation} failed: {e}",
                provider_code=self.provider_code,
                error_code=error_code,
                cloud_error_message=str(e),
            ) from e

        self.logger.log(
            level,
            f"[{self.provider_code}] {operation} completed",
            extra={
                **log_context,
                "phase": "success",
                "duration_seconds": time.monotonic() - start_time,
            },
        )
        return result
