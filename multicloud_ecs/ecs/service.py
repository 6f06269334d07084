"""
Unified multi-cloud ECS service.

The single entry point for callers. Creation runs validate, tag, schedule,
delegate and then stamps provenance on the result. Every other operation
names its provider explicitly and goes straight to the registry.
"""

import logging
import time
import uuid
from typing import Awaitable, Callable, Optional, TypeVar

from ..logging_utils.events import InstanceOperationCompleted, InstanceOperationStarted
from ..logging_utils.log_manager import LogManager
from .base import CreateInstanceRequest, LookupResult, PriceInfo, VirtualMachine
from .client import ProviderClient, validate_create_request
from .errors import (
    VALIDATION_SOURCE,
    EcsError,
    ErrorCode,
    ProviderNotFoundError,
    ProviderOperationError,
    ProviderRequiredError,
)
from .registry import ProviderRegistry
from .scheduler import Scheduler
from .tags import TenantTagInjector

T = TypeVar("T")


class MultiCloudEcsService:
    """Facade over the registry, scheduler and provider clients."""

    def __init__(
        self,
        registry: ProviderRegistry,
        scheduler: Scheduler,
        tag_injector: Optional[TenantTagInjector] = None,
        log_manager: Optional[LogManager] = None,
    ):
        self.registry = registry
        self.scheduler = scheduler
        self.tag_injector = tag_injector or TenantTagInjector()
        self.log_manager = log_manager
        self.logger = logging.getLogger(self.__class__.__name__)

    async def create_instance(self, request: CreateInstanceRequest) -> VirtualMachine:
        """
        Create an instance on the provider chosen by the scheduler.

        Args:
            request: Creation request; its tags are updated with ownership markers

        Returns:
            Snapshot of the accepted instance, normally PENDING

        Raises:
            EcsValidationError: A required field is blank
            SchedulingError: No usable provider could be selected
            ProviderOperationError: The vendor call failed
        """
        self._validate(request)
        self.tag_injector.inject(request)
        client = self.scheduler.select(request)

        correlation_id = str(uuid.uuid4())
        self.logger.info(
            f"Creating instance {request.instance_name} on {client.provider_code}",
            extra={
                "correlation_id": correlation_id,
                "provider_code": client.provider_code,
                "tenant_id": request.tenant_id,
                "user_id": request.user_id,
                "instance_name": request.instance_name,
                "region": request.region,
                "scheduler": self.scheduler.name,
            },
        )
        await self._emit_started(
            correlation_id,
            client.provider_code,
            "create_instance",
            tenant_id=request.tenant_id,
            instance_name=request.instance_name,
        )

        start_time = time.monotonic()
        try:
            vm = await client.create_instance(request, correlation_id=correlation_id)
        except EcsError as e:
            await self._emit_completed(
                correlation_id, client.provider_code, "create_instance",
                start_time, error=e,
            )
            raise
        except Exception as e:
            error = ProviderOperationError(
                f"Failed to create instance: {e}",
                provider_code=client.provider_code,
                error_code=ErrorCode.CREATE_FAILED,
                cloud_error_message=str(e),
            )
            self.logger.error(
                f"Unexpected error creating instance {request.instance_name}",
                exc_info=True,
                extra={
                    "correlation_id": correlation_id,
                    "provider_code": client.provider_code,
                    "error_type": type(e).__name__,
                },
            )
            await self._emit_completed(
                correlation_id, client.provider_code, "create_instance",
                start_time, error=error,
            )
            raise error from e

        vm = self._stamp_provenance(vm, client, request)
        await self._emit_completed(
            correlation_id, client.provider_code, "create_instance", start_time,
            instance_id=vm.instance_id, status=vm.status.value,
        )
        return vm

    async def calculate_price(self, request: CreateInstanceRequest) -> PriceInfo:
        """Quote the request on the provider the scheduler would pick."""
        self._validate(request)
        client = self.scheduler.select(request)
        return await client.calculate_price(request)

    async def delete_instance(self, provider_code: str, instance_id: str) -> bool:
        return await self._audited(
            provider_code, "delete_instance", instance_id,
            lambda client: client.delete_instance(instance_id),
        )

    async def start_instance(self, provider_code: str, instance_id: str) -> bool:
        return await self._audited(
            provider_code, "start_instance", instance_id,
            lambda client: client.start_instance(instance_id),
        )

    async def stop_instance(self, provider_code: str, instance_id: str) -> bool:
        return await self._audited(
            provider_code, "stop_instance", instance_id,
            lambda client: client.stop_instance(instance_id),
        )

    async def restart_instance(self, provider_code: str, instance_id: str) -> bool:
        return await self._audited(
            provider_code, "restart_instance", instance_id,
            lambda client: client.restart_instance(instance_id),
        )

    async def get_instance(
        self, provider_code: str, instance_id: str
    ) -> Optional[VirtualMachine]:
        return await self.registry.get(provider_code).get_instance(instance_id)

    async def find_instance_id_by_name(
        self, provider_code: str, instance_name: str
    ) -> Optional[str]:
        return await self.registry.get(provider_code).find_instance_id_by_name(
            instance_name
        )

    async def lookup_instance_id_by_name(
        self, provider_code: str, instance_name: str
    ) -> LookupResult[str]:
        """Resolve a name without raising for a missing instance or vendor failure."""
        provider = self.registry.lookup(provider_code)
        if not provider.is_found:
            return LookupResult.failed(
                ProviderNotFoundError(
                    f"Provider client not registered: {provider.key}, "
                    f"registered providers: {self.registry.list_codes()}"
                ),
                key=instance_name,
            )
        return await provider.value.lookup_instance_id_by_name(instance_name)  # type: ignore[union-attr]

    def get_registered_providers(self) -> list[str]:
        return self.registry.list_codes()

    def is_provider_available(self, provider_code: Optional[str]) -> bool:
        """Whether a client is registered under the code and reports itself available."""
        if provider_code is None or not provider_code.strip():
            return False
        result = self.registry.lookup(provider_code)
        return result.is_found and result.value.is_available()  # type: ignore[union-attr]

    def _validate(self, request: Optional[CreateInstanceRequest]) -> None:
        validate_create_request(request)
        provider = request.provider  # type: ignore[union-attr]
        if self.scheduler.requires_provider_hint and (
            provider is None or not provider.strip()
        ):
            raise ProviderRequiredError(
                f"provider must be set, {self.scheduler.name} routes on it",
                provider_code=VALIDATION_SOURCE,
            )

    @staticmethod
    def _stamp_provenance(
        vm: VirtualMachine, client: ProviderClient, request: CreateInstanceRequest
    ) -> VirtualMachine:
        """Fill provider and tenant on a result that left them empty."""
        updates = {}
        if not vm.provider:
            updates["provider"] = client.provider_code
        if not vm.tenant_id:
            updates["tenant_id"] = request.tenant_id
        return vm.model_copy(update=updates) if updates else vm

    async def _audited(
        self,
        provider_code: str,
        operation: str,
        instance_id: str,
        call: Callable[[ProviderClient], Awaitable[T]],
    ) -> T:
        """Run a mutating instance operation and record it in the event log."""
        client = self.registry.get(provider_code)
        correlation_id = str(uuid.uuid4())
        await self._emit_started(
            correlation_id, client.provider_code, operation, instance_id=instance_id
        )
        start_time = time.monotonic()
        try:
            result = await call(client)
        except EcsError as e:
            await self._emit_completed(
                correlation_id, client.provider_code, operation, start_time,
                instance_id=instance_id, error=e,
            )
            raise
        await self._emit_completed(
            correlation_id, client.provider_code, operation, start_time,
            instance_id=instance_id, success=bool(result),
        )
        return result

    async def _emit_started(
        self,
        correlation_id: str,
        provider_code: str,
        operation: str,
        tenant_id: Optional[str] = None,
        instance_name: Optional[str] = None,
        instance_id: Optional[str] = None,
    ) -> None:
        if self.log_manager is None:
            return
        await self.log_manager.emit_event(
            InstanceOperationStarted(
                correlation_id=correlation_id,
                provider_code=provider_code,
                operation=operation,
                tenant_id=tenant_id,
                instance_name=instance_name,
                instance_id=instance_id,
            )
        )

    async def _emit_completed(
        self,
        correlation_id: str,
        provider_code: str,
        operation: str,
        start_time: float,
        instance_id: Optional[str] = None,
        status: Optional[str] = None,
        success: bool = True,
        error: Optional[EcsError] = None,
    ) -> None:
        if self.log_manager is None:
            return
        await self.log_manager.emit_event(
            InstanceOperationCompleted(
                correlation_id=correlation_id,
                provider_code=provider_code,
                operation=operation,
                success=success and error is None,
                instance_id=instance_id,
                status=status,
                duration_seconds=time.monotonic() - start_time,
                error_code=error.error_code if error else None,
                error_message=error.message if error else None,
            )
        )
