"""
Tests for the unified ECS service.
"""

import asyncio

import pytest

from multicloud_ecs.ecs.base import LookupStatus, VmStatus
from multicloud_ecs.ecs.client import ProviderClient
from multicloud_ecs.ecs.errors import (
    EcsValidationError,
    ProviderNotFoundError,
    ProviderOperationError,
    ProviderRequiredError,
    ProviderUnavailableError,
    QuotaExceededError,
)
from multicloud_ecs.ecs.registry import ProviderRegistry
from multicloud_ecs.ecs.scheduler import FixedScheduler
from multicloud_ecs.ecs.service import MultiCloudEcsService
from multicloud_ecs.ecs.tags import CREATED_BY_TAG_KEY, TENANT_TAG_KEY, USER_TAG_KEY

from tests.fakes import FakeBackend


class TestCreateInstance:
    """Test creation through the facade."""

    @pytest.mark.asyncio
    async def test_happy_path(self, service, fake_backend, fake_network_api, create_request):
        """Test a new owner gets a network triple and a PENDING instance."""
        vm = await service.create_instance(create_request)

        assert vm.status == VmStatus.PENDING
        assert vm.provider == "ALIYUN"
        assert vm.tenant_id == "t1"
        assert vm.tags[TENANT_TAG_KEY] == "t1"
        assert vm.tags[USER_TAG_KEY] == "u1"
        assert CREATED_BY_TAG_KEY in vm.tags
        assert fake_network_api.created == ["vpc", "subnet", "security_group"]
        assert len(fake_backend.create_calls) == 1

    @pytest.mark.asyncio
    async def test_same_owner_reuses_network(
        self, service, fake_network_api, create_request
    ):
        """Test a second creation for the owner creates no network resources."""
        await service.create_instance(create_request)
        create_request.instance_name = "gpu-worker-2"
        await service.create_instance(create_request)

        assert fake_network_api.created.count("vpc") == 1
        assert fake_network_api.created.count("subnet") == 1
        assert fake_network_api.created.count("security_group") == 1

    @pytest.mark.asyncio
    async def test_missing_provider_fails_before_provisioning(
        self, service, fake_backend, fake_network_api, create_request
    ):
        """Test a missing hint fails validation and provisions nothing."""
        create_request.provider = None

        with pytest.raises(ProviderRequiredError) as exc_info:
            await service.create_instance(create_request)

        assert exc_info.value.error_code == "PROVIDER_REQUIRED"
        assert exc_info.value.provider_code == "VALIDATION"
        assert fake_network_api.created == []
        assert fake_backend.create_calls == []

    @pytest.mark.asyncio
    async def test_blank_tenant_rejected(self, service, fake_backend, create_request):
        create_request.tenant_id = ""
        with pytest.raises(EcsValidationError) as exc_info:
            await service.create_instance(create_request)
        assert exc_info.value.error_code == "TENANT_ID_REQUIRED"
        assert fake_backend.create_calls == []

    @pytest.mark.asyncio
    async def test_unknown_provider(self, service, create_request):
        create_request.provider = "TENCENT"
        with pytest.raises(ProviderNotFoundError):
            await service.create_instance(create_request)

    @pytest.mark.asyncio
    async def test_unavailable_provider(self, service, fake_backend, create_request):
        fake_backend.available = False
        with pytest.raises(ProviderUnavailableError):
            await service.create_instance(create_request)

    @pytest.mark.asyncio
    async def test_slow_public_address_does_not_block(
        self, service, fake_network_api, create_request
    ):
        """Test a post-provisioning timeout still yields a PENDING instance."""
        fake_network_api.allocate_delay = 1.0
        create_request.allocate_public_ip = True
        client = service.registry.get("ALIYUN")

        vm = await service.create_instance(create_request)

        assert vm.status == VmStatus.PENDING
        assert vm.error_message is None
        assert vm.public_ip is None
        assert client.network.background_task_count == 1

        for task in list(client.network._background_tasks):
            task.cancel()
        await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_network_quota_surfaces(self, service, fake_backend, fake_network_api, create_request):
        """Test a VPC quota failure reaches the caller as a quota error."""
        fake_network_api.fail_on["create_vpc"] = RuntimeError("QuotaExceeded.Vpc: limit reached")

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.create_instance(create_request)

        assert exc_info.value.is_network_quota_exceeded()
        assert fake_backend.create_calls == []

    @pytest.mark.asyncio
    async def test_backend_error_wrapped(self, service, fake_backend, create_request):
        fake_backend.fail_with = ValueError("bad payload")
        with pytest.raises(ProviderOperationError) as exc_info:
            await service.create_instance(create_request)
        assert exc_info.value.error_code == "CREATE_FAILED"
        assert exc_info.value.provider_code == "ALIYUN"

    @pytest.mark.asyncio
    async def test_backend_provenance_kept(self, tag_injector, create_request):
        """Test a backend-filled provider and tenant are not overwritten."""
        backend = FakeBackend(stamp_provenance=True)
        registry = ProviderRegistry()
        registry.register(ProviderClient(backend, tag_injector))
        service = MultiCloudEcsService(registry, FixedScheduler(registry), tag_injector)

        vm = await service.create_instance(create_request)

        assert vm.provider == "ALIYUN"
        assert vm.tenant_id == "t1"

    @pytest.mark.asyncio
    async def test_audit_events(self, service, log_manager, create_request):
        """Test started and completed events share a correlation id."""
        vm = await service.create_instance(create_request)

        started = log_manager.get_events("instance_operation_started")
        completed = log_manager.get_events("instance_operation_completed")
        assert len(started) == 1
        assert len(completed) == 1
        assert started[0].correlation_id == completed[0].correlation_id
        assert completed[0].success
        assert completed[0].instance_id == vm.instance_id

        correlated = log_manager.get_events_for_correlation(started[0].correlation_id)
        assert "network_resources_resolved" in [e.event_type for e in correlated]

    @pytest.mark.asyncio
    async def test_failed_creation_audited(self, service, fake_backend, log_manager, create_request):
        fake_backend.fail_with = RuntimeError("boom")
        with pytest.raises(ProviderOperationError):
            await service.create_instance(create_request)

        completed = log_manager.get_events("instance_operation_completed")
        assert not completed[0].success
        assert completed[0].error_code == "CREATE_FAILED"


class TestOtherOperations:
    """Test operations that name their provider explicitly."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, service, create_request):
        vm = await service.create_instance(create_request)

        assert await service.start_instance("aliyun", vm.instance_id)
        assert (await service.get_instance("ALIYUN", vm.instance_id)).status == VmStatus.RUNNING
        assert await service.stop_instance("ALIYUN", vm.instance_id)
        assert await service.restart_instance("ALIYUN", vm.instance_id)
        assert await service.delete_instance("ALIYUN", vm.instance_id)
        assert await service.get_instance("ALIYUN", vm.instance_id) is None

    @pytest.mark.asyncio
    async def test_unknown_provider_for_action(self, service):
        with pytest.raises(ProviderNotFoundError):
            await service.stop_instance("HUAWEI", "i-1")

    @pytest.mark.asyncio
    async def test_action_audited(self, service, log_manager):
        """Test a failed action is recorded as unsuccessful."""
        assert not await service.delete_instance("ALIYUN", "i-missing")

        completed = log_manager.get_events("instance_operation_completed")
        assert completed[-1].operation == "delete_instance"
        assert not completed[-1].success

    @pytest.mark.asyncio
    async def test_find_and_lookup(self, service, create_request):
        vm = await service.create_instance(create_request)

        assert await service.find_instance_id_by_name("ALIYUN", "gpu-worker-1") == vm.instance_id
        result = await service.lookup_instance_id_by_name("ALIYUN", "gpu-worker-1")
        assert result.value == vm.instance_id

        missing = await service.lookup_instance_id_by_name("ALIYUN", "no-such-vm")
        assert missing.status == LookupStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_lookup_unregistered_provider_is_error(self, service):
        """Test an unknown provider is reported as a routing error, not a missing instance."""
        result = await service.lookup_instance_id_by_name("AWS", "gpu-worker-1")

        assert result.status == LookupStatus.ERROR
        assert isinstance(result.error, ProviderNotFoundError)
        assert result.error.error_code == "PROVIDER_NOT_FOUND"
        assert result.key == "gpu-worker-1"

    @pytest.mark.asyncio
    async def test_price_does_not_tag(self, service, create_request):
        """Test quoting leaves the request labels untouched."""
        price = await service.calculate_price(create_request)
        assert price.provider == "ALIYUN"
        assert create_request.tags == {}

    def test_provider_introspection(self, service, fake_backend):
        assert service.get_registered_providers() == ["ALIYUN"]
        assert service.is_provider_available("aliyun")
        assert not service.is_provider_available("AWS")
        assert not service.is_provider_available("")
        assert not service.is_provider_available(None)

        fake_backend.available = False
        assert not service.is_provider_available("ALIYUN")
