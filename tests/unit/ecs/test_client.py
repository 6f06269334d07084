"""
Tests for the provider client lifecycle.
"""

import pytest

from multicloud_ecs.ecs.base import LookupStatus, VmStatus
from multicloud_ecs.ecs.client import ProviderClient, validate_create_request
from multicloud_ecs.ecs.errors import (
    EcsValidationError,
    NotImplementedCapabilityError,
    ProviderOperationError,
    QuotaExceededError,
)
from multicloud_ecs.ecs.tags import TENANT_TAG_KEY, USER_TAG_KEY

from tests.fakes import FakeBackend


class TestValidateCreateRequest:
    """Test request preconditions."""

    def test_none_request(self):
        with pytest.raises(EcsValidationError) as exc_info:
            validate_create_request(None)
        assert exc_info.value.error_code == "REQUEST_NULL"

    @pytest.mark.parametrize(
        "field_name,error_code",
        [
            ("tenant_id", "TENANT_ID_REQUIRED"),
            ("instance_name", "INSTANCE_NAME_REQUIRED"),
            ("region", "REGION_REQUIRED"),
            ("image_key", "IMAGE_REQUIRED"),
            ("user_id", "USER_ID_REQUIRED"),
        ],
    )
    def test_blank_field(self, create_request, field_name, error_code):
        """Test each required field maps to its own error code."""
        setattr(create_request, field_name, "  ")
        with pytest.raises(EcsValidationError) as exc_info:
            validate_create_request(create_request)
        assert exc_info.value.error_code == error_code
        assert exc_info.value.provider_code == "VALIDATION"

    def test_complete_request_passes(self, create_request):
        validate_create_request(create_request)


class TestProviderClientCreate:
    """Test instance creation through the client."""

    @pytest.mark.asyncio
    async def test_create_without_network(self, fake_backend, create_request):
        """Test a plain client delegates with no network triple."""
        client = ProviderClient(fake_backend)
        vm = await client.create_instance(create_request)

        assert vm.status == VmStatus.PENDING
        assert vm.instance_id == "i-aliyun-1"
        _, network = fake_backend.create_calls[0]
        assert network is None

    @pytest.mark.asyncio
    async def test_create_injects_tags(self, fake_backend, create_request):
        client = ProviderClient(fake_backend)
        await client.create_instance(create_request)

        sent, _ = fake_backend.create_calls[0]
        assert sent.tags[TENANT_TAG_KEY] == "t1"
        assert sent.tags[USER_TAG_KEY] == "u1"

    @pytest.mark.asyncio
    async def test_validation_before_backend(self, fake_backend, create_request):
        """Test the backend is never reached with an invalid request."""
        client = ProviderClient(fake_backend)
        create_request.region = ""
        with pytest.raises(EcsValidationError):
            await client.create_instance(create_request)
        assert fake_backend.create_calls == []

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, fake_backend, create_request):
        """Test a raw backend exception becomes CREATE_FAILED."""
        fake_backend.fail_with = RuntimeError("connection reset")
        client = ProviderClient(fake_backend)

        with pytest.raises(ProviderOperationError) as exc_info:
            await client.create_instance(create_request)

        error = exc_info.value
        assert error.error_code == "CREATE_FAILED"
        assert error.provider_code == "ALIYUN"
        assert error.cloud_error_message == "connection reset"
        assert isinstance(error.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_domain_error_propagates_unchanged(self, fake_backend, create_request):
        """Test an EcsError from the backend is not rewrapped."""
        original = QuotaExceededError("no capacity", provider_code="ALIYUN")
        fake_backend.fail_with = original
        client = ProviderClient(fake_backend)

        with pytest.raises(QuotaExceededError) as exc_info:
            await client.create_instance(create_request)
        assert exc_info.value is original


class TestProviderClientNetwork:
    """Test network provisioning around creation."""

    @pytest.mark.asyncio
    async def test_network_triple_passed_to_backend(
        self, provider_client, fake_backend, create_request
    ):
        await provider_client.create_instance(create_request)

        _, network = fake_backend.create_calls[0]
        assert network.vpc_id.startswith("vpc-")
        assert network.subnet_id.startswith("vsw-")
        assert network.security_group_id.startswith("sg-")
        assert network.zone == "cn-hangzhou-a"

    @pytest.mark.asyncio
    async def test_public_address_applied(
        self, provider_client, create_request
    ):
        """Test a bound public address lands on the returned snapshot."""
        create_request.allocate_public_ip = True
        vm = await provider_client.create_instance(create_request)
        assert vm.public_ip == "47.96.0.10"

    @pytest.mark.asyncio
    async def test_ports_opened(self, provider_client, fake_network_api, create_request):
        create_request.open_ports = [22, 8080]
        await provider_client.create_instance(create_request)

        ports = [rule[2] for rule in fake_network_api.ingress_rules]
        assert ports == [22, 8080]

    @pytest.mark.asyncio
    async def test_network_failure_skips_backend(
        self, provider_client, fake_backend, fake_network_api, create_request
    ):
        """Test no instance is created when the network step fails."""
        fake_network_api.fail_on["create_vpc"] = RuntimeError("internal error")

        with pytest.raises(ProviderOperationError) as exc_info:
            await provider_client.create_instance(create_request)

        assert exc_info.value.error_code == "NETWORK_CREATE_FAILED"
        assert fake_backend.create_calls == []

    @pytest.mark.asyncio
    async def test_post_provisioning_failure_keeps_instance(
        self, provider_client, fake_network_api, create_request
    ):
        """Test a failed address binding does not fail creation."""
        fake_network_api.allocate_error = RuntimeError("no addresses left")
        create_request.allocate_public_ip = True

        vm = await provider_client.create_instance(create_request)

        assert vm.status == VmStatus.PENDING
        assert vm.public_ip is None


class TestProviderClientOperations:
    """Test the non-creation operations."""

    @pytest.mark.asyncio
    async def test_lifecycle(self, fake_backend, create_request):
        """Test start, stop, restart and delete against the fake vendor."""
        client = ProviderClient(fake_backend)
        vm = await client.create_instance(create_request)

        assert await client.start_instance(vm.instance_id)
        assert (await client.get_instance(vm.instance_id)).status == VmStatus.RUNNING
        assert await client.stop_instance(vm.instance_id)
        assert (await client.get_instance(vm.instance_id)).status == VmStatus.STOPPED
        assert await client.restart_instance(vm.instance_id)
        assert await client.delete_instance(vm.instance_id)
        assert await client.get_instance(vm.instance_id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation",
        ["delete_instance", "start_instance", "stop_instance", "restart_instance", "get_instance"],
    )
    async def test_blank_instance_id(self, fake_backend, operation):
        client = ProviderClient(fake_backend)
        with pytest.raises(EcsValidationError) as exc_info:
            await getattr(client, operation)(" ")
        assert exc_info.value.error_code == "INSTANCE_ID_REQUIRED"

    @pytest.mark.asyncio
    async def test_operation_error_codes(self, fake_backend):
        """Test each operation wraps raw failures under its own code."""

        async def boom(instance_id):
            raise RuntimeError("vendor down")

        fake_backend.stop_instance = boom
        client = ProviderClient(fake_backend)

        with pytest.raises(ProviderOperationError) as exc_info:
            await client.stop_instance("i-1")
        assert exc_info.value.error_code == "STOP_FAILED"

    @pytest.mark.asyncio
    async def test_price_not_implemented(self, create_request):
        """Test a backend without pricing reports NOT_IMPLEMENTED."""
        client = ProviderClient(FakeBackend(with_pricing=False))
        with pytest.raises(NotImplementedCapabilityError) as exc_info:
            await client.calculate_price(create_request)
        assert exc_info.value.error_code == "NOT_IMPLEMENTED"
        assert exc_info.value.provider_code == "ALIYUN"

    @pytest.mark.asyncio
    async def test_price(self, fake_backend, create_request):
        price = await ProviderClient(fake_backend).calculate_price(create_request)
        assert price.provider == "ALIYUN"
        assert str(price.total_price_per_hour) == "0.5"

    @pytest.mark.asyncio
    async def test_find_by_name(self, fake_backend, create_request):
        client = ProviderClient(fake_backend)
        vm = await client.create_instance(create_request)

        assert await client.find_instance_id_by_name("gpu-worker-1") == vm.instance_id
        assert await client.find_instance_id_by_name("missing") is None
        with pytest.raises(EcsValidationError):
            await client.find_instance_id_by_name("")

    @pytest.mark.asyncio
    async def test_lookup_distinguishes_outcomes(self, fake_backend, create_request):
        """Test found, not found and vendor failure are told apart."""
        client = ProviderClient(fake_backend)
        vm = await client.create_instance(create_request)

        found = await client.lookup_instance_id_by_name("gpu-worker-1")
        assert found.status == LookupStatus.FOUND
        assert found.value == vm.instance_id

        missing = await client.lookup_instance_id_by_name("other")
        assert missing.status == LookupStatus.NOT_FOUND

        async def boom(name):
            raise TimeoutError("describe timed out")

        fake_backend.find_instance_id_by_name = boom
        failed = await client.lookup_instance_id_by_name("gpu-worker-1")
        assert failed.status == LookupStatus.ERROR
        assert failed.error.error_code == "FIND_INSTANCE_FAILED"

    def test_delegated_properties(self):
        client = ProviderClient(FakeBackend("AWS", name="Amazon", priority=5, available=False))
        assert client.provider_code == "AWS"
        assert client.provider_name == "Amazon"
        assert client.priority == 5
        assert not client.is_available()

