"""
Pytest configuration and shared fixtures.
"""

import pytest

from multicloud_ecs.ecs.base import CreateInstanceRequest
from multicloud_ecs.ecs.client import ProviderClient
from multicloud_ecs.ecs.network import NetworkProvisioner
from multicloud_ecs.ecs.registry import ProviderRegistry
from multicloud_ecs.ecs.scheduler import FixedScheduler
from multicloud_ecs.ecs.service import MultiCloudEcsService
from multicloud_ecs.ecs.tags import TenantTagInjector
from multicloud_ecs.logging_utils.log_manager import LogManager

from tests.fakes import FakeBackend, FakeNetworkApi


@pytest.fixture
def fake_backend():
    """Create an available in-memory ALIYUN backend."""
    return FakeBackend()


@pytest.fixture
def fake_network_api():
    """Create an empty in-memory network API."""
    return FakeNetworkApi()


@pytest.fixture
def log_manager(tmp_path):
    """Create a log manager writing to a temporary directory."""
    return LogManager(log_dir=str(tmp_path / "events"))


@pytest.fixture
def provisioner(fake_network_api, log_manager):
    """Create a network provisioner with a short post-provisioning wait."""
    return NetworkProvisioner(
        fake_network_api,
        provider_code="ALIYUN",
        post_provision_timeout=0.2,
        log_manager=log_manager,
    )


@pytest.fixture
def tag_injector():
    return TenantTagInjector()


@pytest.fixture
def provider_client(fake_backend, tag_injector, provisioner):
    """Create a provider client with network provisioning attached."""
    return ProviderClient(fake_backend, tag_injector, provisioner)


@pytest.fixture
def registry(provider_client):
    """Create a registry holding the ALIYUN client."""
    registry = ProviderRegistry()
    registry.register(provider_client)
    return registry


@pytest.fixture
def service(registry, tag_injector, log_manager):
    """Create the service with the fixed scheduler."""
    return MultiCloudEcsService(
        registry, FixedScheduler(registry), tag_injector, log_manager
    )


@pytest.fixture
def create_request():
    """Create a complete creation request."""
    return CreateInstanceRequest(
        provider="ALIYUN",
        tenant_id="t1",
        user_id="u1",
        region="cn-hangzhou",
        instance_name="gpu-worker-1",
        image_key="centos-7.9",
        system_disk_size=40,
    )
