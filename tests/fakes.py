"""
In-memory vendor fakes used across the test suite.
"""

import asyncio
from decimal import Decimal
from typing import Optional

from multicloud_ecs.ecs.base import (
    CreateInstanceRequest,
    NetworkResources,
    PriceInfo,
    VirtualMachine,
    VmStatus,
)
from multicloud_ecs.ecs.client import ProviderBackend
from multicloud_ecs.ecs.network import NetworkApi, SubnetInfo, VpcInfo
from multicloud_ecs.ecs.tags import USER_TAG_KEY


class FakeBackend(ProviderBackend):
    """Vendor backend keeping instances in memory."""

    def __init__(
        self,
        code: str = "ALIYUN",
        name: str = "Alibaba Cloud",
        available: bool = True,
        priority: int = 100,
        stamp_provenance: bool = False,
        with_pricing: bool = True,
    ):
        self._code = code
        self._name = name
        self.available = available
        self._priority = priority
        self.stamp_provenance = stamp_provenance
        self.with_pricing = with_pricing
        self.instances: dict[str, VirtualMachine] = {}
        self.create_calls: list[tuple[CreateInstanceRequest, Optional[NetworkResources]]] = []
        self.fail_with: Optional[BaseException] = None

    @property
    def provider_code(self) -> str:
        return self._code

    @property
    def provider_name(self) -> str:
        return self._name

    @property
    def priority(self) -> int:
        return self._priority

    def is_available(self) -> bool:
        return self.available

    async def calculate_price(self, request: CreateInstanceRequest) -> PriceInfo:
        if not self.with_pricing:
            return await super().calculate_price(request)
        return PriceInfo(
            provider=self._code,
            region=request.region,
            instance_type=request.instance_type or "ecs.g6.large",
            instance_price_per_hour=Decimal("0.5"),
            total_price_per_hour=Decimal("0.5"),
        )

    async def create_instance(
        self,
        request: CreateInstanceRequest,
        network: Optional[NetworkResources] = None,
    ) -> VirtualMachine:
        if self.fail_with is not None:
            raise self.fail_with
        self.create_calls.append((request, network))
        instance_id = f"i-{self._code.lower()}-{len(self.create_calls)}"
        vm = VirtualMachine(
            instance_id=instance_id,
            instance_name=request.instance_name,
            status=VmStatus.PENDING,
            raw_status="Pending",
            region=request.region,
            zone=network.zone if network else request.zone,
            tags=dict(request.tags),
            provider=self._code if self.stamp_provenance else None,
            tenant_id=request.tenant_id if self.stamp_provenance else None,
        )
        self.instances[instance_id] = vm
        return vm

    async def delete_instance(self, instance_id: str) -> bool:
        return self.instances.pop(instance_id, None) is not None

    async def start_instance(self, instance_id: str) -> bool:
        return self._set_status(instance_id, VmStatus.RUNNING)

    async def stop_instance(self, instance_id: str) -> bool:
        return self._set_status(instance_id, VmStatus.STOPPED)

    async def restart_instance(self, instance_id: str) -> bool:
        return self._set_status(instance_id, VmStatus.RUNNING)

    async def get_instance(self, instance_id: str) -> Optional[VirtualMachine]:
        return self.instances.get(instance_id)

    async def find_instance_id_by_name(self, instance_name: str) -> Optional[str]:
        for instance_id, vm in self.instances.items():
            if vm.instance_name == instance_name:
                return instance_id
        return None

    def _set_status(self, instance_id: str, status: VmStatus) -> bool:
        vm = self.instances.get(instance_id)
        if vm is None:
            return False
        self.instances[instance_id] = vm.model_copy(update={"status": status})
        return True


class FakeNetworkApi(NetworkApi):
    """Vendor network API keeping VPCs, subnets and security groups in memory."""

    def __init__(self, zone: str = "cn-hangzhou-a"):
        self.zone = zone
        self.vpcs: dict[str, dict] = {}
        self.subnets: dict[str, dict] = {}
        self.security_groups: dict[str, dict] = {}
        self.ingress_rules: list[tuple[str, str, int, str]] = []
        self.created: list[str] = []
        self.fail_on: dict[str, BaseException] = {}
        self.allocate_delay: float = 0.0
        self.allocate_error: Optional[BaseException] = None
        self.ingress_error: Optional[BaseException] = None
        self.ingress_port_errors: dict[int, BaseException] = {}
        self.ingress_attempts: list[int] = []
        self.lookup_delay: float = 0.0
        self._counter = 0

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"{prefix}-{self._counter}"

    def _maybe_fail(self, step: str) -> None:
        error = self.fail_on.get(step)
        if error is not None:
            raise error

    async def find_vpc_by_owner(self, owner_id: str, region: str) -> Optional[VpcInfo]:
        if self.lookup_delay:
            await asyncio.sleep(self.lookup_delay)
        self._maybe_fail("find_vpc")
        for vpc_id, vpc in self.vpcs.items():
            if vpc["region"] == region and vpc["tags"].get(USER_TAG_KEY) == owner_id:
                return VpcInfo(vpc_id=vpc_id, cidr_block=vpc["cidr"])
        return None

    async def list_subnets(self, vpc_id: str, region: str) -> list[SubnetInfo]:
        return [
            SubnetInfo(subnet_id=subnet_id, zone=s["zone"], cidr_block=s["cidr"])
            for subnet_id, s in self.subnets.items()
            if s["vpc_id"] == vpc_id
        ]

    async def find_security_group(
        self, vpc_id: str, owner_id: str, region: str
    ) -> Optional[str]:
        for group_id, group in self.security_groups.items():
            if group["vpc_id"] == vpc_id and group["tags"].get(USER_TAG_KEY) == owner_id:
                return group_id
        return None

    async def create_vpc(self, region, cidr_block, name, tags) -> str:
        self._maybe_fail("create_vpc")
        vpc_id = self._next_id("vpc")
        self.vpcs[vpc_id] = {"region": region, "cidr": cidr_block, "name": name, "tags": dict(tags)}
        self.created.append("vpc")
        return vpc_id

    async def create_subnet(self, region, vpc_id, zone, cidr_block, name, tags) -> str:
        self._maybe_fail("create_subnet")
        subnet_id = self._next_id("vsw")
        self.subnets[subnet_id] = {"vpc_id": vpc_id, "zone": zone, "cidr": cidr_block, "tags": dict(tags)}
        self.created.append("subnet")
        return subnet_id

    async def create_security_group(self, region, vpc_id, name, description, tags) -> str:
        self._maybe_fail("create_security_group")
        group_id = self._next_id("sg")
        self.security_groups[group_id] = {"vpc_id": vpc_id, "name": name, "tags": dict(tags)}
        self.created.append("security_group")
        return group_id

    async def authorize_ingress(self, region, security_group_id, protocol, port, source_cidr) -> None:
        self.ingress_attempts.append(port)
        if self.ingress_error is not None:
            raise self.ingress_error
        if port in self.ingress_port_errors:
            raise self.ingress_port_errors[port]
        self.ingress_rules.append((security_group_id, protocol, port, source_cidr))

    async def allocate_public_address(self, instance_id, region, bandwidth=None) -> str:
        if self.allocate_delay:
            await asyncio.sleep(self.allocate_delay)
        if self.allocate_error is not None:
            raise self.allocate_error
        return "47.96.0.10"

    async def default_zone(self, region: str) -> str:
        return self.zone

