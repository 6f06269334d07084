"""
Tenant-scoped network provisioning ("silent addressing").

Before an instance is created, the provisioner makes sure the owning user has
a network sandbox in the target region: a VPC, a subnet in the requested
zone and a security group, all tagged with the owner's identity. The lookup
is keyed by (owner, region) so repeated creations reuse the same triple.

After the instance exists, public address binding and firewall ingress run
concurrently as best-effort steps. Their failure or timeout degrades the
result but never fails the creation.
"""

import asyncio
import functools
import hashlib
import ipaddress
import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, TypeVar

from ..logging_utils.events import NetworkResourcesResolved, PostProvisioningDegraded
from ..logging_utils.log_manager import LogManager
from .base import NetworkResources
from .errors import (
    EcsError,
    EcsValidationError,
    ErrorCode,
    ProviderOperationError,
    QuotaExceededError,
)

T = TypeVar("T")

# Private range carved into one /20 per owner hash bucket
ADDRESS_POOL = ipaddress.ip_network("172.16.0.0/12")
VPC_PREFIX = 20
SUBNET_PREFIX = 24

INGRESS_PROTOCOL = "tcp"
INGRESS_SOURCE = "0.0.0.0/0"

DEFAULT_POST_PROVISION_TIMEOUT = 30.0

QUOTA_ERROR_MARKERS = ("QuotaExceeded", "LimitExceeded", "QUOTA_EXCEEDED")

QuotaClassifier = Callable[[BaseException], bool]


def default_quota_classifier(error: BaseException) -> bool:
    """
    Recognize a capacity-limit failure from vendor error text.

    This is a heuristic. Vendors word these errors differently and the
    wording drifts, so backends with a better signal should pass their own
    classifier to the provisioner.
    """
    if isinstance(error, EcsError):
        if error.is_quota_exceeded():
            return True
        text = f"{error.message} {error.cloud_error_message or ''}"
    else:
        text = str(error)
    return any(marker in text for marker in QUOTA_ERROR_MARKERS)


def derive_cidr_block(owner_id: str) -> str:
    """Derive the owner's VPC block from a stable hash of the owner id."""
    digest = hashlib.sha256(owner_id.encode("utf-8")).digest()
    index = int.from_bytes(digest[:8], "big") % _vpc_block_count()
    block_size = 2 ** (32 - VPC_PREFIX)
    network = ipaddress.ip_network(
        (int(ADDRESS_POOL.network_address) + index * block_size, VPC_PREFIX)
    )
    return str(network)


def _vpc_block_count() -> int:
    return 2 ** (VPC_PREFIX - ADDRESS_POOL.prefixlen)


def first_subnet_cidr(vpc_cidr: str) -> str:
    """The first /24 inside a VPC block."""
    return next_subnet_cidr(vpc_cidr, [])  # type: ignore[return-value]


def next_subnet_cidr(vpc_cidr: str, used_cidrs: list[str]) -> Optional[str]:
    """
    Return the first /24 inside ``vpc_cidr`` that overlaps none of ``used_cidrs``.

    Returns:
        The CIDR, or None if the VPC block is exhausted
    """
    vpc = ipaddress.ip_network(vpc_cidr)
    used = [ipaddress.ip_network(cidr) for cidr in used_cidrs if cidr]
    for candidate in vpc.subnets(new_prefix=SUBNET_PREFIX):
        if not any(candidate.overlaps(existing) for existing in used):
            return str(candidate)
    return None


@dataclass(frozen=True)
class VpcInfo:
    vpc_id: str
    cidr_block: Optional[str] = None


@dataclass(frozen=True)
class SubnetInfo:
    subnet_id: str
    zone: Optional[str] = None
    cidr_block: Optional[str] = None


@dataclass
class PostProvisioningOutcome:
    """What the best-effort steps achieved within the bounded wait."""

    public_address: Optional[str] = None
    firewall_confirmed: bool = False
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def degraded(self) -> bool:
        return bool(self.failures)


class NetworkApi(ABC):
    """
    Vendor network operations used by the provisioner.

    Lookups return None when nothing matches. Any vendor failure is raised
    as an exception whose text lets the quota classifier tell capacity
    limits apart from other failures.
    """

    @abstractmethod
    async def find_vpc_by_owner(self, owner_id: str, region: str) -> Optional[VpcInfo]:
        """Find the VPC tagged with the owner's identity."""

    @abstractmethod
    async def list_subnets(self, vpc_id: str, region: str) -> list[SubnetInfo]:
        """List the subnets of a VPC."""

    @abstractmethod
    async def find_security_group(
        self, vpc_id: str, owner_id: str, region: str
    ) -> Optional[str]:
        """Find the owner-tagged security group of a VPC."""

    @abstractmethod
    async def create_vpc(
        self, region: str, cidr_block: str, name: str, tags: dict[str, str]
    ) -> str:
        """Create a VPC and return its id."""

    @abstractmethod
    async def create_subnet(
        self,
        region: str,
        vpc_id: str,
        zone: str,
        cidr_block: str,
        name: str,
        tags: dict[str, str],
    ) -> str:
        """Create a zone-scoped subnet and return its id."""

    @abstractmethod
    async def create_security_group(
        self,
        region: str,
        vpc_id: str,
        name: str,
        description: str,
        tags: dict[str, str],
    ) -> str:
        """Create a security group and return its id."""

    @abstractmethod
    async def authorize_ingress(
        self,
        region: str,
        security_group_id: str,
        protocol: str,
        port: int,
        source_cidr: str,
    ) -> None:
        """Open an inbound port. An already-present rule is not an error."""

    @abstractmethod
    async def allocate_public_address(
        self, instance_id: str, region: str, bandwidth: Optional[int] = None
    ) -> str:
        """Allocate a public address, bind it to the instance and return it."""

    @abstractmethod
    async def default_zone(self, region: str) -> str:
        """Zone used when a request names none."""


class NetworkProvisioner:
    """Idempotent find-or-create of an owner's network triple."""

    def __init__(
        self,
        api: NetworkApi,
        provider_code: str,
        quota_classifier: Optional[QuotaClassifier] = None,
        post_provision_timeout: float = DEFAULT_POST_PROVISION_TIMEOUT,
        log_manager: Optional[LogManager] = None,
    ):
        self.api = api
        self.provider_code = provider_code
        self.quota_classifier = quota_classifier or default_quota_classifier
        self.post_provision_timeout = post_provision_timeout
        self.log_manager = log_manager
        self.logger = logging.getLogger(self.__class__.__name__)

        # Serializes first-time provisioning per (owner, region) in this process
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        # Post-provisioning steps that outlived the bounded wait
        self._background_tasks: set[asyncio.Task] = set()

    async def ensure_network_resources(
        self,
        owner_id: str,
        region: str,
        zone: Optional[str] = None,
        labels: Optional[dict[str, str]] = None,
        correlation_id: Optional[str] = None,
    ) -> NetworkResources:
        """
        Find or create the owner's VPC, subnet and security group.

        Args:
            owner_id: User the sandbox belongs to
            region: Vendor region
            zone: Zone for the subnet; the vendor default zone when omitted
            labels: Tags applied to anything created
            correlation_id: Id tying emitted events to one creation

        Returns:
            The network triple

        Raises:
            QuotaExceededError: A vendor capacity limit was hit
            ProviderOperationError: Any other failure (NETWORK_CREATE_FAILED)
        """
        if owner_id is None or not owner_id.strip():
            raise EcsValidationError(
                ErrorCode.USER_ID_REQUIRED, "owner id must not be blank"
            )
        if region is None or not region.strip():
            raise EcsValidationError(ErrorCode.REGION_REQUIRED, "region must not be blank")

        labels = dict(labels or {})
        if not zone:
            zone = await self._call(
                "resolve_default_zone", lambda: self.api.default_zone(region)
            )

        lock = self._locks.setdefault((owner_id, region), asyncio.Lock())
        async with lock:
            vpc = await self._call(
                "find_vpc", lambda: self.api.find_vpc_by_owner(owner_id, region)
            )
            if vpc is not None:
                resources = await self._complete_existing(
                    vpc, owner_id, region, zone, labels
                )
            else:
                resources = await self._create_all(owner_id, region, zone, labels)

        self.logger.info(
            f"Network resources ready for owner {owner_id} in {region}",
            extra={
                "provider_code": self.provider_code,
                "owner_id": owner_id,
                "region": region,
                "zone": zone,
                "vpc_id": resources.vpc_id,
                "subnet_id": resources.subnet_id,
                "security_group_id": resources.security_group_id,
                "resources_created": resources.created,
            },
        )
        if self.log_manager is not None:
            await self.log_manager.emit_event(
                NetworkResourcesResolved(
                    correlation_id=correlation_id or str(uuid.uuid4()),
                    provider_code=self.provider_code,
                    owner_id=owner_id,
                    region=region,
                    vpc_id=resources.vpc_id,
                    subnet_id=resources.subnet_id,
                    security_group_id=resources.security_group_id,
                    created=resources.created,
                )
            )
        return resources

    async def _complete_existing(
        self,
        vpc: VpcInfo,
        owner_id: str,
        region: str,
        zone: str,
        labels: dict[str, str],
    ) -> NetworkResources:
        """Reuse an existing VPC, creating a missing subnet or security group."""
        created = False
        vpc_cidr = vpc.cidr_block or derive_cidr_block(owner_id)

        subnets = await self._call(
            "list_subnets", lambda: self.api.list_subnets(vpc.vpc_id, region)
        )
        subnet = next((s for s in subnets if s.zone == zone), None)
        if subnet is not None:
            subnet_id = subnet.subnet_id
        else:
            subnet_cidr = next_subnet_cidr(vpc_cidr, [s.cidr_block for s in subnets])
            if subnet_cidr is None:
                raise ProviderOperationError(
                    f"No free /{SUBNET_PREFIX} left in {vpc_cidr} for zone {zone}",
                    provider_code=self.provider_code,
                    error_code=ErrorCode.NETWORK_CREATE_FAILED,
                )
            self.logger.info(
                f"Adding subnet for zone {zone} to existing VPC {vpc.vpc_id}",
                extra={
                    "provider_code": self.provider_code,
                    "vpc_id": vpc.vpc_id,
                    "zone": zone,
                    "cidr_block": subnet_cidr,
                },
            )
            subnet_id = await self._call(
                "create_subnet",
                lambda: self.api.create_subnet(
                    region,
                    vpc.vpc_id,
                    zone,
                    subnet_cidr,
                    self._subnet_name(owner_id, zone),
                    labels,
                ),
            )
            created = True

        security_group_id = await self._call(
            "find_security_group",
            lambda: self.api.find_security_group(vpc.vpc_id, owner_id, region),
        )
        if security_group_id is None:
            security_group_id = await self._create_security_group(
                owner_id, region, vpc.vpc_id, labels
            )
            created = True

        return NetworkResources(
            vpc_id=vpc.vpc_id,
            subnet_id=subnet_id,
            security_group_id=security_group_id,
            cidr_block=vpc_cidr,
            zone=zone,
            created=created,
        )

    async def _create_all(
        self, owner_id: str, region: str, zone: str, labels: dict[str, str]
    ) -> NetworkResources:
        cidr_block = derive_cidr_block(owner_id)
        self.logger.info(
            f"Creating network resources for owner {owner_id} in {region}",
            extra={
                "provider_code": self.provider_code,
                "owner_id": owner_id,
                "region": region,
                "zone": zone,
                "cidr_block": cidr_block,
            },
        )

        vpc_id = await self._call(
            "create_vpc",
            lambda: self.api.create_vpc(region, cidr_block, f"vpc-{owner_id}", labels),
        )
        subnet_id = await self._call(
            "create_subnet",
            lambda: self.api.create_subnet(
                region,
                vpc_id,
                zone,
                first_subnet_cidr(cidr_block),
                self._subnet_name(owner_id, zone),
                labels,
            ),
        )
        security_group_id = await self._create_security_group(
            owner_id, region, vpc_id, labels
        )
        return NetworkResources(
            vpc_id=vpc_id,
            subnet_id=subnet_id,
            security_group_id=security_group_id,
            cidr_block=cidr_block,
            zone=zone,
            created=True,
        )

    async def _create_security_group(
        self, owner_id: str, region: str, vpc_id: str, labels: dict[str, str]
    ) -> str:
        return await self._call(
            "create_security_group",
            lambda: self.api.create_security_group(
                region,
                vpc_id,
                f"sg-{owner_id}",
                f"Auto-created security group for user: {owner_id}",
                labels,
            ),
        )

    @staticmethod
    def _subnet_name(owner_id: str, zone: str) -> str:
        return f"subnet-{owner_id}-{zone}"

    async def _call(self, step: str, call: Callable[[], Awaitable[T]]) -> T:
        """Run one vendor step and classify its failure."""
        try:
            return await call()
        except QuotaExceededError:
            raise
        except Exception as e:
            if self.quota_classifier(e):
                self.logger.error(
                    f"Network quota exceeded during {step}",
                    extra={
                        "provider_code": self.provider_code,
                        "step": step,
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                    },
                )
                raise QuotaExceededError(
                    f"Network quota exceeded during {step}: {e}",
                    provider_code=self.provider_code,
                    cloud_error_message=_cloud_message(e),
                    request_id=getattr(e, "request_id", None),
                ) from e
            if isinstance(e, EcsError):
                raise
            self.logger.error(
                f"Network step {step} failed",
                exc_info=True,
                extra={
                    "provider_code": self.provider_code,
                    "step": step,
                    "error_type": type(e).__name__,
                },
            )
            raise ProviderOperationError(
                f"Network resource creation failed during {step}: {e}",
                provider_code=self.provider_code,
                error_code=ErrorCode.NETWORK_CREATE_FAILED,
                cloud_error_message=str(e),
                request_id=getattr(e, "request_id", None),
            ) from e

    async def finish_provisioning(
        self,
        instance_id: str,
        region: str,
        resources: NetworkResources,
        allocate_public_ip: bool = False,
        open_ports: Optional[list[int]] = None,
        bandwidth: Optional[int] = None,
        correlation_id: Optional[str] = None,
    ) -> PostProvisioningOutcome:
        """
        Bind a public address and open ports, concurrently and best-effort.

        Waits at most ``post_provision_timeout`` seconds. Steps still running
        afterwards keep going in the background and are reported as degraded.
        This method does not raise for step failures.
        """
        open_ports = list(open_ports or [])
        outcome = PostProvisioningOutcome(firewall_confirmed=not open_ports)

        tasks: dict[str, asyncio.Task] = {}
        if allocate_public_ip:
            tasks["public_address"] = asyncio.create_task(
                self.api.allocate_public_address(instance_id, region, bandwidth)
            )
        if open_ports:
            tasks["firewall"] = asyncio.create_task(
                self._authorize_ports(region, resources.security_group_id, open_ports)
            )
        if not tasks:
            return outcome

        _, pending = await asyncio.wait(
            tasks.values(), timeout=self.post_provision_timeout
        )

        for step, task in tasks.items():
            if task in pending:
                outcome.failures[step] = (
                    f"not finished after {self.post_provision_timeout}s"
                )
                self._keep_in_background(step, instance_id, task)
                continue
            error = task.exception()
            if error is not None:
                outcome.failures[step] = f"{type(error).__name__}: {error}"
                self.logger.warning(
                    f"Post-provisioning step {step} failed for {instance_id}",
                    exc_info=error,
                    extra={
                        "provider_code": self.provider_code,
                        "instance_id": instance_id,
                        "step": step,
                        "error_type": type(error).__name__,
                    },
                )
            elif step == "public_address":
                outcome.public_address = task.result()
            else:
                port_failures = task.result()
                if port_failures:
                    outcome.failures[step] = "; ".join(
                        f"{port}: {reason}" for port, reason in port_failures.items()
                    )
                else:
                    outcome.firewall_confirmed = True

        if outcome.degraded:
            self.logger.warning(
                f"Instance {instance_id} created with degraded post-provisioning",
                extra={
                    "provider_code": self.provider_code,
                    "instance_id": instance_id,
                    "failures": outcome.failures,
                },
            )
            if self.log_manager is not None:
                await self.log_manager.emit_event(
                    PostProvisioningDegraded(
                        correlation_id=correlation_id or str(uuid.uuid4()),
                        provider_code=self.provider_code,
                        instance_id=instance_id,
                        steps=list(outcome.failures),
                        reasons=dict(outcome.failures),
                    )
                )
        return outcome

    async def _authorize_ports(
        self, region: str, security_group_id: str, ports: list[int]
    ) -> dict[int, str]:
        """Open each port on its own; returns the ports that failed with the reason."""
        failures: dict[int, str] = {}
        for port in ports:
            try:
                await self.api.authorize_ingress(
                    region, security_group_id, INGRESS_PROTOCOL, port, INGRESS_SOURCE
                )
            except Exception as e:
                failures[port] = f"{type(e).__name__}: {e}"
                self.logger.warning(
                    f"Failed to open port {port} on {security_group_id}",
                    extra={
                        "provider_code": self.provider_code,
                        "security_group_id": security_group_id,
                        "port": port,
                        "error_type": type(e).__name__,
                    },
                )
        return failures

    def _keep_in_background(
        self, step: str, instance_id: str, task: asyncio.Task
    ) -> None:
        self._background_tasks.add(task)
        task.add_done_callback(
            functools.partial(self._on_background_done, step, instance_id)
        )

    def _on_background_done(
        self, step: str, instance_id: str, task: asyncio.Task
    ) -> None:
        self._background_tasks.discard(task)
        if task.cancelled():
            self.logger.warning(
                f"Background step {step} for {instance_id} was cancelled",
                extra={"instance_id": instance_id, "step": step},
            )
            return
        error = task.exception()
        if error is not None:
            self.logger.warning(
                f"Background step {step} for {instance_id} failed: {error}",
                extra={
                    "instance_id": instance_id,
                    "step": step,
                    "error_type": type(error).__name__,
                },
            )
        elif step == "firewall" and task.result():
            self.logger.warning(
                f"Background step {step} for {instance_id} finished late "
                f"with failed ports {sorted(task.result())}",
                extra={"instance_id": instance_id, "step": step},
            )
        else:
            self.logger.info(
                f"Background step {step} for {instance_id} finished late",
                extra={"instance_id": instance_id, "step": step},
            )

    @property
    def background_task_count(self) -> int:
        return len(self._background_tasks)

    async def drain_background_tasks(self, timeout: Optional[float] = None) -> int:
        """
        Wait for late post-provisioning steps.

        Returns:
            Number of tasks still running when the wait ended
        """
        if not self._background_tasks:
            return 0
        _, pending = await asyncio.wait(set(self._background_tasks), timeout=timeout)
        return len(pending)


def _cloud_message(error: BaseException) -> str:
    if isinstance(error, EcsError) and error.cloud_error_message:
        return error.cloud_error_message
    return str(error)
