"""
AWS EC2 backend for the multi-cloud ECS layer.

``AwsEc2Backend`` implements the instance hooks and ``AwsNetworkApi`` the
network operations used for silent addressing. Both talk to EC2 through
boto3. boto3 is blocking, so every call runs in a worker thread to keep the
event loop free for the concurrent post-provisioning steps.
"""

import asyncio
import logging
import threading
from decimal import Decimal
from typing import Any, Optional

import boto3
import botocore.exceptions

from ...config.settings import AwsProviderSettings
from ..base import (
    CreateInstanceRequest,
    InstanceChargeMode,
    NetworkResources,
    PriceInfo,
    VirtualMachine,
    VmStatus,
)
from ..client import ProviderBackend
from ..errors import (
    EcsError,
    ErrorCode,
    NotImplementedCapabilityError,
    ProviderOperationError,
    QuotaExceededError,
)
from ..mapping import ParameterMapper
from ..network import NetworkApi, SubnetInfo, VpcInfo, default_quota_classifier
from ..tags import CREATED_BY_TAG_KEY, CREATED_BY_TAG_VALUE, TenantTagInjector, USER_TAG_KEY

EC2_STATE_MAPPING = {
    "pending": VmStatus.PENDING,
    "running": VmStatus.RUNNING,
    "stopping": VmStatus.STOPPING,
    "shutting-down": VmStatus.STOPPING,
    "stopped": VmStatus.STOPPED,
    "terminated": VmStatus.DELETED,
}

# Rough on-demand hourly prices in USD (us-east-1)
EC2_HOURLY_PRICES = {
    "t3.nano": 0.0052,
    "t3.micro": 0.0104,
    "t3.small": 0.0208,
    "t3.medium": 0.0416,
    "t3.large": 0.0832,
    "t3.xlarge": 0.1664,
    "m5.large": 0.096,
    "m5.xlarge": 0.192,
    "m5.2xlarge": 0.384,
    "m5.4xlarge": 0.768,
    "c5.large": 0.085,
    "c5.xlarge": 0.17,
    "g4dn.xlarge": 0.526,
    "p3.2xlarge": 3.06,
    "p4d.24xlarge": 32.77,
}
DEFAULT_HOURLY_PRICE = 0.1
EBS_PRICE_PER_GB_MONTH = {"gp3": 0.08, "gp2": 0.10, "io1": 0.125, "st1": 0.045}
DEFAULT_EBS_PRICE_PER_GB_MONTH = 0.10
PUBLIC_IPV4_HOURLY_PRICE = 0.005
TRAFFIC_PRICE_PER_GB = 0.09
HOURS_PER_MONTH = 24 * 30
PRICE_VALIDITY_SECONDS = 3600

# vCPU, memory GB
EC2_INSTANCE_SIZES = {
    "t3.micro": (2, 1),
    "t3.small": (2, 2),
    "t3.medium": (2, 4),
    "t3.large": (2, 8),
    "t3.xlarge": (4, 16),
    "m5.2xlarge": (8, 32),
    "m5.4xlarge": (16, 64),
}

DEFAULT_ROOT_DEVICE = "/dev/xvda"
NAME_TAG_KEY = "Name"
INSTANCE_NOT_FOUND_CODES = {"InvalidInstanceID.NotFound"}
DUPLICATE_RULE_CODE = "InvalidPermission.Duplicate"
QUOTA_CODE_SUFFIXES = ("LimitExceeded", "QuotaExceeded")
QUOTA_CODES = {"InsufficientAddressCapacity", "MaxSpotInstanceCountExceeded"}


def _error_details(error: botocore.exceptions.ClientError) -> tuple[str, str, Optional[str]]:
    details = error.response.get("Error", {})
    code = details.get("Code", "Unknown")
    message = details.get("Message", str(error))
    request_id = error.response.get("ResponseMetadata", {}).get("RequestId")
    return code, message, request_id


def is_aws_quota_code(code: str) -> bool:
    return code in QUOTA_CODES or code.endswith(QUOTA_CODE_SUFFIXES)


def aws_quota_classifier(error: BaseException) -> bool:
    """Classify by AWS error code, falling back to the text heuristic."""
    if isinstance(error, botocore.exceptions.ClientError):
        code, _, _ = _error_details(error)
        return is_aws_quota_code(code)
    return default_quota_classifier(error)


def translate_client_error(
    error: botocore.exceptions.ClientError,
    operation: str,
    error_code: ErrorCode,
    provider_code: str,
) -> EcsError:
    """Turn a botocore ClientError into a typed error."""
    code, message, request_id = _error_details(error)
    cloud_error_message = f"{code}: {message}"
    if is_aws_quota_code(code):
        return QuotaExceededError(
            f"{operation} hit an AWS limit ({code}): {message}",
            provider_code=provider_code,
            cloud_error_message=cloud_error_message,
            request_id=request_id,
        )
    return ProviderOperationError(
        f"{operation} failed ({code}): {message}",
        provider_code=provider_code,
        error_code=error_code,
        cloud_error_message=cloud_error_message,
        request_id=request_id,
    )


def _aws_tags(tags: dict[str, str], name: Optional[str] = None) -> list[dict[str, str]]:
    merged = dict(tags)
    if name:
        merged.setdefault(NAME_TAG_KEY, name)
    return [{"Key": k, "Value": v} for k, v in merged.items()]


def _tag_specification(resource_type: str, tags: dict[str, str], name: Optional[str] = None):
    return [{"ResourceType": resource_type, "Tags": _aws_tags(tags, name)}]


class Ec2ClientCache:
    """One boto3 session per provider, one EC2 client per region."""

    def __init__(self, settings: AwsProviderSettings):
        self.settings = settings
        self._session: Optional[boto3.Session] = None
        self._clients: dict[str, Any] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(self.__class__.__name__)

    def _create_session(self) -> boto3.Session:
        session_kwargs = {"region_name": self.settings.region}

        # Explicit credentials win over the profile
        if self.settings.access_key_id:
            session_kwargs["aws_access_key_id"] = self.settings.access_key_id
        if self.settings.secret_access_key:
            session_kwargs["aws_secret_access_key"] = self.settings.secret_access_key
        if self.settings.session_token:
            session_kwargs["aws_session_token"] = self.settings.session_token
        if self.settings.profile_name and not self.settings.access_key_id:
            session_kwargs["profile_name"] = self.settings.profile_name

        session = boto3.Session(**session_kwargs)
        self.logger.info(f"AWS session initialized for region: {self.settings.region}")
        return session

    def get(self, region: Optional[str] = None) -> Any:
        """Get the EC2 client for a region, creating it on first use."""
        region = region or self.settings.region
        with self._lock:
            client = self._clients.get(region)
            if client is None:
                if self._session is None:
                    self._session = self._create_session()
                client_kwargs = {"region_name": region}
                if self.settings.endpoint_url:
                    client_kwargs["endpoint_url"] = self.settings.endpoint_url
                client = self._session.client("ec2", **client_kwargs)
                self._clients[region] = client
            return client


async def _ec2_call(clients: Ec2ClientCache, region: Optional[str], method: str, **kwargs):
    client = clients.get(region)
    return await asyncio.to_thread(getattr(client, method), **kwargs)


class AwsEc2Backend(ProviderBackend):
    """EC2 instance operations."""

    def __init__(
        self,
        settings: AwsProviderSettings,
        clients: Optional[Ec2ClientCache] = None,
        mapper: Optional[ParameterMapper] = None,
    ):
        self.settings = settings
        self.clients = clients or Ec2ClientCache(settings)
        self.mapper = mapper or ParameterMapper(
            image_mapping=settings.image_mapping,
            gpu_mapping=settings.gpu_mapping,
            default_image_id=settings.default_image_id,
            default_instance_type=settings.default_instance_type,
            size_mapping=EC2_INSTANCE_SIZES,
        )
        self.logger = logging.getLogger(self.__class__.__name__)

    @property
    def provider_code(self) -> str:
        return self.settings.provider_code

    @property
    def provider_name(self) -> str:
        return self.settings.provider_name

    @property
    def priority(self) -> int:
        return self.settings.priority

    def is_available(self) -> bool:
        return self.settings.enabled and self.settings.has_credentials

    async def calculate_price(self, request: CreateInstanceRequest) -> PriceInfo:
        """Estimate from a static price table."""
        instance_type = self._resolve_instance_type(request)
        disk_type = request.system_disk_type or self.settings.default_system_disk_type
        disk_size = request.system_disk_size or self.settings.default_system_disk_size

        instance_hourly = Decimal(
            str(EC2_HOURLY_PRICES.get(instance_type, DEFAULT_HOURLY_PRICE))
        )
        disk_per_gb = Decimal(
            str(EBS_PRICE_PER_GB_MONTH.get(disk_type, DEFAULT_EBS_PRICE_PER_GB_MONTH))
        )
        ip_hourly = (
            Decimal(str(PUBLIC_IPV4_HOURLY_PRICE))
            if request.allocate_public_ip
            else Decimal("0")
        )
        quantity = Decimal(request.quantity)

        total_hourly = (instance_hourly + ip_hourly) * quantity
        total_monthly = (
            total_hourly * HOURS_PER_MONTH + disk_per_gb * disk_size * quantity
        )

        return PriceInfo(
            provider=self.provider_code,
            region=request.region,
            instance_type=instance_type,
            instance_price_per_hour=instance_hourly,
            instance_price_per_month=instance_hourly * HOURS_PER_MONTH,
            system_disk_price_per_gb_per_month=disk_per_gb,
            traffic_price_per_gb=Decimal(str(TRAFFIC_PRICE_PER_GB)),
            total_price_per_hour=total_hourly,
            total_price_per_month=total_monthly,
            currency="USD",
            price_validity_seconds=PRICE_VALIDITY_SECONDS,
            metadata={
                "source": "static_table",
                "disk_type": disk_type,
                "disk_size_gb": disk_size,
                "quantity": request.quantity,
            },
        )

    async def create_instance(
        self,
        request: CreateInstanceRequest,
        network: Optional[NetworkResources] = None,
    ) -> VirtualMachine:
        if request.instance_charge_mode == InstanceChargeMode.PREPAID:
            raise NotImplementedCapabilityError(
                "Prepaid instances are not supported on EC2, use ON_DEMAND",
                provider_code=self.provider_code,
            )

        instance_type = self._resolve_instance_type(request)
        image_id = self.mapper.resolve_image_id(request.image_key)
        disk_size = request.system_disk_size or self.settings.default_system_disk_size
        disk_type = request.system_disk_type or self.settings.default_system_disk_type

        run_params: dict[str, Any] = {
            "ImageId": image_id,
            "InstanceType": instance_type,
            "MinCount": request.quantity,
            "MaxCount": request.quantity,
            "BlockDeviceMappings": [
                {
                    "DeviceName": request.get_extension(
                        "root_device_name", str, DEFAULT_ROOT_DEVICE
                    ),
                    "Ebs": {
                        "VolumeSize": disk_size,
                        "VolumeType": disk_type,
                        "DeleteOnTermination": True,
                    },
                }
            ],
            "TagSpecifications": [
                *_tag_specification("instance", request.tags, request.instance_name),
                *_tag_specification("volume", request.tags, request.instance_name),
            ],
        }

        # Optional parameters
        if network is not None:
            run_params["SubnetId"] = network.subnet_id
            run_params["SecurityGroupIds"] = [network.security_group_id]
        elif request.zone:
            run_params["Placement"] = {"AvailabilityZone": request.zone}
        if request.key_pair_name:
            run_params["KeyName"] = request.key_pair_name
        user_data = request.get_extension("user_data", str)
        if user_data:
            run_params["UserData"] = user_data
        client_token = request.get_extension("client_token", str)
        if client_token:
            run_params["ClientToken"] = client_token
        if request.password:
            self.logger.warning(
                "EC2 does not accept a login password at launch, ignoring it",
                extra={"instance_name": request.instance_name},
            )

        try:
            response = await _ec2_call(
                self.clients, request.region, "run_instances", **run_params
            )
        except botocore.exceptions.ClientError as e:
            raise translate_client_error(
                e, "run_instances", ErrorCode.CREATE_FAILED, self.provider_code
            ) from e

        instances = response["Instances"]
        vm = self._to_virtual_machine(
            instances[0],
            request.region,
            request_id=response.get("ResponseMetadata", {}).get("RequestId"),
        )
        metadata = {
            **vm.metadata,
            "bandwidth_mode": request.bandwidth_mode.value,
            "charge_mode": request.instance_charge_mode.value,
        }
        if len(instances) > 1:
            metadata["instance_ids"] = [i["InstanceId"] for i in instances]
        return vm.model_copy(update={"metadata": metadata})

    async def delete_instance(self, instance_id: str) -> bool:
        return await self._state_change(
            "terminate_instances", ErrorCode.DELETE_FAILED, instance_id
        )

    async def start_instance(self, instance_id: str) -> bool:
        return await self._state_change(
            "start_instances", ErrorCode.START_FAILED, instance_id
        )

    async def stop_instance(self, instance_id: str) -> bool:
        return await self._state_change(
            "stop_instances", ErrorCode.STOP_FAILED, instance_id
        )

    async def restart_instance(self, instance_id: str) -> bool:
        return await self._state_change(
            "reboot_instances", ErrorCode.RESTART_FAILED, instance_id
        )

    async def get_instance(self, instance_id: str) -> Optional[VirtualMachine]:
        try:
            response = await _ec2_call(
                self.clients, None, "describe_instances", InstanceIds=[instance_id]
            )
        except botocore.exceptions.ClientError as e:
            code, _, _ = _error_details(e)
            if code in INSTANCE_NOT_FOUND_CODES:
                return None
            raise translate_client_error(
                e, "describe_instances", ErrorCode.GET_INSTANCE_FAILED,
                self.provider_code,
            ) from e

        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return self._to_virtual_machine(instance, self.settings.region)
        return None

    async def find_instance_id_by_name(self, instance_name: str) -> Optional[str]:
        try:
            response = await _ec2_call(
                self.clients,
                None,
                "describe_instances",
                Filters=[
                    {"Name": f"tag:{NAME_TAG_KEY}", "Values": [instance_name]},
                    {
                        "Name": "instance-state-name",
                        "Values": ["pending", "running", "stopping", "stopped"],
                    },
                ],
            )
        except botocore.exceptions.ClientError as e:
            raise translate_client_error(
                e, "describe_instances", ErrorCode.FIND_INSTANCE_FAILED,
                self.provider_code,
            ) from e

        for reservation in response.get("Reservations", []):
            for instance in reservation.get("Instances", []):
                return instance["InstanceId"]
        return None

    async def _state_change(
        self, method: str, error_code: ErrorCode, instance_id: str
    ) -> bool:
        """Issue a state change. An unknown instance reports False."""
        try:
            await _ec2_call(self.clients, None, method, InstanceIds=[instance_id])
        except botocore.exceptions.ClientError as e:
            code, _, _ = _error_details(e)
            if code in INSTANCE_NOT_FOUND_CODES:
                self.logger.warning(
                    f"{method}: instance {instance_id} not found",
                    extra={"instance_id": instance_id, "aws_error_code": code},
                )
                return False
            raise translate_client_error(e, method, error_code, self.provider_code) from e
        return True

    def _resolve_instance_type(self, request: CreateInstanceRequest) -> str:
        return (
            self.mapper.resolve_instance_type(
                request.instance_type, request.gpu_model, request.cpu, request.memory
            )
            or self.settings.default_instance_type
        )

    def _to_virtual_machine(
        self,
        instance: dict[str, Any],
        region: Optional[str],
        request_id: Optional[str] = None,
    ) -> VirtualMachine:
        raw_status = instance.get("State", {}).get("Name")
        tags = {tag["Key"]: tag["Value"] for tag in instance.get("Tags", [])}
        cpu_options = instance.get("CpuOptions", {})
        cpu = None
        if cpu_options:
            cpu = cpu_options.get("CoreCount", 0) * cpu_options.get("ThreadsPerCore", 1)

        return VirtualMachine(
            instance_id=instance["InstanceId"],
            instance_name=tags.get(NAME_TAG_KEY),
            status=EC2_STATE_MAPPING.get((raw_status or "").lower(), VmStatus.UNKNOWN),
            raw_status=raw_status,
            provider=self.provider_code,
            region=region,
            zone=instance.get("Placement", {}).get("AvailabilityZone"),
            instance_type=instance.get("InstanceType"),
            image_id=instance.get("ImageId"),
            cpu=cpu,
            private_ip=instance.get("PrivateIpAddress"),
            public_ip=instance.get("PublicIpAddress"),
            created_at=instance.get("LaunchTime"),
            tenant_id=TenantTagInjector.extract_tenant_id(tags),
            tags=tags,
            metadata={
                "vpc_id": instance.get("VpcId"),
                "subnet_id": instance.get("SubnetId"),
                "key_name": instance.get("KeyName"),
            },
            request_id=request_id,
        )


class AwsNetworkApi(NetworkApi):
    """EC2 VPC operations for silent addressing."""

    def __init__(
        self, settings: AwsProviderSettings, clients: Optional[Ec2ClientCache] = None
    ):
        self.settings = settings
        self.clients = clients or Ec2ClientCache(settings)
        self.logger = logging.getLogger(self.__class__.__name__)

    async def _call(self, region: Optional[str], method: str, **kwargs):
        try:
            return await _ec2_call(self.clients, region, method, **kwargs)
        except botocore.exceptions.ClientError as e:
            raise translate_client_error(
                e, method, ErrorCode.NETWORK_CREATE_FAILED, self.settings.provider_code
            ) from e

    @staticmethod
    def _owner_filters(owner_id: str) -> list[dict[str, Any]]:
        return [
            {"Name": f"tag:{USER_TAG_KEY}", "Values": [owner_id]},
            {"Name": f"tag:{CREATED_BY_TAG_KEY}", "Values": [CREATED_BY_TAG_VALUE]},
        ]

    async def find_vpc_by_owner(self, owner_id: str, region: str) -> Optional[VpcInfo]:
        response = await self._call(
            region, "describe_vpcs", Filters=self._owner_filters(owner_id)
        )
        vpcs = sorted(response.get("Vpcs", []), key=lambda vpc: vpc["VpcId"])
        if not vpcs:
            return None
        if len(vpcs) > 1:
            self.logger.warning(
                f"Owner {owner_id} has {len(vpcs)} VPCs in {region}, using {vpcs[0]['VpcId']}",
                extra={"owner_id": owner_id, "region": region},
            )
        return VpcInfo(vpc_id=vpcs[0]["VpcId"], cidr_block=vpcs[0].get("CidrBlock"))

    async def list_subnets(self, vpc_id: str, region: str) -> list[SubnetInfo]:
        response = await self._call(
            region,
            "describe_subnets",
            Filters=[{"Name": "vpc-id", "Values": [vpc_id]}],
        )
        return [
            SubnetInfo(
                subnet_id=subnet["SubnetId"],
                zone=subnet.get("AvailabilityZone"),
                cidr_block=subnet.get("CidrBlock"),
            )
            for subnet in response.get("Subnets", [])
        ]

    async def find_security_group(
        self, vpc_id: str, owner_id: str, region: str
    ) -> Optional[str]:
        response = await self._call(
            region,
            "describe_security_groups",
            Filters=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                *self._owner_filters(owner_id),
            ],
        )
        groups = response.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    async def create_vpc(
        self, region: str, cidr_block: str, name: str, tags: dict[str, str]
    ) -> str:
        response = await self._call(
            region,
            "create_vpc",
            CidrBlock=cidr_block,
            TagSpecifications=_tag_specification("vpc", tags, name),
        )
        vpc_id = response["Vpc"]["VpcId"]
        await self._attach_internet_gateway(region, vpc_id, name, tags)
        return vpc_id

    async def _attach_internet_gateway(
        self, region: str, vpc_id: str, name: str, tags: dict[str, str]
    ) -> None:
        """Give the VPC a route to the internet so public addresses are reachable."""
        response = await self._call(
            region,
            "create_internet_gateway",
            TagSpecifications=_tag_specification("internet-gateway", tags, f"igw-{name}"),
        )
        gateway_id = response["InternetGateway"]["InternetGatewayId"]
        await self._call(
            region, "attach_internet_gateway", InternetGatewayId=gateway_id, VpcId=vpc_id
        )

        route_tables = await self._call(
            region,
            "describe_route_tables",
            Filters=[
                {"Name": "vpc-id", "Values": [vpc_id]},
                {"Name": "association.main", "Values": ["true"]},
            ],
        )
        for route_table in route_tables.get("RouteTables", []):
            await self._call(
                region,
                "create_route",
                RouteTableId=route_table["RouteTableId"],
                DestinationCidrBlock="0.0.0.0/0",
                GatewayId=gateway_id,
            )

    async def create_subnet(
        self,
        region: str,
        vpc_id: str,
        zone: str,
        cidr_block: str,
        name: str,
        tags: dict[str, str],
    ) -> str:
        response = await self._call(
            region,
            "create_subnet",
            VpcId=vpc_id,
            CidrBlock=cidr_block,
            AvailabilityZone=zone,
            TagSpecifications=_tag_specification("subnet", tags, name),
        )
        return response["Subnet"]["SubnetId"]

    async def create_security_group(
        self,
        region: str,
        vpc_id: str,
        name: str,
        description: str,
        tags: dict[str, str],
    ) -> str:
        response = await self._call(
            region,
            "create_security_group",
            GroupName=name,
            Description=description,
            VpcId=vpc_id,
            TagSpecifications=_tag_specification("security-group", tags, name),
        )
        return response["GroupId"]

    async def authorize_ingress(
        self,
        region: str,
        security_group_id: str,
        protocol: str,
        port: int,
        source_cidr: str,
    ) -> None:
        try:
            await _ec2_call(
                self.clients,
                region,
                "authorize_security_group_ingress",
                GroupId=security_group_id,
                IpPermissions=[
                    {
                        "IpProtocol": protocol,
                        "FromPort": port,
                        "ToPort": port,
                        "IpRanges": [
                            {
                                "CidrIp": source_cidr,
                                "Description": "Opened at instance creation",
                            }
                        ],
                    }
                ],
            )
        except botocore.exceptions.ClientError as e:
            code, _, _ = _error_details(e)
            if code == DUPLICATE_RULE_CODE:
                self.logger.debug(
                    f"Ingress {protocol}/{port} already open on {security_group_id}"
                )
                return
            raise translate_client_error(
                e, "authorize_security_group_ingress",
                ErrorCode.NETWORK_CREATE_FAILED, self.settings.provider_code,
            ) from e

    async def allocate_public_address(
        self, instance_id: str, region: str, bandwidth: Optional[int] = None
    ) -> str:
        """Allocate an Elastic IP and associate it once the instance runs."""
        if bandwidth:
            self.logger.debug(
                f"EC2 has no per-address bandwidth cap, ignoring {bandwidth} Mbps"
            )

        # Association needs a running instance
        client = self.clients.get(region)
        waiter = client.get_waiter("instance_running")
        await asyncio.to_thread(waiter.wait, InstanceIds=[instance_id])

        allocation = await self._call(region, "allocate_address", Domain="vpc")
        allocation_id = allocation["AllocationId"]
        bound = False
        try:
            await self._call(
                region,
                "associate_address",
                AllocationId=allocation_id,
                InstanceId=instance_id,
            )
            bound = True
        finally:
            # Runs on cancellation too
            if not bound:
                await self._release_address(region, allocation_id)
        return allocation["PublicIp"]

    async def _release_address(self, region: str, allocation_id: str) -> None:
        try:
            await asyncio.shield(
                self._call(region, "release_address", AllocationId=allocation_id)
            )
        except EcsError as e:
            self.logger.error(
                f"Failed to release Elastic IP {allocation_id}: {e}",
                extra={
                    "provider_code": self.settings.provider_code,
                    "region": region,
                    "allocation_id": allocation_id,
                    "error_code": e.error_code,
                },
            )

    async def default_zone(self, region: str) -> str:
        if self.settings.default_zone and region == self.settings.region:
            return self.settings.default_zone
        response = await self._call(
            region,
            "describe_availability_zones",
            Filters=[{"Name": "state", "Values": ["available"]}],
        )
        zones = sorted(zone["ZoneName"] for zone in response.get("AvailabilityZones", []))
        if not zones:
            raise ProviderOperationError(
                f"No available zone in {region}",
                provider_code=self.settings.provider_code,
                error_code=ErrorCode.NETWORK_CREATE_FAILED,
            )
        return zones[0]
