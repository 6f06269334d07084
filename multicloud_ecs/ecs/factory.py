"""
Process wiring.

Builds one registry, one scheduler and one service from settings. Callers
hold on to the returned service; nothing here is stored globally.
"""

import logging
from typing import Optional

from ..config.settings import AppSettings, get_settings
from ..logging_utils.log_manager import LogManager
from .client import ProviderBackend, ProviderClient
from .network import NetworkApi, NetworkProvisioner
from .providers.aws_provider import (
    AwsEc2Backend,
    AwsNetworkApi,
    Ec2ClientCache,
    aws_quota_classifier,
)
from .registry import ProviderRegistry
from .scheduler import create_scheduler
from .service import MultiCloudEcsService
from .tags import TenantTagInjector

logger = logging.getLogger(__name__)


def build_service(
    settings: Optional[AppSettings] = None,
    backends: Optional[list[ProviderBackend]] = None,
    network_apis: Optional[dict[str, NetworkApi]] = None,
    log_manager: Optional[LogManager] = None,
) -> MultiCloudEcsService:
    """
    Assemble the service.

    Args:
        settings: Application settings; the cached settings when omitted
        backends: Additional vendor backends to register
        network_apis: Network APIs for those backends, keyed by provider code
        log_manager: Event journal; created from settings when auditing is on

    Returns:
        The ready service
    """
    settings = settings or get_settings()
    network_apis = {code.upper(): api for code, api in (network_apis or {}).items()}

    if log_manager is None and settings.ecs.audit_enabled:
        log_manager = LogManager(settings.monitoring.event_log_dir)

    registry = ProviderRegistry()
    tag_injector = TenantTagInjector()

    def provisioner_for(code: str, api: NetworkApi, classifier=None) -> NetworkProvisioner:
        return NetworkProvisioner(
            api,
            provider_code=code,
            quota_classifier=classifier,
            post_provision_timeout=settings.ecs.post_provision_timeout,
            log_manager=log_manager,
        )

    if not settings.ecs.enabled:
        logger.warning("multicloud-ecs is disabled, no providers registered")
    else:
        if settings.aws.enabled:
            clients = Ec2ClientCache(settings.aws)
            backend = AwsEc2Backend(settings.aws, clients)
            provisioner = provisioner_for(
                backend.provider_code,
                AwsNetworkApi(settings.aws, clients),
                aws_quota_classifier,
            )
            registry.register(ProviderClient(backend, tag_injector, provisioner))

        for backend in backends or []:
            api = network_apis.get(backend.provider_code.upper())
            provisioner = provisioner_for(backend.provider_code, api) if api else None
            registry.register(ProviderClient(backend, tag_injector, provisioner))

    scheduler = create_scheduler(settings.ecs.scheduler_type, registry)
    logger.info(
        f"Service ready with providers {registry.list_codes()}",
        extra={"scheduler": scheduler.name, "providers": registry.list_codes()},
    )
    return MultiCloudEcsService(registry, scheduler, tag_injector, log_manager)
