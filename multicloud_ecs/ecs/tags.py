"""
Tenant ownership tags.

Every resource created through this package is labelled with the tenant and
owning user it was provisioned for, plus a marker naming this system as its
creator. Network provisioning relies on these labels to find resources it
created earlier.
"""

import logging
from typing import Mapping, Optional

from .base import CreateInstanceRequest

TENANT_TAG_KEY = "tenantId"
USER_TAG_KEY = "Owner"
CREATED_BY_TAG_KEY = "createdBy"
CREATED_BY_TAG_VALUE = "multicloud-ecs"


class TenantTagInjector:
    """Merges ownership labels into a request's tag set."""

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def inject(self, request: Optional[CreateInstanceRequest]) -> None:
        """
        Merge tenant, owner and created-by labels into ``request.tags``.

        The request's own tenant and user ids are the source of truth: a
        conflicting label is overwritten and a warning is logged. Unrelated
        caller labels are never removed, and an existing created-by label is
        left alone.
        """
        if request is None:
            return

        tags = dict(request.tags)

        self._merge(tags, TENANT_TAG_KEY, request.tenant_id, "tenant")
        self._merge(tags, USER_TAG_KEY, request.user_id, "user")

        if CREATED_BY_TAG_KEY not in tags:
            tags[CREATED_BY_TAG_KEY] = CREATED_BY_TAG_VALUE

        request.tags = tags

    def _merge(
        self, tags: dict[str, str], key: str, value: Optional[str], kind: str
    ) -> None:
        if value is None or not value.strip():
            return

        existing = tags.get(key)
        if not existing:
            tags[key] = value
            self.logger.debug(f"Injected {kind} tag: {key}={value}")
        elif existing != value:
            self.logger.warning(
                f"Conflicting {kind} tag, request value wins",
                extra={
                    "tag_key": key,
                    "tag_value": existing,
                    "request_value": value,
                    "operation": "tag_injection",
                    "phase": "conflict",
                },
            )
            tags[key] = value

    @staticmethod
    def extract_tenant_id(tags: Optional[Mapping[str, str]]) -> Optional[str]:
        if tags is None:
            return None
        return tags.get(TENANT_TAG_KEY)

    @staticmethod
    def extract_user_id(tags: Optional[Mapping[str, str]]) -> Optional[str]:
        if tags is None:
            return None
        return tags.get(USER_TAG_KEY)

    @staticmethod
    def is_created_by_us(tags: Optional[Mapping[str, str]]) -> bool:
        if tags is None:
            return False
        return tags.get(CREATED_BY_TAG_KEY) == CREATED_BY_TAG_VALUE
