"""
Operator-facing events for the multi-cloud ECS layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class LogEvent:
    """Base class for all log events."""

    correlation_id: str
    event_type: str = ""
    timestamp: Optional[datetime] = None
    provider_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}
        if self.timestamp is None:
            self.timestamp = datetime.now()


@dataclass
class InstanceOperationStarted(LogEvent):
    """Emitted when the service dispatches an instance operation."""

    operation: str = ""
    tenant_id: Optional[str] = None
    instance_name: Optional[str] = None
    instance_id: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "instance_operation_started"


@dataclass
class InstanceOperationCompleted(LogEvent):
    """Emitted when an instance operation finishes, successfully or not."""

    operation: str = ""
    success: bool = False
    instance_id: Optional[str] = None
    status: Optional[str] = None
    duration_seconds: float = 0.0
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "instance_operation_completed"


@dataclass
class NetworkResourcesResolved(LogEvent):
    """Emitted when an owner's network sandbox was found or created."""

    owner_id: str = ""
    region: str = ""
    vpc_id: str = ""
    subnet_id: str = ""
    security_group_id: str = ""
    created: bool = False

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "network_resources_resolved"


@dataclass
class PostProvisioningDegraded(LogEvent):
    """Emitted when a best-effort step after instance creation did not finish."""

    instance_id: str = ""
    steps: List[str] = field(default_factory=list)
    reasons: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        super().__post_init__()
        self.event_type = "post_provisioning_degraded"
