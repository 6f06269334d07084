"""
Logging setup and the operator event journal.
"""

from .events import (
    InstanceOperationCompleted,
    InstanceOperationStarted,
    LogEvent,
    NetworkResourcesResolved,
    PostProvisioningDegraded,
)
from .log_manager import LogManager
from .setup import StructuredFormatter, configure_logging

__all__ = [
    "LogManager",
    "LogEvent",
    "InstanceOperationStarted",
    "InstanceOperationCompleted",
    "NetworkResourcesResolved",
    "PostProvisioningDegraded",
    "StructuredFormatter",
    "configure_logging",
]
