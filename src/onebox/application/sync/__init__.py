"""Mailbox synchronization engine."""

from onebox.application.sync.manager import SyncManager
from onebox.application.sync.single_flight import SingleFlight
from onebox.application.sync.supervisor import ConnectionSupervisor

__all__ = [
    "ConnectionSupervisor",
    "SingleFlight",
    "SyncManager",
]
