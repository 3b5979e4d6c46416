"""
Offline queue reconciliation: coordinator plus connectivity trigger.
"""

from pool_scheduler.sync.connectivity import ConnectivitySignal
from pool_scheduler.sync.connectivity import poll
from pool_scheduler.sync.coordinator import SyncCoordinator

__all__ = ["ConnectivitySignal", "SyncCoordinator", "poll"]
