"""
Core modules that must remain capture neutral.

Keep capture backends, packet dissection and detector rules out of this
package. They live in capabilities and reach the core through
CaptureHandle, Detector and CapabilityContext.
"""

from .aggregator import StatsAggregator
from .config import AgentConfig
from .models import AnomalyEvent, PacketRecord, PerSecondBucket
from .store import AnomalyLog
from .worker import CaptureWorker

__all__ = [
    "AgentConfig",
    "AnomalyEvent",
    "AnomalyLog",
    "CaptureWorker",
    "PacketRecord",
    "PerSecondBucket",
    "StatsAggregator",
]
