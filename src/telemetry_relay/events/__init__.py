from .models import (
    BufferingInfo,
    DeviceInfo,
    EngagementInfo,
    ErrorInfo,
    EventType,
    NetworkInfo,
    PlayerMetrics,
    QualityInfo,
    TelemetryEvent,
)
from .session import PlaybackSession

__all__ = [
    "TelemetryEvent",
    "EventType",
    "QualityInfo",
    "BufferingInfo",
    "NetworkInfo",
    "DeviceInfo",
    "EngagementInfo",
    "PlayerMetrics",
    "ErrorInfo",
    "PlaybackSession",
]
