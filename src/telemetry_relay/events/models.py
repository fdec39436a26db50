"""
Pydantic models for playback telemetry events.

Field names are snake_case in Python and camelCase on the wire
(``viewerId``, ``playbackPositionSec``...), matching what the ingestion
service stores. Unknown fields are kept, so producers can attach extra
payload without changing the model.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils import now_ms


class EventType(str, Enum):
    PLAY = "PLAY"
    PAUSE = "PAUSE"
    QUALITY_CHANGE = "QUALITY_CHANGE"
    BUFFER_START = "BUFFER_START"
    BUFFER_END = "BUFFER_END"
    PLAYER_ERROR = "PLAYER_ERROR"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class QualityInfo(_WireModel):
    """Last known rendition. Sent with every event."""

    bitrate_kbps: Optional[int] = Field(None, alias="bitrateKbps")
    width: Optional[int] = None
    height: Optional[int] = None
    resolution: Optional[str] = None


class BufferingInfo(_WireModel):
    started_at: int = Field(..., alias="startedAt")
    ended_at: Optional[int] = Field(None, alias="endedAt")
    duration_ms: Optional[int] = Field(None, alias="durationMs")


class NetworkInfo(_WireModel):
    downlink_mbps: Optional[float] = Field(None, alias="downlinkMbps")
    rtt_ms: Optional[float] = Field(None, alias="rttMs")
    effective_type: Optional[str] = Field(None, alias="effectiveType")


class DeviceInfo(_WireModel):
    browser: Optional[str] = None
    os: Optional[str] = None
    screen_width: Optional[int] = Field(None, alias="screenWidth")
    screen_height: Optional[int] = Field(None, alias="screenHeight")


class EngagementInfo(_WireModel):
    total_watch_time: int = Field(0, alias="totalWatchTime")
    total_pause_time: int = Field(0, alias="totalPauseTime")
    interaction_count: int = Field(0, alias="interactionCount")


class PlayerMetrics(_WireModel):
    dropped_frames: int = Field(0, alias="droppedFrames")
    decoded_frames: int = Field(0, alias="decodedFrames")
    fps: Optional[float] = None
    buffer_length_sec: float = Field(0.0, alias="bufferLengthSec")

    @field_validator("buffer_length_sec")
    def _non_negative(cls, v):
        return max(0.0, v)


class ErrorInfo(_WireModel):
    type: Optional[str] = None
    details: Optional[str] = None
    fatal: bool = False


class TelemetryEvent(_WireModel):
    """One producer-reported occurrence.

    The delivery engine treats this as opaque; it only needs the model to
    serialize itself with ``model_dump(by_alias=True)``.
    """

    viewer_id: str = Field(..., alias="viewerId")
    session_id: str = Field(..., alias="sessionId")
    event_type: str = Field(..., alias="eventType")
    timestamp: int = Field(default_factory=now_ms)
    playback_position_sec: Optional[float] = Field(None, alias="playbackPositionSec")

    quality: Optional[QualityInfo] = None
    buffering: Optional[BufferingInfo] = None
    network: Optional[NetworkInfo] = None
    device: Optional[DeviceInfo] = None
    engagement: Optional[EngagementInfo] = None
    player: Optional[PlayerMetrics] = None
    error: Optional[ErrorInfo] = None

    @field_validator("event_type", mode="before")
    def _event_type_str(cls, v):
        if isinstance(v, EventType):
            return v.value
        if not isinstance(v, str) or not v.strip():
            raise ValueError("eventType must be a non-empty string")
        return v.strip().upper()

    @field_validator("timestamp")
    def _validate_timestamp(cls, v):
        if v < 0:
            raise ValueError("timestamp must be milliseconds since epoch")
        return v

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
