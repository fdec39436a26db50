"""
Producer-side playback session.

Turns player notifications (play, pause, rendition switch, stall, error)
into TelemetryEvents and pushes them into any ``record`` callable, usually
``TelemetryEngine.record``. How the notifications are detected, and how
device or network details are probed, stays outside: those come in through
the optional provider callables.
"""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from ..utils import new_session_id, now_ms
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


class PlaybackSession:
    """Engagement/quality/buffering state for one viewer session.

    Example:
        session = PlaybackSession("viewer-42", engine.record,
                                  position=lambda: player.current_time)
        session.quality_switched(bitrate_bps=3_000_000, width=1280, height=720)
        session.play()
    """

    def __init__(
        self,
        viewer_id: str,
        record: Callable[[TelemetryEvent], None],
        *,
        session_id: Optional[str] = None,
        clock: Callable[[], int] = now_ms,
        position: Optional[Callable[[], Optional[float]]] = None,
        network: Optional[Callable[[], Optional[NetworkInfo]]] = None,
        device: Optional[Callable[[], Optional[DeviceInfo]]] = None,
        player: Optional[Callable[[], Optional[PlayerMetrics]]] = None,
    ):
        self.viewer_id = viewer_id
        self.session_id = session_id or new_session_id()
        self._record = record
        self._clock = clock
        self._position = position
        self._network = network
        self._device = device
        self._player = player

        self.quality = QualityInfo()
        self.total_watch_time = 0
        self.total_pause_time = 0
        self.interaction_count = 0
        self._play_started: int | None = None
        self._pause_started: int | None = None
        self._buffer_started: int | None = None

    @property
    def buffering(self) -> bool:
        return self._buffer_started is not None

    # ---------- notifications

    def play(self) -> TelemetryEvent:
        now = self._clock()
        self._play_started = now
        if self._pause_started is not None:
            self.total_pause_time += now - self._pause_started
            self._pause_started = None
        self.interaction_count += 1
        return self._emit(self._base(EventType.PLAY, now))

    def pause(self) -> TelemetryEvent:
        now = self._clock()
        self._pause_started = now
        if self._play_started is not None:
            self.total_watch_time += now - self._play_started
            self._play_started = None
        self.interaction_count += 1
        return self._emit(self._base(EventType.PAUSE, now))

    def quality_switched(self, *, bitrate_bps: int, width: int, height: int) -> TelemetryEvent:
        self.quality = QualityInfo(
            bitrate_kbps=round(bitrate_bps / 1000),
            width=width,
            height=height,
            resolution=f"{height}p",
        )
        logger.debug(f"Quality updated: {self.quality.resolution} @ {self.quality.bitrate_kbps}kbps")
        return self._emit(self._base(EventType.QUALITY_CHANGE, self._clock()))

    def buffering_started(self) -> TelemetryEvent:
        now = self._clock()
        self._buffer_started = now
        event = self._base(EventType.BUFFER_START, now)
        event.buffering = BufferingInfo(started_at=now)
        return self._emit(event)

    def buffering_ended(self) -> Optional[TelemetryEvent]:
        """BUFFER_END for the current stall; None when no stall was open."""
        if self._buffer_started is None:
            return None
        now = self._clock()
        started, self._buffer_started = self._buffer_started, None
        event = self._base(EventType.BUFFER_END, now)
        event.buffering = BufferingInfo(
            started_at=started, ended_at=now, duration_ms=now - started
        )
        return self._emit(event)

    def player_error(
        self, error_type: str, details: Optional[str] = None, fatal: bool = False
    ) -> TelemetryEvent:
        event = self._base(EventType.PLAYER_ERROR, self._clock())
        event.error = ErrorInfo(type=error_type, details=details, fatal=fatal)
        return self._emit(event)

    # ---------- internals

    def _base(self, event_type: EventType, ts: int) -> TelemetryEvent:
        return TelemetryEvent(
            viewer_id=self.viewer_id,
            session_id=self.session_id,
            event_type=event_type,
            timestamp=ts,
            playback_position_sec=self._position() if self._position else None,
            quality=self.quality.model_copy(),
            engagement=EngagementInfo(
                total_watch_time=self.total_watch_time,
                total_pause_time=self.total_pause_time,
                interaction_count=self.interaction_count,
            ),
            network=self._network() if self._network else None,
            device=self._device() if self._device else None,
            player=self._player() if self._player else None,
        )

    def _emit(self, event: TelemetryEvent) -> TelemetryEvent:
        self._record(event)
        return event
