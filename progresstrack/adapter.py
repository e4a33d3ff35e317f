import logging
from typing import Callable, Optional, Tuple
from .clients.player import classify_error, error_message, parse_state
from .models import EventKind, PlaybackEvent

logger = logging.getLogger(__name__)

class PlaybackEventAdapter:
    """
    Turns raw player callbacks into PlaybackEvents.

    Players repeat themselves (several PLAYING in a row after a seek, the same
    error on every retry), so only genuine transitions are forwarded.
    """

    def __init__(self, on_event: Callable[[PlaybackEvent], None]):
        self.on_event = on_event
        self.last_state: Optional[Tuple[EventKind, Optional[int]]] = None

    def reset(self):
        """Forget the last state, e.g. when a new item is loaded into the player."""
        self.last_state = None

    def handle_ready(self) -> Optional[PlaybackEvent]:
        return self._emit(PlaybackEvent(kind=EventKind.READY))

    def handle_state_change(self, raw_state) -> Optional[PlaybackEvent]:
        kind = parse_state(raw_state)
        if kind is None:
            return None
        return self._emit(PlaybackEvent(kind=kind, raw=raw_state))

    def handle_error(self, code) -> Optional[PlaybackEvent]:
        try:
            code = int(code)
        except (TypeError, ValueError):
            logger.warning(f"Non-numeric player error code {code!r}, treating as fatal")
            code = -1
        return self._emit(PlaybackEvent(
            kind=EventKind.ERROR,
            raw=code,
            code=code,
            error_kind=classify_error(code),
            message=error_message(code),
        ))

    def _emit(self, event: PlaybackEvent) -> Optional[PlaybackEvent]:
        state = (event.kind, event.code)
        if state == self.last_state:
            logger.debug(f"Suppressing duplicate {event.kind.value} event")
            return None
        self.last_state = state
        logger.debug(f"Player event: {event.kind.value}")
        self.on_event(event)
        return event
