import logging
import re
from typing import Optional, Protocol
from ..models import EventKind, PlaybackErrorKind

logger = logging.getLogger(__name__)

# YouTube IFrame API player states
RAW_STATES = {
    -1: None,  # unstarted
    0: EventKind.ENDED,
    1: EventKind.PLAYING,
    2: EventKind.PAUSED,
    3: EventKind.BUFFERING,
    5: EventKind.READY,  # video cued
}

# Item unavailable / owner blocked embedding: skip quietly
RECOVERABLE_ERROR_CODES = {100, 101, 150}

ERROR_MESSAGES = {
    2: "The video request contained an invalid parameter.",
    5: "The video could not be played in the HTML5 player.",
    100: "The video was not found or has been removed.",
    101: "The owner does not allow this video to be embedded.",
    150: "The owner does not allow this video to be embedded.",
}

_ID_RE = re.compile(r"^[A-Za-z0-9_-]{11}$")

class PlayerClient(Protocol):
    """What the engine needs from the embedded player."""

    def play(self) -> None: ...
    def pause(self) -> None: ...
    def seek(self, seconds: float) -> None: ...
    def get_current_time(self) -> float: ...
    def get_duration(self) -> float: ...

def parse_state(raw) -> Optional[EventKind]:
    """Map a raw player state (numeric code or name) to an EventKind, or None to ignore it."""
    if isinstance(raw, EventKind):
        return raw
    if isinstance(raw, str):
        name = raw.strip().lower()
        if name.lstrip('-').isdigit():
            raw = int(name)
        else:
            try:
                return EventKind(name)
            except ValueError:
                logger.warning(f"Unknown player state '{raw}'")
                return None
    if isinstance(raw, int):
        if raw not in RAW_STATES:
            logger.warning(f"Unknown player state code {raw}")
        return RAW_STATES.get(raw)
    logger.warning(f"Unsupported player state {raw!r}")
    return None

def classify_error(code: int) -> PlaybackErrorKind:
    if code in RECOVERABLE_ERROR_CODES:
        return PlaybackErrorKind.RECOVERABLE
    return PlaybackErrorKind.FATAL

def error_message(code: int) -> str:
    base = ERROR_MESSAGES.get(code, f"Playback failed (error {code}).")
    if classify_error(code) is PlaybackErrorKind.RECOVERABLE:
        return f"{base} Skipping to the next video."
    return f"{base} Skipping for now; it stays in the playlist to retry later."

def extract_video_id(url: str) -> Optional[str]:
    """
    Pull the video id out of watch?v=, youtu.be/ and /embed/ URLs.
    A bare 11-character id is returned as-is.
    """
    if not url:
        return None
    url = url.strip()
    if _ID_RE.match(url):
        return url

    match = re.search(r"[?&]v=([^&#]+)", url)
    if match:
        return match.group(1)

    tail = url.split('?')[0].split('#')[0].rstrip('/').split('/')[-1]
    return tail or None

def embed_url(url: str) -> Optional[str]:
    video_id = extract_video_id(url)
    if not video_id:
        return None
    return f"https://www.youtube.com/embed/{video_id}"
