import time
from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional

def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat().replace("+00:00", "Z")

class StoredModel(BaseModel):
    """
    Base for everything persisted in the store (camelCase on the wire).
    Fields this package does not know about are kept and written back.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def dump(self) -> dict:
        return self.model_dump(by_alias=True)

class Item(StoredModel):
    id: str
    url: str = ""
    title: str = ""
    duration: float = 0.0  # minutes
    progress: float = 0.0  # cached projection of the ledger, 0-100
    thumbnail: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return self.progress >= 100

class Playlist(StoredModel):
    id: str
    title: str
    kind: str = Field(default="video", alias="type")  # video, coding
    description: str = ""
    items: List[Item] = Field(default_factory=list, alias="videos")
    created_at: str = Field(default_factory=lambda: _iso(time.time()))
    deadline: Optional[str] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _timestamp_to_iso(cls, value):
        if isinstance(value, (int, float)):
            return _iso(value)
        return value

    def index_of(self, item_id: str) -> Optional[int]:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                return i
        return None

class WatchTimeRecord(StoredModel):
    item_id: str
    total_watch_time: float = 0.0
    last_position: float = 0.0
    last_update_timestamp: float = 0.0
    play_count: int = 0
    stop_count: int = 0
    cumulative_time: float = 0.0

class CompletionLedgerEntry(StoredModel):
    item_id: str
    title: str = ""
    playlist_id: str = ""
    playlist_title: str = ""
    completed_at: float = Field(default_factory=time.time)
    watch_time: float = 0.0

class EventKind(str, Enum):
    READY = "ready"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"
    ERROR = "error"
    BUFFERING = "buffering"

class PlaybackErrorKind(str, Enum):
    RECOVERABLE = "recoverable"  # unavailable / embedding blocked
    FATAL = "fatal"              # still handled by skipping, but surfaced

class PlaybackEvent(BaseModel):
    kind: EventKind
    raw: Any = None
    code: Optional[int] = None
    error_kind: Optional[PlaybackErrorKind] = None
    message: Optional[str] = None

class SequencerState(str, Enum):
    SELECTING = "selecting"
    PLAYING = "playing"
    EXHAUSTED = "exhausted"

class NoticeKind(str, Enum):
    ITEM_SELECTED = "item_selected"
    PLAYBACK_ERROR = "playback_error"
    EXHAUSTED = "exhausted"

class Notice(BaseModel):
    kind: NoticeKind
    playlist_id: Optional[str] = None
    item_id: Optional[str] = None
    index: Optional[int] = None
    message: Optional[str] = None

class PlaylistStats(BaseModel):
    playlist_id: str
    total_items: int = 0
    completed_items: int = 0
    overall_progress: float = 0.0
    total_duration: float = 0.0    # minutes
    watched_duration: float = 0.0  # minutes, estimated from progress
    tracked_seconds: float = 0.0   # from watch-time records

class DailyActivity(BaseModel):
    date: str
    items_completed: int = 0
    watch_time: float = 0.0

class EngineStatus(BaseModel):
    playlist_id: Optional[str] = None
    current_item_id: Optional[str] = None
    current_index: Optional[int] = None
    sequencer_state: SequencerState = SequencerState.SELECTING
    tracking_item_id: Optional[str] = None
    last_reconcile: float = 0.0
    reconcile_writes: int = 0
    counters: Dict[str, int] = Field(default_factory=dict)
