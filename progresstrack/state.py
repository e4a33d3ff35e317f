import json
import logging
import os
import fcntl
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

PLAYLISTS_KEY = "playlists"
COMPLETED_KEY = "completedItems"
WATCH_TIME_PREFIX = "watchTime_"

ChangeHandler = Callable[[str, Any], None]
M = TypeVar("M", bound=BaseModel)

def watch_time_key(item_id: str) -> str:
    return f"{WATCH_TIME_PREFIX}{item_id}"

class PersistenceReadError(Exception):
    """Stored data could not be decoded. Never leaves this module."""

def _encode(value: Any) -> str:
    return json.dumps(value, sort_keys=True)

def _decode(raw: str, key: str) -> Any:
    try:
        return json.loads(raw)
    except ValueError as e:
        raise PersistenceReadError(f"Malformed value for '{key}': {e}") from e

class PersistentStore(ABC):
    """
    Base class for the flat key-value namespace shared by every execution
    context. Backends implement the three raw accessors.

    Nothing is cached: every get() goes back to the backing data. Subscribers
    are only told about writes made by *other* contexts; to tell the two apart
    the store remembers the last raw value it saw or wrote for each watched key.
    """

    def __init__(self):
        self._handlers: Dict[str, List[ChangeHandler]] = {}
        self._seen: Dict[str, Optional[str]] = {}

    @abstractmethod
    def _read_raw(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _write_raw(self, key: str, raw: str):
        ...

    @abstractmethod
    def _delete_raw(self, key: str):
        ...

    def get(self, key: str, default: Any = None) -> Any:
        raw = self._read_raw(key)
        if raw is None:
            return default
        try:
            return _decode(raw, key)
        except PersistenceReadError as e:
            logger.error(f"{e}. Using default.")
            return default

    def set(self, key: str, value: Any):
        raw = _encode(value)
        self._write_raw(key, raw)
        if key in self._handlers:
            self._seen[key] = raw

    def remove(self, key: str):
        self._delete_raw(key)
        if key in self._handlers:
            self._seen[key] = None

    def subscribe_to_external_change(self, key: str, handler: ChangeHandler) -> Callable[[], None]:
        """Register handler(key, value); returns the matching unsubscribe callable."""
        handlers = self._handlers.setdefault(key, [])
        if not handlers:
            self._seen[key] = self._read_raw(key)
        handlers.append(handler)

        def unsubscribe():
            current = self._handlers.get(key)
            if current and handler in current:
                current.remove(handler)
                if not current:
                    del self._handlers[key]
                    self._seen.pop(key, None)

        return unsubscribe

    def poll_external_changes(self) -> List[str]:
        """Deliver pending change notifications. Returns the keys that changed."""
        changed = []
        for key in list(self._handlers):
            raw = self._read_raw(key)
            if raw == self._seen.get(key):
                continue
            self._seen[key] = raw
            changed.append(key)
            value = self.get(key)
            for handler in list(self._handlers.get(key, [])):
                handler(key, value)
        return changed

class MemoryStore(PersistentStore):
    """
    In-process store. Several MemoryStore instances built on the same `shared`
    dict behave like separate windows of one application.
    """

    def __init__(self, shared: Optional[Dict[str, str]] = None):
        super().__init__()
        self.shared: Dict[str, str] = shared if shared is not None else {}

    def _read_raw(self, key):
        return self.shared.get(key)

    def _write_raw(self, key, raw):
        self.shared[key] = raw

    def _delete_raw(self, key):
        self.shared.pop(key, None)

class JsonFileStore(PersistentStore):
    def __init__(self, path: str):
        super().__init__()
        self.path = Path(path)
        self.lock_path = self.path.with_suffix(self.path.suffix + '.lock')
        self.read_only = False
        if not self.path.exists():
            logger.info(f"No store file found at {self.path}, starting empty.")

    def _load_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load store {self.path}: {e}. Treating as empty.")
            return {}
        if not isinstance(data, dict):
            logger.error(f"Store {self.path} does not hold an object. Treating as empty.")
            return {}
        return data

    def _read_raw(self, key):
        data = self._load_all()
        if key not in data:
            return None
        return _encode(data[key])

    def _write_raw(self, key, raw):
        value = json.loads(raw)

        def apply(data):
            data[key] = value

        self._mutate(apply)

    def _delete_raw(self, key):
        self._mutate(lambda data: data.pop(key, None))

    def _mutate(self, apply: Callable[[dict], Any]):
        if self.read_only:
            logger.warning(f"Store {self.path} is read-only for this run, dropping write.")
            return

        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            # Whole-file read-modify-write; the lock keeps other contexts' keys intact
            with open(self.lock_path, 'a') as lock:
                fcntl.flock(lock, fcntl.LOCK_EX)
                try:
                    data = self._load_all()
                    apply(data)
                    with open(tmp_path, 'w', encoding='utf-8') as f:
                        json.dump(data, f, indent=2)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_path, self.path)
                finally:
                    fcntl.flock(lock, fcntl.LOCK_UN)
        except OSError as e:
            logger.error(f"Failed to write store {self.path}: {e}")
            # Stay read-only for the rest of this run
            self.read_only = True

def read_model(store: PersistentStore, key: str, model: Type[M]) -> Optional[M]:
    value = store.get(key)
    if value is None:
        return None
    try:
        return model.model_validate(value)
    except ValidationError as e:
        logger.error(f"Malformed '{key}' in store, ignoring it: {e}")
        return None

def read_model_list(store: PersistentStore, key: str, model: Type[M]) -> List[M]:
    """Load a list of models, dropping entries that fail validation."""
    value = store.get(key, [])
    if not isinstance(value, list):
        logger.error(f"Malformed '{key}' in store (expected list, got {type(value).__name__}). Using empty list.")
        return []

    results = []
    for i, entry in enumerate(value):
        try:
            results.append(model.model_validate(entry))
        except ValidationError as e:
            logger.error(f"Dropping malformed entry {i} of '{key}': {e}")
    return results

def write_model_list(store: PersistentStore, key: str, models: List[BaseModel], model: Optional[Type[BaseModel]] = None):
    """
    Store models as a list. With `model` given, stored entries that fail its
    validation (and so never reached the caller) are written back unchanged.
    """
    value = [m.model_dump(by_alias=True) for m in models]
    if model is not None:
        kept = _unreadable_entries(store, key, model)
        if kept:
            logger.warning(f"Keeping {len(kept)} unreadable entries of '{key}' in place")
            value.extend(kept)
    store.set(key, value)

def _unreadable_entries(store: PersistentStore, key: str, model: Type[BaseModel]) -> list:
    value = store.get(key, [])
    if not isinstance(value, list):
        return []

    kept = []
    for entry in value:
        try:
            model.model_validate(entry)
        except ValidationError:
            kept.append(entry)
    return kept
