import logging
from collections import deque
from typing import Callable, Deque, List, Optional
from .models import Notice

logger = logging.getLogger(__name__)

NoticeHandler = Callable[[Notice], None]

class Notifier:
    """
    Fan-out of host-facing notices (selection changes, playback errors,
    playlist exhaustion). Hosts either subscribe or drain the recent backlog.
    """

    def __init__(self, backlog: int = 50):
        self._handlers: List[NoticeHandler] = []
        self.recent: Deque[Notice] = deque(maxlen=backlog)

    def subscribe(self, handler: NoticeHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, notice: Notice):
        logger.debug(f"Notice: {notice.kind.value} {notice.item_id or ''}")
        self.recent.append(notice)
        for handler in list(self._handlers):
            handler(notice)

    def drain(self) -> List[Notice]:
        notices = list(self.recent)
        self.recent.clear()
        return notices

    def last(self) -> Optional[Notice]:
        return self.recent[-1] if self.recent else None
