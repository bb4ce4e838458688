from __future__ import annotations

import queue
from dataclasses import dataclass
from typing import Any, List, Optional


@dataclass(frozen=True)
class StatusUpdate:
    kind: str  # event name, see livescribe.events
    payload: Any = None


class UpdateBus:
    """
    Thread-safe handoff from pipeline threads -> the thread that renders.
    Pipeline threads push StatusUpdate; the renderer polls (non-blocking).
    """
    def __init__(self, maxsize: int = 200):
        self.q: "queue.Queue[StatusUpdate]" = queue.Queue(maxsize=max(1, int(maxsize)))
        self.dropped = 0

    def push(self, update: StatusUpdate) -> None:
        try:
            self.q.put_nowait(update)
        except queue.Full:
            # drop oldest so the display stays current
            try:
                _ = self.q.get_nowait()
                self.dropped += 1
            except queue.Empty:
                return
            try:
                self.q.put_nowait(update)
            except queue.Full:
                return

    def pop(self) -> Optional[StatusUpdate]:
        try:
            return self.q.get_nowait()
        except queue.Empty:
            return None

    def drain(self, max_items: int = 100) -> List[StatusUpdate]:
        out: List[StatusUpdate] = []
        while len(out) < max_items:
            item = self.pop()
            if item is None:
                break
            out.append(item)
        return out
