from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    COMPLETED = "completed"
    CAPTURE_FAILED = "capture_failed"


@dataclass
class SessionStateTracker:
    state: SessionState = SessionState.IDLE
    last_error: str | None = None
    fallback_mode: bool = False

    @property
    def active(self) -> bool:
        return self.state in (SessionState.STARTING, SessionState.RUNNING)

    def set_starting(self) -> None:
        if self.active:
            raise RuntimeError(f"session already {self.state.value}")
        self.state = SessionState.STARTING
        self.last_error = None
        self.fallback_mode = False

    def set_running(self) -> None:
        if self.state == SessionState.STARTING:
            self.state = SessionState.RUNNING

    def set_stopping(self) -> None:
        if self.state in (SessionState.STARTING, SessionState.RUNNING):
            self.state = SessionState.STOPPING

    def set_completed(self) -> None:
        # capture_failed is terminal and stays visible after the drain
        if self.state != SessionState.CAPTURE_FAILED:
            self.state = SessionState.COMPLETED

    def set_capture_failed(self, detail: str) -> None:
        self.state = SessionState.CAPTURE_FAILED
        self.last_error = detail

    def set_fallback(self, enabled: bool) -> bool:
        """Return True when the flag actually changed."""
        if self.fallback_mode == enabled:
            return False
        self.fallback_mode = enabled
        return True
