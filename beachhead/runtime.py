from __future__ import annotations

from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any

from .events import utc_now


@dataclass
class TickReport:
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    inspection_failed: bool = False
    declarations: int = 0
    records: int = 0
    published: int = 0
    parse_errors: int = 0
    publish_errors: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RuntimeState:
    """In-memory counters shared between the reconciler and the status API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.started_at = utc_now()
        self.state = "idle"  # idle|polling|parsing|publishing|sleeping|stopped
        self.ticks = 0
        self.failed_ticks = 0
        self.published_total = 0
        self.parse_errors_total = 0
        self.publish_errors_total = 0
        self.last_tick: TickReport | None = None

    def set_state(self, state: str) -> None:
        with self.lock:
            self.state = state

    def record_tick(self, report: TickReport) -> None:
        with self.lock:
            self.ticks += 1
            if report.inspection_failed:
                self.failed_ticks += 1
            self.published_total += report.published
            self.parse_errors_total += report.parse_errors
            self.publish_errors_total += report.publish_errors
            self.last_tick = report

    def snapshot(self) -> dict[str, Any]:
        with self.lock:
            return {
                "state": self.state,
                "started_at": self.started_at,
                "ticks": self.ticks,
                "failed_ticks": self.failed_ticks,
                "published_total": self.published_total,
                "parse_errors_total": self.parse_errors_total,
                "publish_errors_total": self.publish_errors_total,
                "last_tick": self.last_tick.to_dict() if self.last_tick else None,
            }
