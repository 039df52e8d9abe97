"""Runtime context container.

Centralizes the components built at bootstrap so loops and CLIs receive one
object instead of long argument lists or module-level singletons.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class RuntimeContext:
    config: Any  # RuntimeConfig snapshot
    calendar: Any = None
    indices: list[Any] = field(default_factory=list)
    db: Any | None = None
    broker: Any | None = None
    auth_state: Any | None = None
    metrics: Any | None = None
    catalog: Any | None = None
    snapshots: Any | None = None
    changes: Any | None = None
    historical: Any | None = None
    poller: Any | None = None
    reconciler: Any | None = None
    cleanup: Any | None = None
    flags: dict[str, Any] = field(default_factory=dict)
    start_time: float = field(default_factory=time.time)
    cycle_count: int = 0
    # cooperative shutdown signal shared by every loop thread
    stop_event: threading.Event = field(default_factory=threading.Event)
    threads: list[threading.Thread] = field(default_factory=list)

    @property
    def shutdown(self) -> bool:
        return self.stop_event.is_set()

    @shutdown.setter
    def shutdown(self, value: bool) -> None:
        if value:
            self.stop_event.set()
        else:
            self.stop_event.clear()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True if shutdown was requested meanwhile."""
        return self.stop_event.wait(seconds)

    def flag(self, name: str, default: Any = None) -> Any:
        return self.flags.get(name, default)

    def set_flag(self, name: str, value: Any) -> None:
        self.flags[name] = value


__all__ = ["RuntimeContext"]
