"""Per-execution counters and timers."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
import json
import threading
import time
from typing import Iterator


@dataclass
class MetricsCollector:
    metrics_dir: Path | None = None
    labels: dict[str, str] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=dict)
    timers: dict[str, list[float]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc(self, name: str, n: int = 1) -> None:
        with self._lock:
            self.counters[name] = self.counters.get(name, 0) + n

    @contextmanager
    def measure(self, name: str) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed_ms = (time.perf_counter() - start) * 1000
            with self._lock:
                self.timers.setdefault(name, []).append(round(elapsed_ms, 3))

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            return {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                **self.labels,
                "counters": dict(self.counters),
                "timers_ms": {key: list(values) for key, values in self.timers.items()},
            }

    def export_json(self, **extra: object) -> dict[str, object]:
        """Append the snapshot plus ``extra`` to today's metrics file."""
        payload = {**self.snapshot(), **extra}
        if self.metrics_dir:
            self.metrics_dir.mkdir(parents=True, exist_ok=True)
            file_path = self.metrics_dir / f"{datetime.now(timezone.utc).date()}.jsonl"
            with file_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
        return payload
