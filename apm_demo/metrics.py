"""In-process recording of custom metrics, attributes and noticed errors."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Union

AttributeValue = Union[str, int, float, bool]


@dataclass
class _MetricRecord:
    count: int = 0
    total: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    last: float = 0.0

    def add(self, value: float) -> None:
        if self.count == 0:
            self.minimum = value
            self.maximum = value
        else:
            self.minimum = min(self.minimum, value)
            self.maximum = max(self.maximum, value)
        self.count += 1
        self.total += value
        self.last = value


@dataclass
class _ErrorRecord:
    count: int
    last_message: str
    last_seen: datetime


class MetricsRecorder:
    """Aggregate the custom instrumentation emitted by the demo endpoints."""

    def __init__(self) -> None:
        self._metrics: Dict[str, _MetricRecord] = {}
        self._attributes: Dict[str, AttributeValue] = {}
        self._errors: Dict[str, _ErrorRecord] = {}
        self._lock = threading.Lock()

    def record_metric(self, name: str, value: float) -> None:
        key = self._require_name(name)
        with self._lock:
            record = self._metrics.setdefault(key, _MetricRecord())
            record.add(float(value))

    def add_custom_attribute(self, key: str, value: AttributeValue) -> None:
        name = self._require_name(key)
        with self._lock:
            self._attributes[name] = value

    def notice_error(self, exc: BaseException) -> None:
        name = type(exc).__name__
        now = datetime.now(timezone.utc)
        with self._lock:
            record = self._errors.get(name)
            if record is None:
                self._errors[name] = _ErrorRecord(count=1, last_message=str(exc), last_seen=now)
            else:
                record.count += 1
                record.last_message = str(exc)
                record.last_seen = now

    def metric(self, name: str) -> Optional[Dict[str, float]]:
        with self._lock:
            record = self._metrics.get(name)
            return self._metric_view(record) if record is not None else None

    def snapshot(self) -> Dict[str, Dict[str, object]]:
        """Return a plain-dict copy of everything recorded so far."""

        with self._lock:
            return {
                "metrics": {name: self._metric_view(record) for name, record in self._metrics.items()},
                "attributes": dict(self._attributes),
                "errors": {
                    name: {
                        "count": record.count,
                        "last_message": record.last_message,
                        "last_seen": record.last_seen.isoformat(),
                    }
                    for name, record in self._errors.items()
                },
            }

    def reset(self) -> None:
        with self._lock:
            self._metrics.clear()
            self._attributes.clear()
            self._errors.clear()

    @staticmethod
    def _metric_view(record: _MetricRecord) -> Dict[str, float]:
        return {
            "count": record.count,
            "total": record.total,
            "min": record.minimum,
            "max": record.maximum,
            "last": record.last,
        }

    @staticmethod
    def _require_name(name: str) -> str:
        cleaned = name.strip() if name else ""
        if not cleaned:
            raise ValueError("Metric and attribute names must not be empty")
        return cleaned


__all__ = ["AttributeValue", "MetricsRecorder"]
