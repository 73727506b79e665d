"""In-process counters for provider candidate attempts in Prometheus text format."""

from __future__ import annotations

from dataclasses import dataclass
from threading import Lock


@dataclass
class _DurationStat:
    """Aggregate duration stats per label tuple."""

    count: int = 0
    total_seconds: float = 0.0


class DispatchMetrics:
    """Count candidate attempts per operation and outcome."""

    def __init__(self) -> None:
        """Initialize counters and locks."""
        self._attempt_counts: dict[tuple[str, str], int] = {}
        self._duration_stats: dict[str, _DurationStat] = {}
        self._lock = Lock()

    def record_attempt(self, operation: str, outcome: str, duration_seconds: float) -> None:
        """Record one candidate attempt for the label set."""
        key = (operation, outcome)
        with self._lock:
            self._attempt_counts[key] = self._attempt_counts.get(key, 0) + 1
            stat = self._duration_stats.setdefault(operation, _DurationStat())
            stat.count += 1
            stat.total_seconds += duration_seconds

    def attempt_count(self, operation: str, outcome: str) -> int:
        """Return the recorded attempt count for one label set."""
        with self._lock:
            return self._attempt_counts.get((operation, outcome), 0)

    def render_prometheus_text(self) -> str:
        """Render metrics in Prometheus exposition format."""
        lines = [
            "# HELP messaging_provider_attempts_total Provider endpoint candidates tried.",
            "# TYPE messaging_provider_attempts_total counter",
        ]

        with self._lock:
            for operation, outcome in sorted(self._attempt_counts):
                count = self._attempt_counts[(operation, outcome)]
                labels = (
                    f'operation="{_escape_label(operation)}",'
                    f'outcome="{_escape_label(outcome)}"'
                )
                lines.append(f"messaging_provider_attempts_total{{{labels}}} {count}")

            lines.append(
                "# HELP messaging_provider_attempt_duration_seconds Provider round-trip duration."
            )
            lines.append("# TYPE messaging_provider_attempt_duration_seconds summary")
            for operation in sorted(self._duration_stats):
                stat = self._duration_stats[operation]
                labels = f'operation="{_escape_label(operation)}"'
                lines.append(
                    f"messaging_provider_attempt_duration_seconds_count{{{labels}}} {stat.count}"
                )
                lines.append(
                    "messaging_provider_attempt_duration_seconds_sum"
                    f"{{{labels}}} {stat.total_seconds}"
                )

        return "\n".join(lines) + "\n"


def _escape_label(value: str) -> str:
    """Escape string values for Prometheus label rendering."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


DEFAULT_DISPATCH_METRICS = DispatchMetrics()
