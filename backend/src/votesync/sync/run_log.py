"""Per-run log capture for sync runs.

Log lines emitted while a run is active are buffered in memory and
written to the ``log_output`` column of ``sync_runs`` when the run is
closed. The status API reads the buffer for live runs.
"""

import logging
from datetime import datetime, timezone

# run_id (str) -> formatted log lines
_active_logs: dict[str, list[str]] = {}

MAX_LOG_LINES = 5000


def start_capture(run_id: str) -> None:
    """Begin capturing logs for a run."""
    _active_logs[run_id] = []


def append_log(run_id: str, level: str, message: str) -> None:
    """Append a formatted log line to the run's buffer."""
    buf = _active_logs.get(run_id)
    if buf is None:
        return
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
    line = f"{timestamp} [{level:>7s}] {message}"
    if len(buf) < MAX_LOG_LINES:
        buf.append(line)
    elif len(buf) == MAX_LOG_LINES:
        buf.append(f"{timestamp} [WARNING] Log output truncated at {MAX_LOG_LINES} lines")


def get_live_logs(run_id: str, offset: int = 0) -> list[str] | None:
    """Log lines of an active run from ``offset``; None once the run closed."""
    buf = _active_logs.get(run_id)
    if buf is None:
        return None
    return buf[offset:]


def finish_capture(run_id: str) -> str:
    """End capture and return the full log text."""
    return "\n".join(_active_logs.pop(run_id, []))


class RunLogHandler(logging.Handler):
    """Logging handler that copies records into a run's buffer."""

    def __init__(self, run_id: str):
        super().__init__()
        self.run_id = run_id

    def emit(self, record: logging.LogRecord) -> None:
        try:
            append_log(self.run_id, record.levelname, self.format(record))
        except Exception:
            self.handleError(record)
