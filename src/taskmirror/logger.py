import json
import logging
import logging.handlers
import os
import sys
import threading
from collections import deque

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 10


class JsonFormatter(logging.Formatter):
    """Single-line JSON formatter for structured output.

    One object per record with ts, level, logger, thread and msg.  The
    thread name tells scheduled passes (``job-mirror``) from HTTP-triggered
    ones.  Exception info is added as "exc".
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RecentLogBuffer(logging.Handler):
    """Keep the most recent formatted records in memory.

    Backs the ``/logs`` status endpoint.
    """

    def __init__(self, capacity: int = 200) -> None:
        super().__init__()
        self._records: deque[str] = deque(maxlen=capacity)
        self._buffer_lock = threading.Lock()
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._records.append(line)

    def recent(self, count: int = 5) -> list[str]:
        """Return up to *count* entries, newest first."""
        if count <= 0:
            return []
        with self._buffer_lock:
            return list(self._records)[-count:][::-1]

    def __len__(self) -> int:
        return len(self._records)


# Process-wide buffer, attached to the root logger by setup_logging()
recent_logs = RecentLogBuffer()


def _make_formatter(debug_format: str, fmt: str) -> logging.Formatter:
    if debug_format == "json":
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(fmt, datefmt=DATE_FORMAT)


def setup_logging(
    mode: str = "cli",
    debug: bool = False,
    log_file: str | None = None,
    debug_format: str = "text",
    level: str | None = None,
) -> None:
    """
    Configure logging based on execution mode.

    Args:
        mode: "server" for the long-running service, "cli" for one-shot
              commands. Both log to stderr; server mode also feeds the
              in-memory recent log buffer.
        debug: If True, overrides the level to DEBUG.
        log_file: Optional log file path (overrides LOG_FILE env var).
                  Rotated at 10 MB, keeping 10 backups.
        debug_format: "text" (default) or "json" for structured output.
        level: Level name from the config file, used when LOG_LEVEL is unset.

    Environment variables:
        LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR).
                   Default: INFO for server mode, WARNING for CLI mode.
        LOG_FILE: Log file path.
    """
    default_level = "INFO" if mode == "server" else "WARNING"
    env_level = os.getenv("LOG_LEVEL", level or default_level).upper()

    if debug:
        log_level = logging.DEBUG
    else:
        log_level = getattr(logging, env_level, logging.INFO)

    handlers: list[logging.Handler] = []
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(_make_formatter(debug_format, LOG_FORMAT))
    handlers.append(stderr_handler)

    final_log_file = log_file or os.getenv("LOG_FILE")
    if final_log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            final_log_file,
            mode="a",
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(_make_formatter(debug_format, FILE_LOG_FORMAT))
        handlers.append(file_handler)

    if mode == "server":
        handlers.append(recent_logs)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    # Silence third-party libs unless DEBUG
    if log_level != logging.DEBUG:
        logging.getLogger("urllib3").setLevel(logging.WARNING)
        logging.getLogger("googleapiclient").setLevel(logging.WARNING)
        logging.getLogger("google_auth_httplib2").setLevel(logging.WARNING)
        logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
