"""
Logger configuration for the symbol reader.

Console output by default; optional file tracking with rotation:
- <log_dir>/symbol_reader_YYYY-MM-DD_HHMMSS.log
- Total storage capped, oldest files deleted first

Usage:
    from symbol_reader.logger_config import get_logger

    logger = get_logger('decoder')
    logger.info('Decoded candidates', extra={'count': 12})
    logger.perf(f'Detector took {elapsed:.1f}ms')  # Only prints if perf enabled

Importing this module does not touch handlers; call configure_logging()
(the CLI does this from LoggingSettings).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path

# =============================================================================
# CONFIGURATION
# =============================================================================

ROOT_LOGGER_NAME = "symbol_reader"
LOG_FILE_PREFIX = "symbol_reader_"

_MB = 1024 * 1024

# Maximum total log storage in bytes (100 MB default)
MAX_LOG_STORAGE_BYTES = 100 * _MB

# Individual log file max size before rotation (10 MB)
MAX_LOG_FILE_SIZE = 10 * _MB

_PERF_ENABLED = False
_PERF_INTERVAL = 1  # Log every N-th perf call per logger
_perf_counters: dict[str, int] = {}


def _cleanup_old_logs(logs_dir: Path, max_bytes: int = MAX_LOG_STORAGE_BYTES) -> int:
    """Delete oldest log files while total size exceeds max_bytes.

    Returns the number of files removed.
    """
    log_files = sorted(
        logs_dir.glob(f"{LOG_FILE_PREFIX}*.log*"),
        key=lambda f: f.stat().st_mtime,
    )
    total_size = sum(f.stat().st_size for f in log_files)

    removed = 0
    while total_size > max_bytes and len(log_files) > 1:
        oldest = log_files.pop(0)
        file_size = oldest.stat().st_size
        try:
            oldest.unlink()
        except OSError:
            # Best effort: file may be held open by another process
            continue
        total_size -= file_size
        removed += 1
    return removed


def _get_log_filename() -> str:
    """Timestamped log filename: symbol_reader_YYYY-MM-DD_HHMMSS.log"""
    stamp = datetime.now().strftime("%Y-%m-%d_%H%M%S")
    return f"{LOG_FILE_PREFIX}{stamp}.log"


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def configure_logging(
    level: str = "INFO",
    perf_enabled: bool = False,
    perf_interval: int = 1,
    show_timestamps: bool = True,
    json_format: bool = False,
    log_dir: Path | None = None,
    max_storage_mb: int = MAX_LOG_STORAGE_BYTES // _MB,
    max_file_size_mb: int = MAX_LOG_FILE_SIZE // _MB,
) -> Path | None:
    """
    Configure the package logger.

    Args:
        level: Minimum log level ('DEBUG', 'INFO', 'WARNING', 'ERROR')
        perf_enabled: Whether to emit perf() timing logs
        perf_interval: Only emit every N-th perf log per component
        show_timestamps: Include timestamps in text output
        json_format: Use structured JSON logging
        log_dir: If set, also write a rotating log file there
        max_storage_mb: Cap on total log storage in log_dir
        max_file_size_mb: Size at which a log file rotates

    Returns:
        Path of the active log file, or None when file logging is off.
    """
    global _PERF_ENABLED, _PERF_INTERVAL

    _PERF_ENABLED = perf_enabled
    _PERF_INTERVAL = max(1, perf_interval)
    _perf_counters.clear()

    if json_format:
        formatter: logging.Formatter = JSONFormatter()
    else:
        fmt = "%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s"
        if not show_timestamps:
            fmt = "[%(levelname)s] %(message)s"
        formatter = logging.Formatter(fmt=fmt, datefmt="%Y-%m-%d %H:%M:%S")

    package_logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    log_file = None
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        max_bytes = max_storage_mb * _MB
        _cleanup_old_logs(log_dir, max_bytes)

        file_size = max_file_size_mb * _MB
        log_file = log_dir / _get_log_filename()
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=file_size,
            backupCount=max(0, max_bytes // file_size - 1),
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    package_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    package_logger.propagate = False

    # Silence noisy libraries
    logging.getLogger("onnxruntime").setLevel(logging.WARNING)

    return log_file


# =============================================================================
# LOGGER CLASS
# =============================================================================


class ReaderLogger:
    """Logger wrapper with component prefix, extra fields and perf logging."""

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")

    def debug(self, msg: str, extra: dict | None = None):
        self._log(logging.DEBUG, f"[{self.name}] {msg}", extra)

    def info(self, msg: str, extra: dict | None = None):
        self._log(logging.INFO, f"[{self.name}] {msg}", extra)

    def warning(self, msg: str, extra: dict | None = None):
        self._log(logging.WARNING, f"[WARN] [{self.name}] {msg}", extra)

    def error(self, msg: str, extra: dict | None = None, exc_info: bool = False):
        self._log(logging.ERROR, f"[ERR] [{self.name}] {msg}", extra, exc_info)

    def _log(self, level: int, msg: str, extra: dict | None = None, exc_info: bool = False):
        if not self._logger.isEnabledFor(level):
            return
        if extra:
            self._logger.log(level, msg, extra={"extra_fields": dict(extra)}, exc_info=exc_info)
        else:
            self._logger.log(level, msg, exc_info=exc_info)

    def perf(self, msg: str) -> bool:
        """
        Performance log, throttled by perf_interval.

        Returns True if the message was actually logged.
        """
        if not _PERF_ENABLED:
            return False

        _perf_counters[self.name] = _perf_counters.get(self.name, 0) + 1
        if _perf_counters[self.name] % _PERF_INTERVAL != 0:
            return False

        self._logger.info(f"[PERF] [{self.name}] {msg}")
        return True


def get_logger(name: str) -> ReaderLogger:
    """Get a logger for the given component name."""
    return ReaderLogger(name)


def is_perf_enabled() -> bool:
    return _PERF_ENABLED


def get_log_storage_used(log_dir: Path) -> int:
    """Bytes used by log files in log_dir."""
    log_dir = Path(log_dir)
    if not log_dir.exists():
        return 0
    return sum(f.stat().st_size for f in log_dir.glob(f"{LOG_FILE_PREFIX}*.log*"))
