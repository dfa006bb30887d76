"""!
@brief Structured logging helpers for Office Deployer.
@details Every invocation writes one timestamped, append-only run log with
human-readable lines tagged ``INFO``/``WARNING``/``ERROR``/``SUCCESS`` and a
JSONL companion carrying machine events such as external process plans and
results. Startup metadata from :mod:`office_deployer.version` is recorded so
log bundles collected from many endpoints can be correlated.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import sys
import uuid
from pathlib import Path
from typing import Dict, Mapping, Tuple

from . import version

HUMAN_LOGGER_NAME = "office_deployer.human"
MACHINE_LOGGER_NAME = "office_deployer.machine"

SUCCESS = 25
"""!
@brief Custom level between INFO and WARNING for verified outcomes.
"""

logging.addLevelName(SUCCESS, "SUCCESS")

_STANDARD_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "message",
        "asctime",
        "taskName",
    }
)

_CURRENT_LOG_FILE: Path | None = None
_RUN_METADATA: Dict[str, object] | None = None


class _JsonLineFormatter(logging.Formatter):
    """!
    @brief Format ``LogRecord`` instances as single-line JSON objects.
    @details Standard metadata is merged with any ``extra`` attributes supplied
    by callers; values that are not JSON serializable fall back to ``repr``.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401 - concise override
        moment = _dt.datetime.fromtimestamp(record.created, tz=_dt.timezone.utc)
        payload: Dict[str, object] = {
            "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _STANDARD_RECORD_KEYS:
                payload[key] = value
        try:
            return json.dumps(payload, ensure_ascii=False)
        except TypeError:
            return json.dumps({key: _coerce_json(value) for key, value in payload.items()}, ensure_ascii=False)


def _coerce_json(value: object) -> object:
    try:
        json.dumps(value)
    except TypeError:
        return repr(value)
    return value


def _reset_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False


def run_log_stem(moment: _dt.datetime | None = None) -> str:
    """!
    @brief Build the ``office-deployer-YYYYMMDD-HHMMSS`` stem shared by both streams.
    """

    moment = moment or _dt.datetime.now()
    return f"office-deployer-{moment:%Y%m%d-%H%M%S}"


def setup_logging(
    log_dir: Path,
    *,
    console_level: int | None = logging.INFO,
    json_to_stdout: bool = False,
    level: int = logging.INFO,
    moment: _dt.datetime | None = None,
) -> Tuple[logging.Logger, logging.Logger]:
    """!
    @brief Configure the human run log and the JSONL event stream.
    @details ``log_dir`` is created when missing. Both files are opened in
    append mode so re-running within the same second never truncates a log.
    @param console_level Minimum level mirrored to ``stderr``; ``None`` disables the console.
    @param json_to_stdout Mirror machine events to ``stdout``.
    @returns ``(human_logger, machine_logger)``.
    """

    global _CURRENT_LOG_FILE

    log_dir.mkdir(parents=True, exist_ok=True)
    stem = run_log_stem(moment)
    _CURRENT_LOG_FILE = log_dir / f"{stem}.log"

    human_logger = logging.getLogger(HUMAN_LOGGER_NAME)
    machine_logger = logging.getLogger(MACHINE_LOGGER_NAME)
    _reset_logger(human_logger)
    _reset_logger(machine_logger)
    human_logger.setLevel(level)
    machine_logger.setLevel(logging.DEBUG)

    human_formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    human_file = logging.FileHandler(_CURRENT_LOG_FILE, mode="a", encoding="utf-8")
    human_file.setFormatter(human_formatter)
    human_logger.addHandler(human_file)
    if console_level is not None:
        console_handler = logging.StreamHandler(stream=sys.stderr)
        console_handler.setLevel(console_level)
        console_handler.setFormatter(human_formatter)
        human_logger.addHandler(console_handler)

    machine_formatter = _JsonLineFormatter()
    machine_file = logging.FileHandler(log_dir / f"{stem}.jsonl", mode="a", encoding="utf-8")
    machine_file.setFormatter(machine_formatter)
    machine_logger.addHandler(machine_file)
    if json_to_stdout:
        stdout_handler = logging.StreamHandler(stream=sys.stdout)
        stdout_handler.setFormatter(machine_formatter)
        machine_logger.addHandler(stdout_handler)

    _emit_run_metadata(human_logger, machine_logger)
    return human_logger, machine_logger


def get_human_logger() -> logging.Logger:
    """!
    @brief Retrieve the human-readable run logger.
    """

    return logging.getLogger(HUMAN_LOGGER_NAME)


def get_machine_logger() -> logging.Logger:
    """!
    @brief Retrieve the JSONL event logger.
    """

    return logging.getLogger(MACHINE_LOGGER_NAME)


def log_success(message: str, *args: object) -> None:
    """!
    @brief Emit a ``SUCCESS`` line on the human channel.
    """

    get_human_logger().log(SUCCESS, message, *args)


def get_log_file() -> Path | None:
    return _CURRENT_LOG_FILE


def get_run_metadata() -> Mapping[str, object] | None:
    """!
    @brief Return the metadata recorded by the most recent :func:`setup_logging`.
    """

    return dict(_RUN_METADATA) if _RUN_METADATA is not None else None


def _emit_run_metadata(human_logger: logging.Logger, machine_logger: logging.Logger) -> None:
    global _RUN_METADATA

    moment = _dt.datetime.now(tz=_dt.timezone.utc)
    _RUN_METADATA = {
        "run_id": uuid.uuid4().hex,
        "timestamp": moment.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
        "version": version.__version__,
        "build": version.__build__,
        "python": sys.version.split()[0],
        "log_file": str(_CURRENT_LOG_FILE) if _CURRENT_LOG_FILE else None,
    }
    human_logger.info(
        "Office Deployer %s (%s) starting, run %s",
        version.__version__,
        version.__build__,
        _RUN_METADATA["run_id"],
    )
    machine_logger.info("run_start", extra={"event": "run_start", "run": dict(_RUN_METADATA)})


__all__ = [
    "HUMAN_LOGGER_NAME",
    "MACHINE_LOGGER_NAME",
    "SUCCESS",
    "get_human_logger",
    "get_log_file",
    "get_machine_logger",
    "get_run_metadata",
    "log_success",
    "run_log_stem",
    "setup_logging",
]
