"""
Logging setup and small log-formatting helpers for the tanda planner.

Call configure_logging() once from the entry point. Console output goes to
stderr because stdout carries the NDJSON event stream. Every record gets the
current generation's run id, so interleaved runs in one log file can be told
apart.
"""
import logging
import os
import re
import sys
import time
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

_logging_configured = False
_run_id: Optional[str] = None
_HANDLER_TAG = "_tp_handler"

CONSOLE_FORMAT = '%(asctime)s | %(levelname)-5s | %(name)s | %(message)s'
CONSOLE_FORMAT_RUN = '%(asctime)s | %(levelname)-5s | run=%(run_id)s | %(name)s | %(message)s'
FILE_FORMAT = '%(asctime)s | %(levelname)-5s | run=%(run_id)s | %(name)s:%(lineno)d | %(message)s'

LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR']

# Chatty HTTP stacks underneath the oracle client
_QUIET_LOGGERS = ('openai', 'httpx', 'httpcore')

_SECRET_PATTERNS = [
    (re.compile(r'(["\']?(?:api[_-]?key|token|secret|password|auth)["\']?\s*[:=]\s*["\']?)([^"\'\s,})]+)', re.IGNORECASE),
     r'\1***REDACTED***'),
    (re.compile(r'sk-[A-Za-z0-9_\-]{8,}'), '***REDACTED***'),
    (re.compile(r'/home/[^/\s]+'), '/home/***'),
    (re.compile(r'/Users/[^/\s]+'), '/Users/***'),
    (re.compile(r'C:\\Users\\[^\\\s]+', re.IGNORECASE), r'C:\\Users\\***'),
]


class RunIdFilter(logging.Filter):
    """Stamp the current run id onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _run_id or "-"
        return True


def set_run_id(run_id: Optional[str]) -> None:
    global _run_id
    _run_id = run_id


def new_run_id() -> str:
    """Start a new generation run id and return it."""
    run_id = uuid.uuid4().hex[:8]
    set_run_id(run_id)
    return run_id


def _make_handler(handler: logging.Handler, level: str, fmt: str, datefmt: str) -> logging.Handler:
    handler.setLevel(getattr(logging, level, logging.INFO))
    handler.setFormatter(logging.Formatter(fmt, datefmt=datefmt))
    handler.addFilter(RunIdFilter())
    setattr(handler, _HANDLER_TAG, True)
    return handler


def configure_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    force: bool = False,
    run_id: Optional[str] = None,
    console: bool = True,
    show_run_id: bool = False,
    stream=None,
) -> None:
    """
    Install the planner's console and file handlers on the root logger.

    Later calls are ignored unless ``force`` is set; handlers from an earlier
    call are replaced, never stacked. ``LOG_LEVEL`` and ``LOG_FILE`` in the
    environment override the arguments.

    Args:
        level: Console level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional log file, always written at DEBUG
        force: Reconfigure even when already configured
        run_id: Initial run id for records logged before a generation starts
        console: Add the stderr handler
        show_run_id: Put the run id on console lines (always on at DEBUG)
        stream: Console stream instead of sys.stderr
    """
    global _logging_configured

    if run_id:
        set_run_id(run_id)
    if _logging_configured and not force:
        return

    level = os.getenv('LOG_LEVEL', level).upper()
    log_file = log_file or os.getenv('LOG_FILE')

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in root.handlers[:]:
        if getattr(handler, _HANDLER_TAG, False):
            root.removeHandler(handler)
            handler.close()

    if console:
        fmt = CONSOLE_FORMAT_RUN if (show_run_id or level == 'DEBUG') else CONSOLE_FORMAT
        root.addHandler(_make_handler(logging.StreamHandler(stream or sys.stderr), level, fmt, '%H:%M:%S'))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        root.addHandler(_make_handler(file_handler, 'DEBUG', FILE_FORMAT, '%Y-%m-%d %H:%M:%S'))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    _logging_configured = True
    logging.getLogger(__name__).debug(f"Logging configured: level={level}, file={log_file or 'none'}")


def format_duration(seconds: float) -> str:
    """``0.25`` -> ``250ms``, ``2.34`` -> ``2.3s``, ``75`` -> ``1m 15s``."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    return f"{int(seconds // 60)}m {seconds % 60:.0f}s"


@contextmanager
def stage_timer(stage_name: str, logger: logging.Logger) -> Iterator[None]:
    """
    Log how long a planning stage took, even when it raises.

        with stage_timer("Tanda slot 3 (Vals, rich)", logger):
            group = plan_slot(...)
    """
    logger.debug(f"{stage_name} starting")
    start = time.perf_counter()
    try:
        yield
    finally:
        logger.info(f"{stage_name} completed in {format_duration(time.perf_counter() - start)}")


def redact(value: Any) -> str:
    """String form of ``value`` with API keys, secrets and home directories masked."""
    if value is None:
        return "None"
    text = str(value)
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def format_count(n: int, singular: str, plural: Optional[str] = None) -> str:
    """``1 tanda``, ``3 tandas``, ``1,204 tracks``"""
    word = singular if n == 1 else (plural or singular + 's')
    return f"{n:,} {word}"


def truncate_list(items: List[Any], max_items: int = 3) -> str:
    """``Di Sarli, Troilo, Biagi (+5 more)``"""
    if not items:
        return "(none)"
    text = ', '.join(str(item) for item in items[:max_items])
    if len(items) > max_items:
        text += f" (+{len(items) - max_items} more)"
    return text


def add_logging_args(parser) -> None:
    """Attach --log-level/--debug/--quiet/--log-file/--show-run-id to an argparse parser."""
    group = parser.add_argument_group('logging')
    group.add_argument(
        '--log-level',
        choices=LEVELS,
        default=None,
        help='Console log level (default: config logging.level, else INFO)'
    )
    group.add_argument('--debug', action='store_true', help='Shortcut for --log-level DEBUG')
    group.add_argument('--quiet', action='store_true', help='Shortcut for --log-level WARNING')
    group.add_argument('--log-file', metavar='PATH', help='Also write DEBUG logs to this file')
    group.add_argument(
        '--show-run-id',
        action='store_true',
        help='Show the generation run id on console lines (always in the log file)',
    )


def resolve_log_level(args, config_level: Optional[str] = None) -> str:
    """
    Console level from CLI flags, falling back to the config file.

    Priority: --debug > --quiet > --log-level > config logging.level > INFO
    """
    if getattr(args, 'debug', False):
        return 'DEBUG'
    if getattr(args, 'quiet', False):
        return 'WARNING'
    explicit = getattr(args, 'log_level', None)
    if explicit:
        return explicit
    if config_level and config_level.upper() in LEVELS:
        return config_level.upper()
    return 'INFO'


class RunSummary:
    """
    Metrics gathered during one generation, logged as a block at the end.

        run = RunSummary("Generation", logger)
        run.increment("skipped_slots")
        run.add("tandas", 12)
        run.log()
    """

    def __init__(self, title: str, logger: logging.Logger):
        self.title = title
        self.logger = logger
        self.metrics: Dict[str, Union[int, float, str]] = {}
        self.start_time = time.perf_counter()

    def add(self, key: str, value: Union[int, float, str]) -> None:
        self.metrics[key] = value

    def increment(self, key: str, amount: int = 1) -> None:
        self.metrics[key] = self.metrics.get(key, 0) + amount

    def elapsed(self) -> float:
        return time.perf_counter() - self.start_time

    def log(self, level: int = logging.INFO) -> None:
        lines = [f"{self.title} summary (run {_run_id or '-'})"]
        for key, value in self.metrics.items():
            label = key.replace('_', ' ').capitalize()
            lines.append(f"  {label}: {value:.2f}" if isinstance(value, float) else f"  {label}: {value}")
        lines.append(f"  Elapsed: {format_duration(self.elapsed())}")
        self.logger.log(level, "\n".join(lines))
