"""Logging setup for carchive-harness.

The package logger only carries a NullHandler; nothing is printed unless
the CLI calls configure_logging(). CARCHIVE_HARNESS_LOG_LEVEL sets the
initial level.

Modules tag scenario records with ``extra={"context_id": <scenario>}``.
The CLI format shows that tag, and repeats it on every continuation line
of multi-line messages (tool diagnostics), so output from scenarios run
concurrently with ``--jobs`` stays attributable:

    INFO [2026-02-25 10:02:54] carchive_harness.build [pie] - build: go build ...
    ERROR [2026-02-25 10:02:55] carchive_harness.build [extar] - # libgo4
    [extar] ./libgo4.go:12: undefined: C.foo

Records go through a bounded queue to a listener thread that writes them
with click.echo(err=True), so a scenario never waits on the terminal.
"""

import contextlib
import logging
import logging.handlers
import os
import queue

import click

LIBRARY_LOGGER_NAME: str = "carchive_harness"

logging.getLogger(LIBRARY_LOGGER_NAME).addHandler(logging.NullHandler())

_env_level = os.environ.get("CARCHIVE_HARNESS_LOG_LEVEL", "").strip().upper()
_env_level_value = logging.getLevelNamesMapping().get(_env_level)
if _env_level_value:  # excludes NOTSET (0) and missing keys (None)
    logging.getLogger(LIBRARY_LOGGER_NAME).setLevel(_env_level_value)

_FMT = "%(levelname)s [%(asctime)s] %(name)s%(scenario_tag)s - %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

_QUEUE_CAPACITY = 4096

_LEVEL_STYLE: dict[int, dict[str, object]] = {
    logging.ERROR: {"fg": "red"},
    logging.WARNING: {"fg": "yellow"},
}


class ScenarioFormatter(logging.Formatter):
    """Formatter that tags lines with the record's scenario (``context_id``)."""

    def __init__(self) -> None:
        super().__init__(fmt=_FMT, datefmt=_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        context_id = getattr(record, "context_id", None)
        tag = f"[{context_id}]" if context_id else ""
        record.scenario_tag = f" {tag}" if tag else ""
        text = super().format(record)
        if not tag or "\n" not in text:
            return text
        first, *rest = text.split("\n")
        return "\n".join([first, *(f"{tag} {line}" for line in rest)])


class _ClickHandler(logging.Handler):
    """Echoes records to stderr; errors red, warnings yellow, the rest dim.

    Called on the listener thread. click.echo drops the styling when
    stderr is not a terminal.
    """

    def __init__(self) -> None:
        super().__init__()
        self.formatter = ScenarioFormatter()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            style = _LEVEL_STYLE.get(record.levelno, {"dim": True})
            click.echo(click.style(msg, **style), err=True)  # type: ignore[arg-type]
        except BlockingIOError:
            pass  # stderr full; drop the record
        except Exception:  # noqa: BLE001
            self.handleError(record)


class _NonBlockingHandler(logging.handlers.QueueHandler):
    """QueueHandler feeding _ClickHandler; drops records when the queue is full."""

    def __init__(self) -> None:
        q: queue.Queue[logging.LogRecord] = queue.Queue(maxsize=_QUEUE_CAPACITY)
        super().__init__(q)
        self._listener = logging.handlers.QueueListener(q, _ClickHandler(), respect_handler_level=False)
        self._listener.start()

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        # Same process: the formatter needs the original record and its extras
        return record

    def enqueue(self, record: logging.LogRecord) -> None:
        with contextlib.suppress(queue.Full):
            self.queue.put_nowait(record)

    def close(self) -> None:
        self._listener.stop()
        super().close()


def get_logger(name: str) -> logging.Logger:
    """Logger under the carchive_harness hierarchy."""
    return logging.getLogger(name)


def configure_logging(
    *,
    level: int | str | None = None,
    quiet: bool = False,
) -> None:
    """Send package logs to stderr for the CLI.

    Installs the queue handler once, however often it is called.

    Args:
        level: Log level (e.g. logging.DEBUG, "WARNING"); overrides the env var
        quiet: Only errors; wins over level
    """
    lib_logger = logging.getLogger(LIBRARY_LOGGER_NAME)

    if not any(isinstance(h, _NonBlockingHandler) for h in lib_logger.handlers):
        lib_logger.addHandler(_NonBlockingHandler())

    if quiet:
        lib_logger.setLevel(logging.ERROR)
    elif level is not None:
        lib_logger.setLevel(level)
