import logging
import os

from rich.console import Console
from rich.logging import RichHandler

_log_console: Console | None = None


class CenteredFormatter(logging.Formatter):
    """Pads logger names to the widest name seen so far so columns line up."""

    name_width = 12

    def format(self, record):
        CenteredFormatter.name_width = max(
            CenteredFormatter.name_width, len(record.name)
        )
        record.name = record.name.center(CenteredFormatter.name_width)
        return super().format(record)


def _console() -> Console:
    """
    The TUI owns the terminal, so when LOG_FILE is set the rich output goes there.
    Otherwise logs go to stderr.
    """
    global _log_console
    if _log_console is None:
        log_file = os.getenv("LOG_FILE")
        if log_file:
            _log_console = Console(
                file=open(log_file, "a", encoding="utf-8"), width=120
            )
        else:
            _log_console = Console(stderr=True)
    return _log_console


def get_logger(name=None) -> logging.Logger:
    """
    Creates and returns a logger configured with RichHandler for rich output.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    log_level = logging.DEBUG if os.getenv("DEBUG") else logging.INFO
    logger.setLevel(log_level)

    if not logger.handlers:
        handler = RichHandler(
            console=_console(),
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(CenteredFormatter("[%(name)s]  %(message)s"))
        handler.setLevel(log_level)
        logger.addHandler(handler)

        logger.propagate = False
        logger.debug(f"Logger for '{name}' ready.")

    return logger
