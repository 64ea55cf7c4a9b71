import logging
import logging.handlers
from typing import Tuple

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings

# Third-party loggers that drown out task transitions at INFO
NOISY_LOGGERS: Tuple[str, ...] = (
    "uvicorn.access",
    "httpx",
    "httpcore",
    "sqlalchemy.engine",
    "urllib3.connectionpool",
)

FILE_FORMAT = (
    "%(asctime)s - %(levelname)s - %(name)s - "
    "%(filename)s:%(lineno)d in %(funcName)s() - %(message)s"
)


def _console_handler(settings: Settings) -> RichHandler:
    handler = RichHandler(
        console=Console(width=140),
        show_time=True,
        show_level=True,
        show_path=False,
        markup=True,
        rich_tracebacks=True,
        tracebacks_show_locals=False,
    )
    handler.setLevel(settings.log_level)
    return handler


def _file_handler(settings: Settings) -> logging.Handler:
    # Rotates at midnight; the log file doubles as a readable task trail
    handler = logging.handlers.TimedRotatingFileHandler(
        filename=settings.log_file_path,
        when="midnight",
        interval=1,
        backupCount=settings.log_retention_days,
        encoding="utf-8",
    )
    handler.setLevel(settings.log_level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(settings: Settings) -> None:
    """Route all logging through a Rich console handler and a daily rotated file."""
    settings.log_directory.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.log_level)
    root_logger.handlers.clear()
    root_logger.addHandler(_console_handler(settings))
    root_logger.addHandler(_file_handler(settings))

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.info(
        f"[bold green]Logging initialized[/] - "
        f"file [cyan]{settings.log_file_path}[/], level [yellow]{settings.log_level}[/], "
        f"keeping [blue]{settings.log_retention_days}[/] days"
    )
