import logging

from rich.console import Console
from rich.logging import RichHandler

from .config import settings

NOISY_LOGGERS = (
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "httpx",
    "httpcore",
    "openai",
    "pdfminer",
)


def configure_logging(level: str | None = None) -> None:
    """Install a single RichHandler on the root logger."""
    console = Console(stderr=True)
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(message)s",  # Rich handles formatting
        datefmt="[%X]",
        handlers=[
            RichHandler(
                console=console,
                rich_tracebacks=True,
                show_time=True,
                show_level=True,
                show_path=False,
            )
        ],
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
