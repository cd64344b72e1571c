"""Console logging with Rich.

``setup_logging()`` is called once by the CLI entry point; library modules only
ever do ``logger = logging.getLogger(__name__)``.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "multipart")


def setup_logging(level: str = "INFO") -> None:
    """Install a RichHandler on the root logger."""
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        show_path=False,
        markup=False,
    )
    logging.basicConfig(
        level=level.upper(),
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
