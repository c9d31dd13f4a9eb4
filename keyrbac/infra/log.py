"""Process-wide logging setup."""

from __future__ import annotations

import logging
import os

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(*, level: str | int | None = None, force: bool = False) -> None:
    """Initialise the root logger once.

    Pass ``force=True`` to reconfigure from tests or alternate entry points.
    """

    logging.basicConfig(
        level=level if level is not None else LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=force,
    )
