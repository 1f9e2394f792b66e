"""Root logger setup for the command line."""

from __future__ import annotations

import logging

# Request lines from these libraries drown out shift activity at INFO.
NOISY_LOGGERS = ("httpx", "httpcore", "alembic.runtime.migration")


def configure_logging(*, verbose: bool = False, force: bool = False) -> None:
    """Log to stderr at INFO, or DEBUG with ``verbose``; library chatter stays at WARNING.

    ``force`` replaces handlers installed earlier, which tests rely on.
    """

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if verbose else logging.WARNING)
