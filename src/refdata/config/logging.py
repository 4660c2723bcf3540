"""Shared logging helpers for refdata."""

from __future__ import annotations

import logging

from .env import env_str


def configure_logging(*, level: int | None = None, force: bool = False) -> None:
    """Initialise the root logger once with sensible defaults.

    Parameters mirror ``logging.basicConfig`` with a simplified contract: the level
    defaults to ``REFDATA_LOG_LEVEL`` (or INFO) and the format is terse enough for
    CLI output. Pass ``force=True`` to reconfigure during tests or specialised
    entry points.
    """

    if level is None:
        name = (env_str("REFDATA_LOG_LEVEL") or "INFO").upper()
        resolved = logging.getLevelName(name)
        level = resolved if isinstance(resolved, int) else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
