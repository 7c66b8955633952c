"""Logging setup: console plus a rotating file per run mode."""

from __future__ import annotations

from pathlib import Path
import sys

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[mode]} | {message}"


def setup_logger(log_dir: str | Path = "logs", mode: str = "paper", level: str = "INFO"):
    """Configure loguru once and return a logger bound to the run mode.

    Live and paper runs share ``bot.log``; simulation runs write ``simulation.log``
    so replays never interleave with trading history.
    """
    path = Path(log_dir)
    path.mkdir(parents=True, exist_ok=True)
    file_name = "simulation.log" if mode == "simulation" else "bot.log"

    logger.remove()
    logger.configure(extra={"mode": mode})
    logger.add(sys.stdout, level=level, format=LOG_FORMAT, enqueue=True)
    logger.add(
        path / file_name,
        level=level,
        format=LOG_FORMAT,
        rotation="5 MB",
        retention=5,
        enqueue=True,
        encoding="utf-8",
    )
    return logger.bind(mode=mode)
