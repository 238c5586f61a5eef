"""Logging setup for the Lectern CLI and API server."""

import logging
import os
from pathlib import Path
from typing import Optional


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging to stderr, and to a file when LECTERN_LOG_FILE is set.

    The level comes from ``level``, then LECTERN_LOG_LEVEL, then INFO.
    Does nothing if the root logger already has handlers.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level_name = (level or os.getenv("LECTERN_LOG_LEVEL", "INFO")).upper()
    resolved = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    log_file = os.getenv("LECTERN_LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(resolved)
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(max(resolved, logging.WARNING))
