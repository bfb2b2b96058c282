"""
Logging configuration for the media offload service.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Union

BASE_LOGGER = "media_offload"


def setup_logging(log_dir: Path, level: Union[int, str] = logging.INFO) -> Dict[str, logging.Logger]:
    """Initialize loggers and return a mapping of named loggers."""
    log_dir.mkdir(parents=True, exist_ok=True)
    date_stamp = datetime.utcnow().strftime("%Y%m%d")
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    master_log = log_dir / f"offload_{date_stamp}.log"
    error_log = log_dir / f"offload_errors_{date_stamp}.log"
    performance_log = log_dir / f"performance_{date_stamp}.log"
    transfer_log = log_dir / f"transfers_{date_stamp}.log"

    base_logger = logging.getLogger(BASE_LOGGER)
    if not base_logger.handlers:
        base_logger.setLevel(level)
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        base_logger.addHandler(stream_handler)

        file_handler = logging.FileHandler(master_log, encoding="utf-8")
        file_handler.setFormatter(formatter)
        base_logger.addHandler(file_handler)

        error_handler = logging.FileHandler(error_log, encoding="utf-8")
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        base_logger.addHandler(error_handler)

    performance_logger = logging.getLogger(f"{BASE_LOGGER}.performance")
    if not performance_logger.handlers:
        performance_logger.setLevel(logging.INFO)
        perf_handler = logging.FileHandler(performance_log, encoding="utf-8")
        perf_handler.setFormatter(formatter)
        performance_logger.addHandler(perf_handler)
        performance_logger.propagate = False

    # Upload and delete audit trail.
    transfer_logger = logging.getLogger(f"{BASE_LOGGER}.transfer")
    if not transfer_logger.handlers:
        transfer_logger.setLevel(logging.INFO)
        transfer_handler = logging.FileHandler(transfer_log, encoding="utf-8")
        transfer_handler.setFormatter(formatter)
        transfer_logger.addHandler(transfer_handler)
        transfer_logger.propagate = False

    return {"main": base_logger, "performance": performance_logger, "transfer": transfer_logger}
