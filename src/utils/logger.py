import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import Config


def setup_logging(config: Config, *, override_file: Optional[str] = None, level: Optional[str] = None):
    cfg = config.get().logging
    level = level or cfg.level
    logger.remove()
    if cfg.console:
        logger.add(sys.stderr, level=level, format=cfg.format)
    log_file = override_file or cfg.file
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(log_file, level=level, format=cfg.format, rotation=cfg.rotation, retention=cfg.retention)
    return logger
