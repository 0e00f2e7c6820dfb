"""Process-wide logging setup driven by LoggingConfig."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from .settings import LoggingConfig

_configured = False


def configure_logging(config: LoggingConfig, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return

    handlers = [logging.StreamHandler()]
    if config.file:
        Path(config.file).expanduser().parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                config.file,
                maxBytes=config.max_size,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    logging.basicConfig(
        level=getattr(logging, str(config.level).upper(), logging.INFO),
        format=config.format,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO (openai / qdrant clients)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    _configured = True
