import os
import logging
from logging.handlers import RotatingFileHandler

from kb_ingest.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(log_level: str = None, log_path: str = None) -> None:
    """
    Configures root logging: console output plus a rotating file under LOG_PATH.
    Safe to call more than once.
    """
    level = getattr(logging, (log_level or settings.LOG_LEVEL).upper(), logging.INFO)
    log_path = log_path if log_path is not None else settings.LOG_PATH

    root = logging.getLogger()
    root.setLevel(level)
    if getattr(root, "_kb_ingest_configured", False):
        return

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_path:
        os.makedirs(log_path, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_path, "kb_ingest.log"), maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Third-party clients are chatty at DEBUG
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    root._kb_ingest_configured = True
