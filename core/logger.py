import logging
import os
from config.settings import LOG_FILE

os.makedirs(os.path.dirname(LOG_FILE), exist_ok=True)

logging.basicConfig(
    filename=str(LOG_FILE),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)

logger = logging.getLogger("vsphere-manager")


def log_event(message: str, level: int = logging.INFO) -> None:
    """
    Write a single line event to the main vsphere-manager.log file.
    """
    logger.log(level, message)


def log_error(message: str, exc: BaseException | None = None) -> None:
    """
    Log a failure, with traceback when the causing exception is given.
    """
    logger.error(message, exc_info=exc)
