import logging
import sys

from .config import LOG_LEVEL

# Logger setup: console-only, every fis.* module logs through this root
logger = logging.getLogger("fis")
logger.setLevel(LOG_LEVEL)

formatter = logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s')

console_handler = logging.StreamHandler(sys.stdout)
console_handler.setLevel(LOG_LEVEL)
console_handler.setFormatter(formatter)

# Remove any pre-existing handlers to avoid duplicates on reload
if logger.hasHandlers():
    logger.handlers.clear()

logger.addHandler(console_handler)


def get_logger(name: str) -> logging.Logger:
    return logger.getChild(name.rsplit(".", 1)[-1])
