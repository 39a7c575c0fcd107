import logging
import sys

try:
    from budget_tracker.config.settings import settings
    LOG_LEVEL = settings.LOG_LEVEL.upper() if settings else "INFO"
except Exception:
    LOG_LEVEL = "INFO"


def setup_logging(name: str = "budget_tracker", level: str = LOG_LEVEL) -> logging.Logger:
    """
    Shared logger configuration.
    Writes to stdout so container runtimes can collect it.
    """
    logger = logging.getLogger(name)

    # Only one handler per logger
    if logger.handlers:
        return logger

    resolved = getattr(logging, level, logging.INFO)
    logger.setLevel(resolved)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(resolved)

    formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler.setFormatter(formatter)

    logger.addHandler(console_handler)
    return logger


# Default logger
logger = setup_logging()
