import logging
from logging.handlers import RotatingFileHandler


def setup_logging(name: str = "forest"):
    """Setup logging configuration"""
    from .config import LOG_DIR
    from .config_loader import config

    level = getattr(logging, str(config.get("logging.level", "INFO")).upper(), logging.INFO)

    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Prevent propagation to root logger (avoid duplicate lines)
    logger.propagate = False

    # Clear any existing handlers to prevent duplicates
    logger.handlers.clear()

    formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # File Handler (Rotating)
    try:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            LOG_DIR / f"{name}.log",
            maxBytes=int(config.get("logging.max_log_size", 10 * 1024 * 1024)),
            backupCount=int(config.get("logging.backup_count", 5)),
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        print(f"Failed to setup file log handler: {e}")

    # Stream Handler (Console)
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    return logger


# Create a default logger instance for convenient import
logger = setup_logging()
