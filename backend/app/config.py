import os
import logging
import sys

DEBUG = os.getenv("DEBUG", "false").lower() == "true"


# Logging configuration
def setup_logging(debug: bool = DEBUG):
    """Configure application logging"""
    log_level = logging.DEBUG if debug else logging.INFO

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
        ]
    )

    # Configure specific loggers
    logger = logging.getLogger('legend_takeoff')
    logger.setLevel(log_level)

    # Suppress noisy third-party loggers
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)
    logging.getLogger('ppocr').setLevel(logging.WARNING)

    return logger
