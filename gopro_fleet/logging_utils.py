"""
Logging setup shared by the CLI and the API server
"""
import logging
import os
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(verbose: bool = False, log_file: Optional[Union[str, Path]] = None):
    """Configure the root logger. GOPRO_LOG_LEVEL and GOPRO_LOG_FILE override the defaults."""
    level_name = os.environ.get("GOPRO_LOG_LEVEL", "DEBUG" if verbose else "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)

    log_file = log_file or os.environ.get("GOPRO_LOG_FILE")
    if log_file:
        # Also write to file so logs survive when the console isn't kept
        handler = logging.FileHandler(log_file)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
