import logging
import os
import sys
from datetime import datetime
from typing import Optional

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    """configure structured logging for the whole process

    always logs to stdout; when log_dir is set, also appends to a daily file
    """
    handlers = [logging.StreamHandler(sys.stdout)]

    if log_dir:
        # create logs directory before attaching the file handler
        os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            logging.FileHandler(
                os.path.join(log_dir, f'app_{datetime.now().strftime("%Y%m%d")}.log'),
                mode='a'
            )
        )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
