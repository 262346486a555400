"""
The main pytrain package.
"""
import logging
import sys

# Format used once -v is given
LOG_FORMAT = '%(asctime)s.%(msecs)03d [%(levelname)s] %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
# Progress messages are plain log records by default
PLAIN_FORMAT = '%(message)s'

def setup_logging(verbose: int = 0) -> None:
    """Setup logging with appropriate level based on verbosity.

    Args:
        verbose: Verbosity level
            0 = INFO and above, message only
            1 = DEBUG and above with timestamps (git commands included)
    """
    if verbose >= 1:
        level = logging.DEBUG
        fmt = LOG_FORMAT
    else:
        level = logging.INFO
        fmt = PLAIN_FORMAT

    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove any existing handlers
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(fmt, LOG_DATE_FORMAT))
    logger.addHandler(handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose >= 2 else logging.WARNING)
