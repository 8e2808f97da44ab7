import logging
import sys

def setup_logging(level=logging.INFO) -> logging.Logger:
    logger = logging.getLogger("karuna")
    if logger.handlers:
        return logger  # already configured
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    fmt = logging.Formatter("[%(asctime)s] %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(fmt)
    logger.addHandler(handler)
    # the mongo driver is chatty at INFO
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    return logger
