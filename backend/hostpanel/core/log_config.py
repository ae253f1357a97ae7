import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO"):
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # uvicorn access lines are enough for request logging
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
