import logging

from .config import Config

LOG_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def setup_logging(config: Config) -> None:
    level = logging.DEBUG if config.debug else getattr(logging, str(config.log_level).upper(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("uindex").setLevel(level)
