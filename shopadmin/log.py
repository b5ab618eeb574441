"""
Centralised logging configuration.

Levels, handlers and formats live in ``etc/logging.conf`` (or the file named
by ``LOG_CONFIG``) and are applied with the standard-library ``fileConfig``
loader when the application is created.

Import the ready-made logger anywhere:
    from shopadmin.log import logger
"""

import configparser
import logging
import logging.config
from pathlib import Path

# project root: shopadmin/log.py  ->  ../
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_LOGGING_CONF = _PROJECT_ROOT / "etc" / "logging.conf"

logger = logging.getLogger("shopadmin")


def configure_logging(path: str = "") -> None:
    conf = Path(path) if path else DEFAULT_LOGGING_CONF
    if not conf.is_file():
        # installed without the etc/ directory: plain stderr logging
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
        logger.warning("logging config %s not found, using defaults", conf)
        return

    # RawConfigParser is required: the format strings contain %(asctime)s etc.
    # which ConfigParser would try to interpolate and fail on.
    parser = configparser.RawConfigParser()
    parser.read_string(conf.read_text(encoding="utf-8"))
    logging.config.fileConfig(parser, disable_existing_loggers=False)
