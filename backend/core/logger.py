# ---------------------------------------------------------------------------
# Author  : Kyle <kyle@hacking-linux.com>
# Version : 20261019v1
# ---------------------------------------------------------------------------
"""
Logging setup for the service and the device agent.

Levels, handlers and rotation are declared in etc/logging.conf; the file
handler's path is a ``%(log_file)s`` placeholder filled in here.  The log
directory defaults to <project>/log and can be moved with
``DEVICETRUST_LOG_DIR`` (tests point it at a temp dir).

    from core.logger import logger

Log identifiers only (user, device, session ids).  Key material, wrapped
blobs, access tokens and private keys never go to a logger.
"""

import configparser
import logging
import logging.config
import os
from pathlib import Path

LOGGER_NAME = "devicetrust"

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_LOGGING_CONF = _PROJECT_ROOT / "etc" / "logging.conf"


def _log_dir() -> Path:
    return Path(os.environ.get("DEVICETRUST_LOG_DIR", _PROJECT_ROOT / "log"))


def setup_logging(conf_path: Path = _LOGGING_CONF) -> logging.Logger:
    """Apply *conf_path* with the resolved log file and return the service logger."""
    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    text = conf_path.read_text(encoding="utf-8")
    text = text.replace("%(log_file)s", (log_dir / "app.log").as_posix())

    # No interpolation: the format strings are full of %(asctime)s and friends.
    parser = configparser.RawConfigParser()
    parser.read_string(text)
    logging.config.fileConfig(parser, disable_existing_loggers=False)

    return logging.getLogger(LOGGER_NAME)


logger = setup_logging()
