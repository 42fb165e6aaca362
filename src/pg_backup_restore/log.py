"""Shared log file and console logging setup.

All modules log through ``logging.getLogger(__name__)``; this module wires
the package logger to the shared, timestamped log file (appended across
runs) and to a ``rich`` handler on stderr.
"""

import logging
import sys
from datetime import datetime

from rich.console import Console
from rich.logging import RichHandler

from pg_backup_restore.config.models import GlobalSettings

PACKAGE_LOGGER = "pg_backup_restore"

LOG_FORMAT = "[%(asctime)s] %(levelname)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(
    settings: GlobalSettings,
    debug: bool = False,
    command: str = "pg-backup-restore",
) -> logging.Logger:
    """Attach file and console handlers to the package logger.

    Idempotent: handlers installed by a previous call are replaced.  A log
    file that cannot be opened only produces a warning on stderr.

    Args:
        settings: Global settings (for ``log_file``).
        debug: Show DEBUG records on the console.
        command: Name written into the per-run header line.

    Returns:
        The configured package logger.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        level=logging.DEBUG if debug else logging.WARNING,
    )
    logger.addHandler(console_handler)

    try:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(settings.log_file, encoding="utf-8")
    except OSError as e:
        print(f"WARN: cannot write log file at {settings.log_file}: {e}", file=sys.stderr)
        return logger

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(file_handler)

    # Run separator goes to the file only
    file_handler.stream.write(
        "----------------------------------------\n"
        f"New run of {command} at {datetime.now().strftime(LOG_DATE_FORMAT)}\n"
    )
    file_handler.flush()

    return logger
