# esmarket/logs/logger.py

"""
Logger setup for sweep runs.

Each run writes to ``<log_dir>/<run_name>_<scenario>.log`` and echoes to the
console. Library modules only call ``logging.getLogger(__name__)``; handlers
are attached here, to the ``esmarket`` package logger, by the entry point.
"""

import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def get_logger(
    run_name: str = "esmarket",
    scenario: str = "sweep",
    log_dir: Optional[str] = None,
    level: str = "INFO",
) -> logging.Logger:
    """
    Configure and return the package logger for a run.

    Parameters
    ----------
    run_name : str
        Name of the run, used in the log file name.
    scenario : str
        Scenario tag, used in the log file name.
    log_dir : str, optional
        Directory for the log file (default: ``./logs``).
    level : str
        Logging level name (default: ``'INFO'``).

    Returns
    -------
    logging.Logger
        The ``esmarket`` logger with file and console handlers attached.
    """
    log_dir = log_dir or os.path.join(os.getcwd(), "logs")
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, f"{run_name}_{scenario}.log")

    logger = logging.getLogger("esmarket")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    # Replace handlers from a previous run in the same process
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_path)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    return logger
