import logging
import os
from datetime import datetime
from typing import Optional, Tuple

logging.getLogger("numba").setLevel(logging.WARNING)

PACKAGE_LOGGER_NAME = "storage_dispatch"


def get_logger(logger: Optional[logging.Logger] = None) -> logging.Logger:
    """Return the supplied logger, or the package logger when none was given."""
    return logger if logger is not None else logging.getLogger(PACKAGE_LOGGER_NAME)


def init_model_logger(model_name: str, logging_flag: bool) -> Tuple[logging.Logger, str]:
    """
    Initialize a logger for the model run, configured to log both to console and a log file.
    Logger does not work within JIT compiled code.

    The logger writes:
    - All messages (DEBUG and above) to a log file in a new `results/<model_name>_<timestamp>` directory.
    - INFO and higher messages to the console.

    Parameters:
    -------
    model_name (str): Name of the model run, used for the results directory.
    logging_flag (bool): If False, the log is written to `results/temp` instead of a new timestamped directory.

    Returns:
    -------
    Tuple[logging.Logger, str]: A tuple containing the configured `Logger` instance and the path to the results
        directory.
    """

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    if logging_flag:
        results_dir = os.path.join("results", f"{model_name}_{timestamp}")
    else:
        results_dir = os.path.join("results", "temp")
    os.makedirs(results_dir, exist_ok=True)

    log_path = os.path.join(results_dir, "log.txt")

    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(logging.DEBUG)
    file_format = logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    file_handler.setFormatter(file_format)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter("%(message)s"))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)
    logger.propagate = False

    logger.info(f"Logger initialized. Writing to {log_path}")
    return logger, results_dir
