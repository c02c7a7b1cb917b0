"""
Logging setup for calipermatch.

Every module logs through a child of the ``calipermatch`` logger, so one call
to configure_logging controls the output of stratification, matching,
balance diagnostics and sensitivity sweeps together.
"""

import logging
import sys
from typing import Optional, TextIO, Union

PACKAGE_LOGGER = "calipermatch"
DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the package logger or one of its children.

    Names outside the package (for example a script's ``__name__``) are
    placed under the package logger so they share its handlers.

    Args:
        name: Logger name, usually the calling module's ``__name__``

    Returns:
        A named logger instance
    """
    if name is None or name == PACKAGE_LOGGER:
        return logging.getLogger(PACKAGE_LOGGER)
    if not name.startswith(PACKAGE_LOGGER + "."):
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def configure_logging(
    level: Union[int, str] = logging.INFO,
    format_string: Optional[str] = None,
    stream: Optional[TextIO] = sys.stdout,
    log_file: Optional[str] = None,
    name: str = PACKAGE_LOGGER,
) -> logging.Logger:
    """Configure the handlers of the calipermatch logger.

    Calling it again replaces the handlers installed by an earlier call.

    Args:
        level: Logging level, as a number or a name such as "debug"
        format_string: Format of log records, defaults to DEFAULT_FORMAT
        stream: Stream for log records, None disables console output
        log_file: Optional path of a file that also receives the records
        name: Logger to configure, defaults to the package logger

    Returns:
        The configured logger

    Raises:
        ValueError: If level is an unknown level name
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level: {level}")
        level = resolved

    logger = logging.getLogger(name)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(level)
    formatter = logging.Formatter(format_string or DEFAULT_FORMAT)

    if stream is not None:
        console_handler = logging.StreamHandler(stream)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # Records stop at the package logger
    logger.propagate = False

    return logger
