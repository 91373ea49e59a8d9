"""
Logging setup for the swifi package.
"""

import logging

import urllib3

# Package logger; library users see nothing unless they configure logging
_logger = logging.getLogger("swifi")
if not _logger.handlers:
    _logger.addHandler(logging.NullHandler())


def set_log_level(level: int = logging.WARNING) -> None:
    """
    Set the logging level for the swifi package.

    Args:
        level: Logging level (logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)

    Examples:
        >>> import logging
        >>> from swifi import set_log_level
        >>> set_log_level(logging.ERROR)  # Only show errors
    """
    _logger.setLevel(level)


def silence_warnings() -> None:
    """Suppress urllib3/requests warnings."""
    urllib3.disable_warnings()


def setup_logging(log_level: int = logging.WARNING) -> logging.Logger:
    """
    Set up logging for command-line use.

    Args:
        log_level: Logging level (default: WARNING)

    Returns:
        The package logger
    """
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(levelname)s - %(message)s',
    )
    set_log_level(log_level)
    _logger.debug("swifi logging initialized")
    return _logger
