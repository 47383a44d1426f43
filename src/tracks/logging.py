"""
Centralized logging configuration.
"""

import logging


def configure_logging(verbose: bool = False, quiet: bool = False) -> None:
    """Configure logging for the tracks package.

    Args:
        verbose: Enable DEBUG level logging.
        quiet: Only show warnings and errors.
    """
    if verbose:
        level = logging.DEBUG
    elif quiet:
        level = logging.WARNING
    else:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
    )
