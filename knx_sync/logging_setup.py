"""Logging configuration for the command line tool and the admin backend."""

import logging

LOGLEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warn': logging.WARNING,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

LOG_FORMAT = '%(asctime)s %(levelname)-8s %(name)s: %(message)s'


def setup_logging(loglevel: str = 'info') -> int:
    """Configure the root logger from a ``loglevel`` setting and return the level."""
    level = LOGLEVELS.get(str(loglevel).lower(), logging.INFO)
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger().setLevel(level)
    return level
