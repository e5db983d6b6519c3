import logging

logger = logging.getLogger('pubsub-session')
"""Library logger. Applications are responsible for attaching handlers."""
logger.addHandler(logging.NullHandler())
