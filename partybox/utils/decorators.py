import logging
from functools import wraps

from flask import current_app

logger = logging.getLogger(__name__)


def get_jukebox():
    return current_app.extensions["partybox"]


def payload_required(*types):
    """Ignore socket events whose payload is not one of ``types``."""

    def decorator(f):
        @wraps(f)
        def decorated_function(data=None, *args):
            if not isinstance(data, types):
                logger.warning(f"Ignoring {f.__name__}: unexpected payload {type(data).__name__}")
                return None
            return f(data, *args)

        return decorated_function

    return decorator


def with_jukebox(f):
    """Pass the app's Jukebox as the first argument of a socket handler."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        return f(get_jukebox(), *args, **kwargs)

    return decorated_function
