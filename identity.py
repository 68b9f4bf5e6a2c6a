# identity.py
"""
Bridges the request (JWT bearer token or Flask-Login session) to the
explicit Identity the authorization gate expects, and turns gate denials
into HTTP errors.
"""
import logging

from flask import current_app
from flask_login import current_user
from flask_jwt_extended import verify_jwt_in_request, get_current_user
from flask_jwt_extended.exceptions import JWTExtendedException
from flask_restful import abort
from jwt.exceptions import PyJWTError

from authorization import Identity, Role, Target, StoreUnavailable, authorize

logger = logging.getLogger(__name__)

STORE_KEY = 'lms_store'


def get_store():
    """The data-access object installed by create_app()."""
    return current_app.extensions[STORE_KEY]


def current_identity():
    """
    Return the Identity of the caller, or None when there is no valid session.

    A bearer token takes precedence over the browser session cookie. An
    invalid or expired token counts as no session at all.
    """
    user = None
    try:
        if verify_jwt_in_request(optional=True):
            user = get_current_user()
    except (JWTExtendedException, PyJWTError) as e:
        logger.info(f"Rejected bearer token: {str(e)}")
        return None

    if user is None and current_user.is_authenticated:
        user = current_user

    if user is None:
        return None
    return Identity(user_id=user.id, role=Role.from_string(user.role))


def guard(action, now=None, **target):
    """
    Authorize the current request or abort it.

    Returns the caller's Identity when the gate allows the action. Denials
    abort with the mapped status and a ``message`` body; an unreachable store
    aborts with 503.
    """
    identity = current_identity()
    try:
        decision = authorize(identity, action, Target(**target), get_store(), now=now)
    except StoreUnavailable:
        abort(503, message='Could not verify permissions because the data store is unavailable.')
    if not decision:
        abort(decision.status_code, message=decision.message)
    return identity
