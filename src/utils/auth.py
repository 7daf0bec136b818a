from flask import request

from utils.errors import Unauthenticated

USER_ID_HEADER = "X-User-Id"


def current_user_id() -> str:
    """
    Returns the authenticated user id. The session provider in front of this
    service authenticates the caller and forwards their id in a header.
    """
    user_id = (request.headers.get(USER_ID_HEADER) or "").strip()
    if not user_id:
        raise Unauthenticated(f"missing {USER_ID_HEADER} header")
    return user_id
