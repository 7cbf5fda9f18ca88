from flask import session

from security.tokens import hash_token, new_token

LOGIN_CLIENT_FIELD = "login_client"


def login_client_key() -> str:
    """
    Key of the failed-attempt counter for the calling browser.

    The browser id lives in Flask's signed session cookie and a new one is
    issued when it is missing or its signature does not check out. Only the
    hash of the id is used as the database key.
    """
    client_id = session.get(LOGIN_CLIENT_FIELD)
    if not isinstance(client_id, str) or not client_id:
        client_id = new_token()
        session[LOGIN_CLIENT_FIELD] = client_id
        session.permanent = True
    return hash_token(client_id)
