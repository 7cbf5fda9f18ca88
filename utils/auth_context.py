from functools import wraps
from flask import g, jsonify, request, current_app
from models import db
from models.user import User
from security.session import get_session_from_request

def load_current_user():
    g.user = None
    g.session = None
    # cookie present but no live session behind it: the response clears the cookies
    g.session_invalid = False

    sess = get_session_from_request()
    if not sess:
        cookie_name = current_app.config.get("AUTH_COOKIE_NAME", "ciphers_session")
        g.session_invalid = bool(request.cookies.get(cookie_name))
        return
    g.session = sess
    g.user = db.session.get(User, sess.user_id)

def login_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if getattr(g, "user", None) is None:
            return jsonify(error="Authentication required"), 401
        return fn(*args, **kwargs)
    return wrapper
