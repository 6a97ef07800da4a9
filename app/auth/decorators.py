"""
app/auth/decorators.py
----------------------
Route guards. Identity comes from the Flask session populated by
/auth/login; the POS routes only need the user id and role.

    @billing.route('/sales', methods=['POST'])
    @login_required
    def commit():
        ...
"""
from functools import wraps
from flask import session, abort


def login_required(f):
    """401 unless the session carries a user id."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            abort(401, description='Please log in to access this resource.')
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """
    Allow access only to users with role == 'admin'.
    Unauthenticated callers get 401, authenticated non-admins 403.
    """
    @wraps(f)
    def decorated(*args, **kwargs):
        if 'user_id' not in session:
            abort(401, description='Please log in to access this resource.')
        if session.get('role') != 'admin':
            abort(403, description='Admin access required.')
        return f(*args, **kwargs)
    return decorated


def current_user_id() -> int:
    return session['user_id']
