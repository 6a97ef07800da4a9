from flask import request, session, jsonify, current_app
from app.auth import auth
from app.auth.models import User
from app.errors import ValidationError


@auth.route('/login', methods=['POST'])
def login():
    """Validate credentials and populate the session with id + role."""
    data = request.get_json(silent=True) or request.form
    username = (data.get('username') or '').strip()
    password = data.get('password') or ''

    if not username or not password:
        raise ValidationError('Username and password are required.')

    user = User.query.filter_by(username=username).first()
    if user is None or not user.check_password(password):
        # Same message for unknown user and wrong password
        current_app.logger.warning(f"Failed login attempt for username: {username}")
        return jsonify({'status': 'fail', 'code': 'invalid_credentials',
                        'message': 'Invalid username or password.', 'details': {}}), 401

    session.clear()
    session['user_id'] = user.id
    session['role']    = user.role.value
    session.permanent  = True

    current_app.logger.info(f"User {user.username} logged in successfully.")
    return jsonify({'status': 'success',
                    'data': {'user_id': user.id, 'name': user.name, 'role': user.role.value}})


@auth.route('/logout', methods=['POST'])
def logout():
    """Clear the session. Any draft cart goes with it."""
    session.clear()
    return jsonify({'status': 'success'})
