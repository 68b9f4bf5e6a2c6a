# routes/auth.py

from flask import Blueprint, jsonify, request
from flask_login import login_user, logout_user, current_user
from models import User
from identity import current_identity
import services
from services import ValidationError, ConflictError

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/register', methods=['POST'])
def register():
    data = request.get_json(silent=True) or {}
    # Self-registration always creates a student account
    try:
        user = services.create_user(data.get('username'), data.get('email'), data.get('password'))
    except ValidationError as e:
        return jsonify(message=str(e)), 400
    except ConflictError as e:
        return jsonify(message=str(e)), 409
    return jsonify(message='Congratulations, you are now a registered user!', user=user.to_dict()), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    data = request.get_json(silent=True) or {}
    login_name = data.get('username') or data.get('email')
    password = data.get('password')
    if not login_name or not password:
        return jsonify(message='Username (or email) and password are required.'), 400

    user = User.query.filter((User.username == login_name) | (User.email == login_name)).first()
    if user is None or not user.check_password(password):
        return jsonify(message='Invalid username or password'), 401
    login_user(user)
    return jsonify(message=f'Welcome back, {user.username}!', user=user.to_dict())


@auth_bp.route('/logout', methods=['POST'])
def logout():
    if current_user.is_authenticated:
        username = current_user.username  # store before logging out
        logout_user()
        return jsonify(message=f'You have been logged out, {username}.')
    return jsonify(message='You were not logged in.')


@auth_bp.route('/me')
def me():
    identity = current_identity()
    if identity is None:
        return jsonify(message='Authentication required.'), 401
    user = User.query.filter_by(id=identity.user_id).one_or_none()
    if user is None:
        return jsonify(message='Authentication required.'), 401
    return jsonify(user.to_dict())
