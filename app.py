import atexit
import logging

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from dotenv import load_dotenv
from extensions import db, login_manager, jwt, migrate
from authorization import Role, StoreUnavailable
from identity import STORE_KEY

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s %(levelname)s [%(name)s] %(message)s'


def create_app(config_object='instance.config.Config'):
    # Initialize Flask app
    app = Flask(__name__, instance_relative_config=True)

    # Dotted path (default: instance/config.py) or a config class
    app.config.from_object(config_object)

    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger().setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Initialize extensions with the app instance
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    jwt.init_app(app)

    # Import models here to ensure db is initialized before models are loaded
    from models import User
    from repository import SqlAlchemyStore

    # User loader for Flask-Login (browser sessions)
    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # JWT callbacks (API tokens). The subject claim must be a string.
    @jwt.user_identity_loader
    def user_identity_lookup(user):
        return str(user.id)

    @jwt.user_lookup_loader
    def user_lookup_callback(_jwt_header, jwt_data):
        identity = jwt_data["sub"]
        return db.session.get(User, int(identity))

    # One store per app; it reads through the scoped session of the current request
    app.extensions[STORE_KEY] = SqlAlchemyStore(db.session)
    if not app.testing:
        atexit.register(dispose_store, app)

    # Import and register blueprints
    from routes.auth import auth_bp
    from routes.api import api_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(api_bp, url_prefix='/api')

    register_error_handlers(app)
    register_commands(app)

    logger.debug(f"Application created with {app.config['SQLALCHEMY_DATABASE_URI']}")
    return app


def dispose_store(app):
    """Release pooled database connections held by ``app``."""
    with app.app_context():
        db.session.remove()
        db.engine.dispose()


def register_error_handlers(app):
    # Every error leaves the app as {"message": ...}
    @app.errorhandler(HTTPException)
    def http_error(e):
        data = getattr(e, 'data', None) or {}
        return jsonify(message=data.get('message', e.description)), e.code

    @app.errorhandler(StoreUnavailable)
    def store_unavailable(e):
        logger.error(f"Data store unavailable: {str(e)}")
        return jsonify(message='The data store is unavailable. Please try again later.'), 503

    @app.errorhandler(500)
    def internal_server_error(e):
        db.session.rollback()
        logger.exception("Unhandled error")
        return jsonify(message='An internal server error occurred.'), 500


def register_commands(app):
    @app.cli.command('seed-admin')
    def seed_admin():
        """Create the admin account from ADMIN_EMAIL / ADMIN_PASSWORD, or reset its password."""
        from models import User

        email = app.config['ADMIN_EMAIL']
        user = User.query.filter_by(email=email).first()
        if user is None:
            user = User(username='admin', email=email)
            db.session.add(user)
        user.role = Role.ADMIN.value
        user.set_password(app.config['ADMIN_PASSWORD'])
        db.session.commit()
        click.echo(f"Admin user {user.username} <{email}> is ready.")


# This block is for running the app directly during development
if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run(debug=True)
