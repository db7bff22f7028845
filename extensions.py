"""
Flask extensions initialization
"""
import logging

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_jwt_extended import JWTManager
from flask_cors import CORS
from flask_migrate import Migrate

logger = logging.getLogger(__name__)

# Initialize extensions
db = SQLAlchemy()
jwt = JWTManager()
cors = CORS()
migrate = Migrate()


def _jwt_error(message, code):
    return jsonify({
        'success': False,
        'message': message,
        'code': code
    }), 401


def init_extensions(app):
    """Initialize all Flask extensions"""
    db.init_app(app)
    jwt.init_app(app)
    cors.init_app(app, resources={r"/api/*": {"origins": app.config.get('CORS_ORIGINS', '*')}})
    migrate.init_app(app, db)

    @jwt.token_in_blocklist_loader
    def token_in_blocklist_callback(jwt_header, jwt_payload):
        from models.user import TokenBlocklist
        return TokenBlocklist.is_revoked(jwt_payload.get('jti'))

    # JWT error handlers
    @jwt.expired_token_loader
    def expired_token_callback(jwt_header, jwt_payload):
        logger.info('JWT expired for sub=%s', jwt_payload.get('sub'))
        return _jwt_error('Token has expired. Please login again.', 'TOKEN_EXPIRED')

    @jwt.invalid_token_loader
    def invalid_token_callback(error):
        logger.info('JWT invalid: %s', error)
        return _jwt_error('Invalid token. Please login again.', 'INVALID_TOKEN')

    @jwt.unauthorized_loader
    def missing_token_callback(error):
        return _jwt_error('Authorization token is missing. Please login.', 'MISSING_TOKEN')

    @jwt.revoked_token_loader
    def revoked_token_callback(jwt_header, jwt_payload):
        logger.info('JWT revoked: jti=%s', jwt_payload.get('jti'))
        return _jwt_error('Token has been revoked. Please login again.', 'TOKEN_REVOKED')

    return app
