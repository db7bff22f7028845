"""
MScan Rewards - Flask Backend Application
Main entry point
"""
import logging
import os

import click
from flask import Flask, jsonify, request
from sqlalchemy.exc import OperationalError, TimeoutError as PoolTimeoutError
from werkzeug.middleware.proxy_fix import ProxyFix

# Import extensions and routes
from extensions import init_extensions, db
from config.settings import get_config
from routes import register_blueprints
from utils.errors import AppError, RateLimitedError, ServiceUnavailableError

logger = logging.getLogger(__name__)


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s',
    )
    logging.getLogger().setLevel(level)


def create_app(config_class=None):
    """Application factory pattern"""
    app = Flask(__name__)

    # Disable strict slashes to prevent 308 redirects
    app.url_map.strict_slashes = False

    # Load configuration
    if config_class is None:
        config_class = get_config()

    app.config.from_object(config_class)
    _configure_logging(app)

    hops = int(app.config.get('PROXY_FIX_X_FOR') or 0)
    if hops > 0:
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops)

    # Initialize extensions
    init_extensions(app)

    # Register blueprints
    register_blueprints(app)

    # Health check endpoint
    @app.route('/api/health', methods=['GET'])
    def health_check():
        return jsonify({
            'success': True,
            'message': 'MScan Rewards API is running',
            'version': app.config.get('APP_VERSION', '1.0.0')
        }), 200

    @app.route('/api', methods=['GET'])
    def api_index():
        return jsonify({
            'name': app.config.get('APP_NAME', 'MScan Rewards API'),
            'version': app.config.get('APP_VERSION', '1.0.0'),
            'description': 'Coupon and reward campaign API',
            'endpoints': {
                'auth': '/api/auth',
                'coupons': '/api/rewards/coupons',
                'public_scan': '/api/public-scan',
                'mobile': '/api/mobile/v1',
                'partner': '/api/app/<app_code>'
            }
        }), 200

    # Error handlers
    @app.errorhandler(AppError)
    def handle_app_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RateLimitedError) and error.retry_after:
            response.headers['Retry-After'] = str(error.retry_after)
        return response

    @app.errorhandler(OperationalError)
    @app.errorhandler(PoolTimeoutError)
    def handle_database_unavailable(error):
        db.session.rollback()
        logger.error('Database unavailable on %s %s: %s', request.method, request.path, error)
        return handle_app_error(ServiceUnavailableError())

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'message': 'Resource not found', 'code': 'NOT_FOUND'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        allowed = getattr(error, 'valid_methods', None)
        allowed_str = f" Allowed: {', '.join(sorted(set(allowed)))}" if allowed else ''
        msg = f"Method not allowed ({request.method} {request.path}).{allowed_str}".strip()
        return jsonify({'success': False, 'message': msg, 'code': 'METHOD_NOT_ALLOWED'}), 405

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify({
            'success': False,
            'message': 'Internal server error',
            'code': 'INTERNAL_ERROR'
        }), 500

    _register_commands(app)

    return app


def _register_commands(app):
    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        db.create_all()
        print('✓ Tables created')

    @app.cli.command('create-verification-app')
    @click.option('--tenant-slug', required=True)
    @click.option('--app-code', required=True)
    @click.option('--name', default=None)
    def create_verification_app_command(tenant_slug, app_code, name):
        """Register a partner app and print its API key (shown once)."""
        from models.tenant import Tenant
        from models.verification_app import VerificationApp
        from utils.api_keys import generate_api_key, hash_api_key, key_prefix

        tenant = Tenant.query.filter_by(slug=tenant_slug).first()
        if tenant is None:
            raise click.ClickException(f'Unknown tenant: {tenant_slug}')

        api_key = generate_api_key()
        db.session.add(VerificationApp(
            tenant_id=tenant.id,
            app_code=app_code,
            name=name or app_code,
            api_key_hash=hash_api_key(api_key),
            key_prefix=key_prefix(api_key),
        ))
        db.session.commit()
        print(f'✓ Verification app {app_code} created')
        print(f'  API key: {api_key}')


# Create application instance
app = create_app()


if __name__ == '__main__':
    # Development server
    port = int(os.getenv('PORT', 5000))
    debug = os.getenv('DEBUG', 'False').lower() == 'true'

    print(f"""
    ╔══════════════════════════════════════════════════════════╗
    ║              MScan Rewards - Backend Server              ║
    ╠══════════════════════════════════════════════════════════╣
    ║  Local: http://localhost:{port:<32}║
    ║  Debug mode: {str(debug):<44}║
    ║                                                          ║
    ║  Endpoints:                                              ║
    ║  • POST /api/public-scan/start        - Start a scan     ║
    ║  • POST /api/public-scan/<id>/mobile  - Send OTP         ║
    ║  • POST /api/public-scan/<id>/verify-otp - Redeem        ║
    ║  • POST /api/auth/request-otp         - Admin login OTP  ║
    ║  • /api/rewards/coupons               - Coupon admin     ║
    ║  • /api/mobile/v1                     - Mobile app       ║
    ║  • /api/app/<app_code>                - Partner API      ║
    ╚══════════════════════════════════════════════════════════╝
    """)

    app.run(host='0.0.0.0', port=port, debug=debug, use_reloader=False)
