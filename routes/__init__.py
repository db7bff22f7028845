"""
API Routes package
"""
from .auth import auth_bp
from .coupons import coupons_bp
from .public_scan import public_scan_bp
from .mobile import mobile_bp
from .partner_api import partner_bp

__all__ = [
    'auth_bp',
    'coupons_bp',
    'public_scan_bp',
    'mobile_bp',
    'partner_bp'
]


def register_blueprints(app):
    """Register all API blueprints"""
    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(coupons_bp, url_prefix='/api/rewards/coupons')
    app.register_blueprint(public_scan_bp, url_prefix='/api/public-scan')
    app.register_blueprint(mobile_bp, url_prefix='/api/mobile/v1')
    app.register_blueprint(partner_bp, url_prefix='/api/app/<app_code>')

    return app
