"""
Authentication routes - email OTP login, token refresh and logout for dashboard users
"""
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    jwt_required,
    get_jwt_identity,
    get_jwt
)

from extensions import db
from models.otp import PURPOSE_ADMIN_LOGIN
from models.user import TokenBlocklist, User
from services import otp
from services.rate_limiter import check_configured
from utils.activity_logger import log_activity
from utils.errors import ForbiddenError, InvalidOtpError, NotFoundError
from utils.otp_email import mask_email
from utils.rbac import require_admin
from utils.validators import get_json_body, normalize_email, normalize_otp

auth_bp = Blueprint('auth', __name__)


def _load_user(user_id):
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if not user:
        raise NotFoundError('User')
    if not user.is_active:
        raise ForbiddenError('Account is deactivated')
    return user


@auth_bp.route('/request-otp', methods=['POST'])
def request_otp():
    """
    Email a login OTP to a dashboard user

    Request body:
    {
        "email": "admin@example.com"
    }
    """
    email = normalize_email(get_json_body().get('email'))
    check_configured('login-otp', email)

    data = {'email': mask_email(email), 'expires_in': current_app.config['OTP_TTL_SECONDS']}
    user = User.query.filter_by(email=email).first()

    # Same answer for unknown accounts so account emails cannot be enumerated.
    if user and user.is_active:
        _record, code = otp.issue(
            email,
            scope=otp.scope_for_admin_login(email),
            purpose=PURPOSE_ADMIN_LOGIN,
            tenant_id=user.tenant_id,
        )
        db.session.commit()
        delivered = otp.deliver(email, code, channel=otp.CHANNEL_EMAIL)
        if not delivered and current_app.config.get('OTP_DEV_ECHO'):
            data['dev_otp'] = code

    return jsonify({
        'success': True,
        'message': 'If the account exists, an OTP has been sent to the email address',
        'data': data
    }), 200


@auth_bp.route('/verify-otp', methods=['POST'])
def verify_otp():
    """
    Exchange an email OTP for access and refresh tokens

    Request body:
    {
        "email": "admin@example.com",
        "otp": "123456"
    }
    """
    data = get_json_body()
    email = normalize_email(data.get('email'))
    code = normalize_otp(data.get('otp'))

    user = User.query.filter_by(email=email).first()
    if not user or not user.is_active:
        raise InvalidOtpError()

    otp.verify(email, code, scope=otp.scope_for_admin_login(email), consume=True)
    user.last_login = datetime.now()
    db.session.commit()

    access_token = create_access_token(identity=str(user.id), additional_claims=user.token_claims())
    refresh_token = create_refresh_token(identity=str(user.id))

    log_activity(action='login', user_id=user.id, tenant_id=user.tenant_id, entity_type='user', entity_id=user.id)
    return jsonify({
        'success': True,
        'message': 'Login successful',
        'data': {
            'access_token': access_token,
            'refresh_token': refresh_token,
            'user': user.to_dict()
        }
    }), 200


@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    """Refresh access token"""
    user = _load_user(get_jwt_identity())
    access_token = create_access_token(identity=str(user.id), additional_claims=user.token_claims())
    return jsonify({
        'success': True,
        'data': {
            'access_token': access_token
        }
    }), 200


@auth_bp.route('/me', methods=['GET'])
@jwt_required()
@require_admin
def get_current_user():
    """Get current authenticated user"""
    user = _load_user(get_jwt_identity())
    return jsonify({
        'success': True,
        'data': user.to_dict()
    }), 200


@auth_bp.route('/logout', methods=['POST'])
@jwt_required(verify_type=False)
def logout():
    """Revoke the presented token (access or refresh)"""
    claims = get_jwt()
    exp = claims.get('exp')
    expires_at = (
        datetime.fromtimestamp(exp, tz=timezone.utc).astimezone().replace(tzinfo=None)
        if exp else None
    )
    db.session.add(TokenBlocklist(
        jti=claims['jti'],
        token_type=claims.get('type', 'access'),
        user_identity=str(get_jwt_identity()),
        expires_at=expires_at,
    ))
    db.session.commit()

    return jsonify({
        'success': True,
        'message': 'Logout successful'
    }), 200
