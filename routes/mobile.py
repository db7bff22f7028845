"""
Mobile app routes - customer OTP login and direct coupon scans
"""
from datetime import datetime

from flask import Blueprint, current_app, jsonify
from flask_jwt_extended import create_access_token, get_jwt, get_jwt_identity, jwt_required

from extensions import db
from models.otp import PURPOSE_MOBILE_LOGIN
from models.scan import ScanRecord
from services import credits, customers, otp, redemption
from services.rate_limiter import check_configured, rate_limited
from utils.activity_logger import log_activity
from utils.errors import NotFoundError
from utils.rbac import require_customer
from utils.tenant import resolve_tenant
from utils.validators import (
    get_json_body,
    mask_mobile,
    normalize_coupon_code,
    normalize_mobile,
    normalize_otp,
    pagination_args,
)

mobile_bp = Blueprint('mobile', __name__)


def _current_customer():
    claims = get_jwt() or {}
    customer = customers.find(claims.get('tenant_id'), int(get_jwt_identity()))
    if customer is None or not customer.is_active:
        raise NotFoundError('Customer')
    return customer


@mobile_bp.route('/auth/request-otp', methods=['POST'])
@rate_limited('public-ip')
def request_otp():
    """
    Send a login OTP to a customer's phone

    Request body:
    {
        "phone_e164": "+14155550123"
    }
    """
    tenant = resolve_tenant(required=True)
    phone = normalize_mobile(get_json_body().get('phone_e164'))
    check_configured('otp-send', phone)

    _record, code = otp.issue(
        phone,
        scope=otp.scope_for_mobile_login(tenant.id, phone),
        purpose=PURPOSE_MOBILE_LOGIN,
        tenant_id=tenant.id,
    )
    db.session.commit()
    delivered = otp.deliver(phone, code, channel=otp.CHANNEL_SMS)

    data = {
        'phone_e164': mask_mobile(phone),
        'expires_in': current_app.config['OTP_TTL_SECONDS'],
    }
    if not delivered and current_app.config.get('OTP_DEV_ECHO'):
        data['dev_otp'] = code

    log_activity(
        action='otp_sent' if delivered else 'otp_failed',
        tenant_id=tenant.id,
        entity_type='mobile_login',
        details={'mobile': mask_mobile(phone)},
    )
    return jsonify({
        'success': True,
        'message': 'OTP sent successfully',
        'data': data
    }), 200


@mobile_bp.route('/auth/verify-otp', methods=['POST'])
@rate_limited('public-ip')
def verify_otp():
    """
    Verify a login OTP and issue a customer token

    Request body:
    {
        "phone_e164": "+14155550123",
        "otp": "123456"
    }
    """
    tenant = resolve_tenant(required=True)
    data = get_json_body()
    phone = normalize_mobile(data.get('phone_e164'))
    code = normalize_otp(data.get('otp'))
    check_configured('otp-verify', f'{tenant.id}:{phone}')

    otp.verify(phone, code, scope=otp.scope_for_mobile_login(tenant.id, phone), consume=True)
    customer = customers.get_or_create(tenant.id, phone)
    customer.last_login_at = datetime.now()
    db.session.commit()

    access_token = create_access_token(
        identity=str(customer.id),
        additional_claims={
            'actor': 'customer',
            'tenant_id': tenant.id,
            'phone_e164': customer.phone_e164,
        },
        expires_delta=current_app.config['MOBILE_ACCESS_TOKEN_EXPIRES'],
    )
    return jsonify({
        'success': True,
        'message': 'Login successful',
        'data': {
            'access_token': access_token,
            'customer': customer.to_dict(),
        }
    }), 200


@mobile_bp.route('/scan', methods=['POST'])
@jwt_required()
@require_customer
@rate_limited('public-ip')
def scan_coupon():
    """
    Redeem a coupon for the logged-in customer

    Request body:
    {
        "coupon_code": "ABCD-EFGH"
    }
    """
    customer = _current_customer()
    code = normalize_coupon_code(get_json_body().get('coupon_code'))

    result = redemption.redeem_direct(
        customer.tenant_id,
        code,
        customer.phone_e164,
        channel=redemption.CHANNEL_MOBILE,
        customer_id=customer.id,
    )
    result['userId'] = customer.id
    return jsonify({
        'success': True,
        'message': 'Coupon scanned successfully. Points awarded.',
        'data': result
    }), 200


@mobile_bp.route('/scan/history', methods=['GET'])
@jwt_required()
@require_customer
def scan_history():
    """Scans of the logged-in customer, newest first"""
    customer = _current_customer()
    page, per_page = pagination_args()

    pagination = (
        ScanRecord.query
        .filter_by(tenant_id=customer.tenant_id, customer_id=customer.id)
        .order_by(ScanRecord.created_at.desc(), ScanRecord.id.desc())
        .paginate(page=page, per_page=per_page, error_out=False)
    )
    return jsonify({
        'success': True,
        'data': {
            'scans': [s.to_dict() for s in pagination.items],
            'balance': credits.balance_of(customer.tenant_id, customer.phone_e164)['balance'],
            'total': pagination.total,
            'pages': pagination.pages,
            'current_page': page
        }
    }), 200
