"""
Public scan routes - unauthenticated coupon scan with OTP verification

Flow:
    POST /api/public-scan/start                    {couponCode}
    POST /api/public-scan/<sessionId>/mobile       {mobileNumber}
    POST /api/public-scan/<sessionId>/verify-otp   {otp}
"""
from flask import Blueprint, current_app, jsonify, request

from services import redemption, scan_sessions
from services.rate_limiter import client_ip, rate_limited
from utils.expiry import is_expired, seconds_left
from utils.tenant import resolve_tenant
from utils.validators import get_json_body, mask_mobile, normalize_coupon_code, normalize_otp

public_scan_bp = Blueprint('public_scan', __name__)


def _session_key(session_id, **_):
    return session_id


@public_scan_bp.route('/start', methods=['POST'])
@rate_limited('public-ip')
@rate_limited('scan-start')
def start_session():
    """
    Start a scan session for a coupon

    Request body:
    {
        "couponCode": "string"
    }
    """
    data = get_json_body()
    code = normalize_coupon_code(data.get('couponCode'))
    tenant = resolve_tenant()

    session = scan_sessions.start(
        code,
        tenant_id=tenant.id if tenant else None,
        ip_address=client_ip(),
        user_agent=request.user_agent.string if request.user_agent else None,
    )
    coupon = scan_sessions.coupon_for(session)

    return jsonify({
        'success': True,
        'message': 'Scan session started. Please enter your mobile number.',
        'data': {
            'sessionId': session.session_id,
            'couponDetails': coupon.summary(),
            'expiresIn': current_app.config['SCAN_SESSION_TTL_SECONDS'],
        }
    }), 200


@public_scan_bp.route('/<session_id>', methods=['GET'])
@rate_limited('public-ip')
def get_session(session_id):
    """Current state of a scan session"""
    session = scan_sessions.get(session_id)
    ttl = current_app.config['SCAN_SESSION_TTL_SECONDS']
    data = session.to_dict()
    data['expired'] = is_expired(session.created_at, ttl)
    data['expiresIn'] = seconds_left(session.created_at, ttl)
    data['mobileNumber'] = mask_mobile(session.mobile_number) if session.mobile_number else None
    return jsonify({'success': True, 'data': data}), 200


@public_scan_bp.route('/<session_id>/mobile', methods=['POST'])
@rate_limited('public-ip')
def submit_mobile(session_id):
    """
    Submit a mobile number and send the OTP (also used to resend)

    Request body:
    {
        "mobileNumber": "+14155550123"
    }
    """
    data = get_json_body()
    result = scan_sessions.submit_mobile(session_id, data.get('mobileNumber'))
    session = result['session']

    payload = {
        'sessionId': session.session_id,
        'mobileNumber': mask_mobile(session.mobile_number),
        'otpExpiresIn': result['otp_expires_in'],
        'sessionExpiresIn': result['session_expires_in'],
    }
    if not result['delivered'] and current_app.config.get('OTP_DEV_ECHO'):
        payload['devOtp'] = result['code']

    return jsonify({
        'success': True,
        'message': 'OTP sent successfully',
        'data': payload
    }), 200


@public_scan_bp.route('/<session_id>/verify-otp', methods=['POST'])
@rate_limited('public-ip')
@rate_limited('otp-verify', key_func=_session_key)
def verify_otp(session_id):
    """
    Verify the OTP and award the coupon's points

    Request body:
    {
        "otp": "123456"
    }
    """
    data = get_json_body()
    otp_code = normalize_otp(data.get('otp'))
    result = redemption.redeem(session_id, otp_code)

    return jsonify({
        'success': True,
        'message': 'OTP verified successfully. Points awarded.',
        'data': result
    }), 200
