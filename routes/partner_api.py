"""
Partner API routes - external verification apps authenticated by API key

All routes live under /api/app/<app_code> and require
``Authorization: Bearer <api_key>``.
"""
from flask import Blueprint, g, jsonify

from extensions import db
from services import credits, redemption
from services.rate_limiter import rate_limited
from utils.activity_logger import log_activity
from utils.api_keys import require_api_key
from utils.errors import ValidationError
from utils.validators import get_json_body, normalize_coupon_code, pagination_args, positive_int

partner_bp = Blueprint('partner_api', __name__)


def _app_key(app_code, **_):
    return app_code


def _user_id(value):
    user_id = str(value or '').strip()
    if not user_id:
        raise ValidationError('user_id is required')
    if len(user_id) > 64:
        raise ValidationError('user_id must be at most 64 characters')
    return user_id


@partner_bp.route('/scans', methods=['POST'])
@require_api_key
@rate_limited('partner-api', key_func=_app_key)
def record_scan(app_code):
    """
    Redeem a coupon on behalf of a partner user

    Request body:
    {
        "user_id": "string",
        "coupon_code": "ABCD-EFGH"
    }
    """
    data = get_json_body()
    user_id = _user_id(data.get('user_id'))
    code = normalize_coupon_code(data.get('coupon_code'))
    app = g.verification_app

    result = redemption.redeem_direct(
        app.tenant_id,
        code,
        user_id,
        channel=redemption.CHANNEL_PARTNER,
        verification_app_id=app.id,
    )
    return jsonify({
        'success': True,
        'message': 'Scan recorded successfully',
        'data': result
    }), 201


@partner_bp.route('/users/<user_id>/credits', methods=['GET'])
@require_api_key
@rate_limited('partner-api', key_func=_app_key)
def get_credits(app_code, user_id):
    """Credit balance of a partner user"""
    return jsonify({
        'success': True,
        'data': credits.balance_of(g.verification_app.tenant_id, _user_id(user_id))
    }), 200


@partner_bp.route('/users/<user_id>/credit-transactions', methods=['GET'])
@require_api_key
@rate_limited('partner-api', key_func=_app_key)
def get_credit_transactions(app_code, user_id):
    """Credit history of a partner user, newest first"""
    page, per_page = pagination_args()
    pagination = credits.history(g.verification_app.tenant_id, _user_id(user_id), page, per_page)
    return jsonify({
        'success': True,
        'data': {
            'transactions': [t.to_dict() for t in pagination.items],
            'total': pagination.total,
            'pages': pagination.pages,
            'current_page': page
        }
    }), 200


@partner_bp.route('/redeem', methods=['POST'])
@require_api_key
@rate_limited('partner-api', key_func=_app_key)
def redeem_credits(app_code):
    """
    Spend a partner user's credits

    Request body:
    {
        "user_id": "string",
        "points": 100,
        "description": "string" (optional)
    }
    """
    data = get_json_body()
    user_id = _user_id(data.get('user_id'))
    points = positive_int(data.get('points'), 'points')
    description = (str(data.get('description') or '').strip() or None)
    app = g.verification_app

    try:
        entry = credits.debit(
            app.tenant_id,
            user_id,
            points,
            description=description[:255] if description else None,
            verification_app_id=app.id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    log_activity(
        action='credits_redeemed',
        tenant_id=app.tenant_id,
        entity_type='credit_account',
        entity_id=user_id,
        details={'points': points, 'app_code': app.app_code},
    )
    return jsonify({
        'success': True,
        'message': 'Credits redeemed successfully',
        'data': {
            'user_id': user_id,
            'points_redeemed': points,
            'balance': entry.balance_after,
            'transaction': entry.to_dict(),
        }
    }), 200
