"""
Coupon administration routes - create, print, activate and deactivate coupons
"""
from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt_identity, jwt_required

from models.coupon import COUPON_STATUSES, Coupon, CouponBatch
from models.verification_app import VerificationApp
from services import coupon_ledger
from utils.activity_logger import log_activity
from utils.errors import NotFoundError, ValidationError
from utils.rbac import current_tenant_id, require_admin
from utils.validators import get_json_body, pagination_args, parse_datetime, positive_int, require_fields

coupons_bp = Blueprint('coupons', __name__)


def _admin_id():
    try:
        return int(get_jwt_identity())
    except (TypeError, ValueError):
        return None


def _coupon_ids(data):
    raw = data.get('coupon_ids')
    if not isinstance(raw, list) or not raw:
        raise ValidationError('coupon_ids must be a non-empty list')
    return [positive_int(v, 'coupon_ids') for v in raw]


def _audit(action, tenant_id, entity_id=None, **details):
    log_activity(
        action=action,
        user_id=_admin_id(),
        tenant_id=tenant_id,
        entity_type='coupon',
        entity_id=entity_id,
        details=details or None,
    )


@coupons_bp.route('', methods=['POST'])
@jwt_required()
@require_admin
def create_coupons():
    """
    Create a batch of draft coupons

    Request body:
    {
        "quantity": 100,
        "points": 50,
        "discount_value": 10.0 (optional),
        "expiry_date": "2026-12-31T23:59:59" (optional),
        "description": "string" (optional),
        "reference_prefix": "CP" (optional),
        "name": "string" (optional),
        "verification_app_id": 1 (optional)
    }
    """
    tenant_id = current_tenant_id()
    data = get_json_body()

    quantity = positive_int(data.get('quantity', 1), 'quantity')
    try:
        points = int(data.get('points', 0))
    except (TypeError, ValueError):
        raise ValidationError('points must be an integer')

    discount_value = data.get('discount_value')
    if discount_value not in (None, ''):
        try:
            discount_value = float(discount_value)
        except (TypeError, ValueError):
            raise ValidationError('discount_value must be a number')
    else:
        discount_value = None

    app_id = data.get('verification_app_id')
    if app_id not in (None, ''):
        app_id = positive_int(app_id, 'verification_app_id')
        if not VerificationApp.query.filter_by(id=app_id, tenant_id=tenant_id).first():
            raise NotFoundError('Verification app')
    else:
        app_id = None

    batch = coupon_ledger.create_batch(
        tenant_id,
        quantity=quantity,
        points=points,
        discount_value=discount_value,
        expiry_date=parse_datetime(data.get('expiry_date'), 'expiry_date'),
        description=(data.get('description') or None),
        reference_prefix=data.get('reference_prefix'),
        name=data.get('name'),
        verification_app_id=app_id,
        created_by=_admin_id(),
    )
    coupons = batch.coupons.order_by(Coupon.reference).all()
    _audit('coupons_created', tenant_id, batch_id=batch.id, quantity=quantity, points=points)

    return jsonify({
        'success': True,
        'message': f'{quantity} coupons created',
        'data': {
            'batch': batch.to_dict(),
            'coupons': [c.to_dict() for c in coupons]
        }
    }), 201


@coupons_bp.route('', methods=['GET'])
@jwt_required()
@require_admin
def list_coupons():
    """List coupons with optional status / batch filters"""
    tenant_id = current_tenant_id()
    page, per_page = pagination_args()

    query = Coupon.query.filter_by(tenant_id=tenant_id)
    status = (request.args.get('status') or '').strip().lower()
    if status:
        if status not in COUPON_STATUSES:
            raise ValidationError('Invalid status filter')
        query = query.filter(Coupon.status == status)
    batch_id = request.args.get('batch_id', type=int)
    if batch_id:
        query = query.filter(Coupon.batch_id == batch_id)
    search = (request.args.get('search') or '').strip()
    if search:
        like = f'%{search.upper()}%'
        query = query.filter(Coupon.code.like(like) | Coupon.reference.like(like))

    pagination = query.order_by(Coupon.reference).paginate(
        page=page, per_page=per_page, error_out=False
    )
    return jsonify({
        'success': True,
        'data': {
            'coupons': [c.to_dict() for c in pagination.items],
            'total': pagination.total,
            'pages': pagination.pages,
            'current_page': page
        }
    }), 200


@coupons_bp.route('/<int:coupon_id>', methods=['GET'])
@jwt_required()
@require_admin
def get_coupon(coupon_id):
    coupon = coupon_ledger.get_coupon(current_tenant_id(), coupon_id)
    return jsonify({'success': True, 'data': coupon.to_dict()}), 200


@coupons_bp.route('/<int:coupon_id>/print', methods=['PATCH'])
@jwt_required()
@require_admin
def print_coupon(coupon_id):
    """Mark one coupon printed (reprints only bump printed_count)"""
    tenant_id = current_tenant_id()
    result = coupon_ledger.print_coupons(tenant_id, [coupon_id])
    coupon = coupon_ledger.get_coupon(tenant_id, coupon_id)
    _audit('coupon_printed', tenant_id, coupon_id, **result)
    return jsonify({
        'success': True,
        'message': 'Coupon marked as printed',
        'data': coupon.to_dict()
    }), 200


@coupons_bp.route('/bulk-print', methods=['POST'])
@jwt_required()
@require_admin
def bulk_print():
    """
    Mark several coupons printed

    Request body:
    {
        "coupon_ids": [1, 2, 3]
    }
    """
    tenant_id = current_tenant_id()
    result = coupon_ledger.print_coupons(tenant_id, _coupon_ids(get_json_body()))
    _audit('coupons_printed', tenant_id, **result)
    return jsonify({
        'success': True,
        'message': f"{result['printed'] + result['reprinted']} coupons marked as printed",
        'data': result
    }), 200


@coupons_bp.route('/activate-range', methods=['POST'])
@jwt_required()
@require_admin
def activate_range():
    """
    Activate every coupon between two references (inclusive)

    Request body:
    {
        "from_reference": "CP-00001",
        "to_reference": "CP-00100",
        "activation_note": "string" (optional)
    }
    """
    tenant_id = current_tenant_id()
    data = get_json_body()
    require_fields(data, ('from_reference', 'to_reference'))

    count = coupon_ledger.activate_range(
        tenant_id,
        data.get('from_reference'),
        data.get('to_reference'),
        data.get('activation_note'),
    )
    _audit(
        'coupons_activated', tenant_id,
        from_reference=data.get('from_reference'),
        to_reference=data.get('to_reference'),
        count=count,
    )
    return jsonify({
        'success': True,
        'message': f'{count} coupons activated',
        'data': {'activated': count}
    }), 200


@coupons_bp.route('/bulk-activate', methods=['POST'])
@jwt_required()
@require_admin
def bulk_activate():
    """
    Activate an explicit list of coupons

    Request body:
    {
        "coupon_ids": [1, 2, 3],
        "activation_note": "string" (optional)
    }
    """
    tenant_id = current_tenant_id()
    data = get_json_body()
    count = coupon_ledger.activate_many(tenant_id, _coupon_ids(data), data.get('activation_note'))
    _audit('coupons_activated', tenant_id, count=count)
    return jsonify({
        'success': True,
        'message': f'{count} coupons activated',
        'data': {'activated': count}
    }), 200


@coupons_bp.route('/activate-batch', methods=['POST'])
@jwt_required()
@require_admin
def activate_batch():
    """
    Activate every coupon of a batch

    Request body:
    {
        "batch_id": 1,
        "activation_note": "string" (optional)
    }
    """
    tenant_id = current_tenant_id()
    data = get_json_body()
    batch_id = positive_int(data.get('batch_id'), 'batch_id')
    count = coupon_ledger.activate_batch(tenant_id, batch_id, data.get('activation_note'))
    _audit('coupons_activated', tenant_id, batch_id=batch_id, count=count)
    return jsonify({
        'success': True,
        'message': f'{count} coupons activated',
        'data': {'activated': count, 'batch_id': batch_id}
    }), 200


@coupons_bp.route('/batches', methods=['GET'])
@jwt_required()
@require_admin
def list_batches():
    tenant_id = current_tenant_id()
    batches = (
        CouponBatch.query
        .filter_by(tenant_id=tenant_id)
        .order_by(CouponBatch.created_at.desc())
        .all()
    )
    return jsonify({'success': True, 'data': [b.to_dict() for b in batches]}), 200


@coupons_bp.route('/<int:coupon_id>/deactivate', methods=['POST'])
@jwt_required()
@require_admin
def deactivate_coupon(coupon_id):
    """
    Deactivate an active coupon

    Request body:
    {
        "reason": "string"
    }
    """
    tenant_id = current_tenant_id()
    coupon = coupon_ledger.deactivate(tenant_id, coupon_id, get_json_body().get('reason'))
    _audit('coupon_deactivated', tenant_id, coupon_id, reason=coupon.deactivation_reason)
    return jsonify({
        'success': True,
        'message': 'Coupon deactivated',
        'data': coupon.to_dict()
    }), 200


@coupons_bp.route('/<int:coupon_id>/reactivate', methods=['POST'])
@jwt_required()
@require_admin
def reactivate_coupon(coupon_id):
    tenant_id = current_tenant_id()
    coupon = coupon_ledger.reactivate(tenant_id, coupon_id)
    _audit('coupon_reactivated', tenant_id, coupon_id)
    return jsonify({
        'success': True,
        'message': 'Coupon reactivated',
        'data': coupon.to_dict()
    }), 200


@coupons_bp.route('/deactivate-range', methods=['POST'])
@jwt_required()
@require_admin
def deactivate_range():
    """
    Deactivate the active coupons between two references

    Request body:
    {
        "from_reference": "CP-00001",
        "to_reference": "CP-00100",
        "deactivation_reason": "string"
    }
    """
    tenant_id = current_tenant_id()
    data = get_json_body()
    require_fields(data, ('from_reference', 'to_reference'))

    result = coupon_ledger.deactivate_range(
        tenant_id,
        data.get('from_reference'),
        data.get('to_reference'),
        data.get('deactivation_reason'),
    )
    _audit('coupons_deactivated', tenant_id, **result)
    return jsonify({
        'success': True,
        'message': f"{result['deactivated']} coupons deactivated",
        'data': result
    }), 200
