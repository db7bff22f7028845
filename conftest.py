"""
Shared pytest fixtures

Each test gets a fresh in-memory SQLite database through TestingConfig.
OTP delivery is captured in ``sms_outbox`` / ``email_outbox`` instead of
hitting a provider.
"""
import os

# app.py builds a module-level app on import; make it use TestingConfig.
os.environ['FLASK_ENV'] = 'testing'

import itertools
from datetime import datetime, timedelta

import pytest
from flask_jwt_extended import create_access_token

from app import create_app
from config.settings import TestingConfig
from extensions import db as _db
from models.coupon import Coupon
from models.tenant import Tenant
from models.user import User, ROLE_SUPER_ADMIN, ROLE_TENANT_ADMIN
from models.verification_app import VerificationApp
from utils.api_keys import generate_api_key, hash_api_key, key_prefix


@pytest.fixture
def app():
    """Application with a fresh schema"""
    app = create_app(TestingConfig)
    with app.app_context():
        _db.create_all()
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application"""
    with app.test_client() as client:
        yield client


@pytest.fixture
def db(app):
    return _db


@pytest.fixture(autouse=True)
def sms_outbox(monkeypatch):
    """Captured SMS OTPs as (phone, otp) tuples"""
    sent = []

    def fake_dispatch(*, phone, otp):
        sent.append((phone, otp))
        return True, None

    monkeypatch.setattr('services.otp.dispatch_sms', fake_dispatch)
    return sent


@pytest.fixture(autouse=True)
def email_outbox(monkeypatch):
    """Captured email OTPs as (email, otp) tuples"""
    sent = []

    def fake_send(*, to_email, otp, ttl_minutes=5):
        sent.append((to_email, otp))
        return True, None

    monkeypatch.setattr('services.otp.send_otp_email', fake_send)
    return sent


@pytest.fixture
def tenant(db):
    tenant = Tenant(name='Acme Rewards', slug='acme', contact_email='ops@acme.test')
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def other_tenant(db):
    tenant = Tenant(name='Globex', slug='globex')
    db.session.add(tenant)
    db.session.commit()
    return tenant


@pytest.fixture
def make_coupon(db, tenant):
    """Factory for coupons in any status"""
    counter = itertools.count(1)

    def _make(code=None, points=200, status='active', expiry_date=None,
              owner=None, reference=None, prefix='CP', verification_app_id=None):
        n = next(counter)
        coupon = Coupon(
            tenant_id=(owner or tenant).id,
            code=code or f'TEST-{n:04d}',
            reference=reference or f'{prefix}-{n:05d}',
            status=status,
            points=points,
            expiry_date=expiry_date,
            verification_app_id=verification_app_id,
        )
        db.session.add(coupon)
        db.session.commit()
        return coupon

    return _make


@pytest.fixture
def active_coupon(make_coupon):
    return make_coupon(code='PUBLIC_SCAN_001', points=200, status='active',
                       expiry_date=datetime.now() + timedelta(days=30))


@pytest.fixture
def admin_user(db, tenant):
    user = User(email='admin@acme.test', full_name='Acme Admin', role=ROLE_TENANT_ADMIN, tenant_id=tenant.id)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin_headers(admin_user):
    """Get authentication headers for a tenant admin"""
    token = create_access_token(identity=str(admin_user.id), additional_claims=admin_user.token_claims())
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def super_admin_headers(db):
    user = User(email='root@mscan.test', full_name='Platform Admin', role=ROLE_SUPER_ADMIN)
    db.session.add(user)
    db.session.commit()
    token = create_access_token(identity=str(user.id), additional_claims=user.token_claims())
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture
def partner(db, tenant):
    """A verification app and its plain API key"""
    api_key = generate_api_key()
    app_obj = VerificationApp(
        tenant_id=tenant.id,
        app_code='partner-one',
        name='Partner One',
        api_key_hash=hash_api_key(api_key),
        key_prefix=key_prefix(api_key),
    )
    db.session.add(app_obj)
    db.session.commit()
    return app_obj, api_key


@pytest.fixture
def partner_headers(partner):
    return {'Authorization': f'Bearer {partner[1]}'}
