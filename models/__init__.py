"""
Database models package
"""
from .tenant import Tenant
from .user import User, ActivityLog, TokenBlocklist
from .customer import Customer
from .verification_app import VerificationApp
from .coupon import Coupon, CouponBatch
from .scan import ScanSession, ScanRecord
from .otp import OtpRecord
from .credit import CreditAccount, CreditTransaction
from .rate_limit import RateLimitCounter

__all__ = [
    'Tenant',
    'User',
    'ActivityLog',
    'TokenBlocklist',
    'Customer',
    'VerificationApp',
    'Coupon',
    'CouponBatch',
    'ScanSession',
    'ScanRecord',
    'OtpRecord',
    'CreditAccount',
    'CreditTransaction',
    'RateLimitCounter'
]
