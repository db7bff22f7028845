"""
Domain services: coupon ledger, scan sessions, OTP, redemption, credits and rate limiting
"""
