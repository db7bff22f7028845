"""
Rate limiter tests
"""
import pytest

from models.rate_limit import RateLimitCounter
from services import rate_limiter
from utils.errors import RateLimitedError

NOW = 1_700_000_400  # aligned to 60s and 600s windows


class TestFixedWindow:

    def test_allows_up_to_limit(self, app):
        for _ in range(3):
            rate_limiter.check('test', 'k', 3, 60, now=NOW)

        with pytest.raises(RateLimitedError) as exc:
            rate_limiter.check('test', 'k', 3, 60, now=NOW + 10)
        assert exc.value.retry_after == 50

    def test_keys_and_scopes_are_independent(self, app):
        rate_limiter.check('test', 'a', 1, 60, now=NOW)
        rate_limiter.check('test', 'b', 1, 60, now=NOW)
        rate_limiter.check('other', 'a', 1, 60, now=NOW)

        with pytest.raises(RateLimitedError):
            rate_limiter.check('test', 'a', 1, 60, now=NOW)

    def test_next_window_starts_fresh(self, app):
        rate_limiter.check('test', 'k', 1, 60, now=NOW)
        with pytest.raises(RateLimitedError):
            rate_limiter.check('test', 'k', 1, 60, now=NOW + 59)

        rate_limiter.check('test', 'k', 1, 60, now=NOW + 60)

    def test_rejected_hits_do_not_grow_the_counter(self, app):
        rate_limiter.check('test', 'k', 2, 60, now=NOW)
        rate_limiter.check('test', 'k', 2, 60, now=NOW)
        for _ in range(3):
            with pytest.raises(RateLimitedError):
                rate_limiter.check('test', 'k', 2, 60, now=NOW)

        assert RateLimitCounter.query.filter_by(scope='test', key='k').one().count == 2

    def test_purge_expired(self, app):
        rate_limiter.check('test', 'old', 5, 60, now=NOW)
        rate_limiter.check('test', 'new', 5, 60, now=NOW + 120)

        assert rate_limiter.purge_expired(now=NOW + 120) == 1
        assert [c.key for c in RateLimitCounter.query.all()] == ['new']


class TestConfiguredLimits:

    def test_check_configured_uses_settings(self, app):
        app.config['RATE_LIMITS'] = {**app.config['RATE_LIMITS'], 'otp-send': (2, 86400)}
        rate_limiter.check_configured('otp-send', '+14155550123')
        rate_limiter.check_configured('otp-send', '+14155550123')

        with pytest.raises(RateLimitedError):
            rate_limiter.check_configured('otp-send', '+14155550123')

    def test_route_returns_429_with_retry_after(self, client, app, active_coupon):
        """Scan starts are limited per client IP"""
        app.config['RATE_LIMITS'] = {**app.config['RATE_LIMITS'], 'scan-start': (2, 600)}
        for _ in range(2):
            response = client.post('/api/public-scan/start', json={'couponCode': 'PUBLIC_SCAN_001'})
            assert response.status_code == 200

        response = client.post('/api/public-scan/start', json={'couponCode': 'PUBLIC_SCAN_001'})
        data = response.get_json()
        assert response.status_code == 429
        assert data['success'] is False
        assert data['code'] == 'RATE_LIMIT_EXCEEDED'
        assert int(response.headers['Retry-After']) > 0
