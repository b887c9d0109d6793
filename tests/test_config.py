import datetime as dt

from engmetrics_api.config import DateRange, Settings


def test_settings_defaults_and_overrides():
    s = Settings(GITHUB_CLIENT_ID=None, CORS_ORIGINS="http://a, http://b,http://a", APP_ENV="production")
    assert s.origin_list == ["http://a", "http://b"]
    assert s.secure_cookies is True
    assert s.github_redirect_uri == "http://localhost:5173/"
    assert s.max_repositories == 10


def test_default_date_range_is_thirty_days():
    now = dt.datetime(2024, 3, 1, tzinfo=dt.timezone.utc)
    window = DateRange.default(now)
    assert window.until == now
    assert window.since == dt.datetime(2024, 1, 31, tzinfo=dt.timezone.utc)
