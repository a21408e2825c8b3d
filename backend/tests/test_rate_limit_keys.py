"""Tests for sync rate limiting: owner/IP keys and trusted proxies."""

from types import SimpleNamespace

import pytest
from app.auth import create_access_token
from app.config import get_settings
from app.rate_limit import get_client_ip, get_rate_limit_key, is_trusted_proxy


def _request(peer, forwarded_for=None, token=None):
    headers = {}
    if forwarded_for:
        headers["x-forwarded-for"] = forwarded_for
    if token:
        headers["authorization"] = f"Bearer {token}"
    return SimpleNamespace(client=SimpleNamespace(host=peer), headers=headers)


@pytest.fixture
def settings_env(monkeypatch):
    def apply(**env):
        for name, value in env.items():
            monkeypatch.setenv(name, value)
        get_settings.cache_clear()

    yield apply
    get_settings.cache_clear()


class TestTrustedProxy:
    @pytest.mark.parametrize("ip", ["127.0.0.1", "10.0.1.5", "172.17.0.1", "192.168.1.100", "::1"])
    def test_private_ranges_trusted(self, ip):
        assert is_trusted_proxy(ip) is True

    @pytest.mark.parametrize("ip", ["8.8.8.8", "2001:db8::1", "not-an-ip", ""])
    def test_others_not_trusted(self, ip):
        assert is_trusted_proxy(ip) is False

    def test_configured_cidrs(self, settings_env):
        settings_env(TRUSTED_PROXY_CIDRS='["203.0.113.0/24", "bogus"]')

        assert is_trusted_proxy("203.0.113.7") is True
        assert is_trusted_proxy("10.0.0.1") is False


class TestClientIp:
    def test_untrusted_peer_cannot_spoof(self):
        assert get_client_ip(_request("8.8.8.8", "1.2.3.4")) == "8.8.8.8"

    def test_trusted_proxy_forwards(self):
        assert get_client_ip(_request("10.0.0.2", "1.2.3.4, 10.0.0.2")) == "1.2.3.4"

    def test_trusted_proxy_without_header(self):
        assert get_client_ip(_request("10.0.0.2")) == "10.0.0.2"


class TestRateLimitKey:
    def test_authenticated_request_keyed_by_owner(self):
        token = create_access_token("usr_TEST_ONLY_A", get_settings())

        assert get_rate_limit_key(_request("8.8.8.8", token=token)) == "owner:usr_TEST_ONLY_A"

    def test_same_owner_on_two_networks_shares_key(self):
        token = create_access_token("usr_TEST_ONLY_A", get_settings())

        home = get_rate_limit_key(_request("8.8.8.8", token=token))
        mobile = get_rate_limit_key(_request("9.9.9.9", token=token))

        assert home == mobile

    def test_invalid_token_falls_back_to_ip(self):
        assert get_rate_limit_key(_request("8.8.8.8", token="not-a-jwt")) == "ip:8.8.8.8"

    def test_anonymous_request_keyed_by_ip(self):
        assert get_rate_limit_key(_request("8.8.8.8")) == "ip:8.8.8.8"


class TestSyncLimit:
    def test_exceeding_limit_returns_fail_envelope(self, client, settings_env):
        settings_env(SYNC_RATE_LIMIT="2/minute")
        token = create_access_token("usr_TEST_ONLY_A", get_settings())
        headers = {"Authorization": f"Bearer {token}"}

        for _ in range(2):
            assert client.post("/sync", json={"queue": []}, headers=headers).status_code == 200
        response = client.post("/sync", json={"queue": []}, headers=headers)

        assert response.status_code == 429
        assert response.json()["status"] == "fail"
        assert "Rate limit exceeded" in response.json()["message"]

    def test_owners_have_separate_budgets(self, client, settings_env):
        settings_env(SYNC_RATE_LIMIT="1/minute")
        settings = get_settings()
        first = {"Authorization": f"Bearer {create_access_token('usr_TEST_ONLY_A', settings)}"}
        second = {"Authorization": f"Bearer {create_access_token('usr_TEST_ONLY_B', settings)}"}

        assert client.post("/sync", json={"queue": []}, headers=first).status_code == 200
        assert client.post("/sync", json={"queue": []}, headers=first).status_code == 429
        assert client.post("/sync", json={"queue": []}, headers=second).status_code == 200
