"""Unit tests for CredentialProvider (token cache, request formats, failures)."""

import json
import threading
import time
from urllib.parse import parse_qs

import httpx
import pytest

from process_tester.credential_provider import CredentialProvider
from process_tester.process_types import CredentialError

from tests.helpers import AUTH_URL


def provider_with(handler, clock, **kwargs):
    return CredentialProvider(
        auth_url=kwargs.pop("auth_url", AUTH_URL),
        client_id=kwargs.pop("client_id", "test-client"),
        client_secret=kwargs.pop("client_secret", "s3cr3t-value"),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        clock=clock,
        **kwargs,
    )


class TestTokenCache:
    """Expiry-aware caching with the 60 second refresh margin."""

    def test_first_call_fetches(self, make_credentials):
        provider, calls = make_credentials(token="abc")

        assert provider.get_token() == "abc"
        assert len(calls) == 1

    def test_cached_until_refresh_margin(self, make_credentials, clock):
        provider, calls = make_credentials(expires_in=3600)
        provider.get_token()

        clock.advance(3539)
        provider.get_token()
        clock.advance(1)  # exactly 60s before expiry: still valid
        provider.get_token()

        assert len(calls) == 1

    def test_refresh_inside_margin(self, make_credentials, clock):
        provider, calls = make_credentials(expires_in=3600)
        provider.get_token()

        clock.advance(3541)
        provider.get_token()

        assert len(calls) == 2

    def test_force_refresh_always_fetches(self, make_credentials):
        provider, calls = make_credentials()
        provider.get_token()
        provider.force_refresh()
        provider.force_refresh()

        assert len(calls) == 3

    def test_default_ttl_when_expires_in_missing(self, make_credentials):
        provider, _ = make_credentials(expires_in=None)
        provider.get_token()

        assert provider.seconds_until_expiry() == 3600

    def test_zero_expires_in_is_not_replaced_by_default(self, make_credentials):
        provider, calls = make_credentials(expires_in=0)
        provider.get_token()

        assert provider.seconds_until_expiry() == 0

        provider.get_token()

        assert len(calls) == 2

    def test_cached_token_is_replaced_wholesale(self, make_credentials, clock):
        provider, _ = make_credentials(expires_in=120)
        provider.get_token()
        first = provider.cached_token()

        clock.advance(61)
        provider.get_token()
        second = provider.cached_token()

        assert first is not second
        assert second.expires_at == clock.now + 120

    def test_seconds_until_expiry_without_token(self, make_credentials):
        provider, _ = make_credentials()
        assert provider.seconds_until_expiry() == 0

    def test_concurrent_callers_share_one_fetch(self, clock):
        calls = []

        def handler(request):
            calls.append(request)
            time.sleep(0.05)
            return httpx.Response(200, json={"access_token": "shared", "expires_in": 3600})

        provider = provider_with(handler, clock)
        barrier = threading.Barrier(8)
        tokens = []

        def worker():
            barrier.wait()
            tokens.append(provider.get_token())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert tokens == ["shared"] * 8


class TestTokenRequest:
    """Outbound token request formats."""

    def test_form_body(self, make_credentials):
        provider, calls = make_credentials(body_format="form")
        provider.get_token()

        request = calls[0]
        assert request.method == "POST"
        assert str(request.url) == AUTH_URL
        assert request.headers["content-type"].startswith("application/x-www-form-urlencoded")
        assert parse_qs(request.content.decode()) == {
            "grant_type": ["client_credentials"],
            "client_id": ["test-client"],
            "client_secret": ["s3cr3t-value"],
        }

    def test_json_body(self, make_credentials):
        provider, calls = make_credentials(body_format="json")
        provider.get_token()

        assert json.loads(calls[0].content) == {"client_id": "test-client", "client_secret": "s3cr3t-value"}

    def test_auth_headers(self, make_credentials):
        provider, _ = make_credentials(token="tok-1")

        assert provider.auth_headers() == {
            "Authorization": "Bearer tok-1",
            "Content-Type": "application/json",
        }


class TestTokenFailures:
    """Failures surface as CredentialError, never retried."""

    def test_missing_client_id(self, make_credentials):
        provider, calls = make_credentials(client_id=None)

        with pytest.raises(CredentialError, match="Client ID"):
            provider.get_token()
        assert calls == []

    def test_missing_client_secret(self, make_credentials):
        provider, calls = make_credentials(client_secret="")

        with pytest.raises(CredentialError, match="Client secret"):
            provider.get_token()
        assert calls == []

    def test_missing_auth_url(self, clock):
        provider = provider_with(lambda r: httpx.Response(200), clock, auth_url="")

        with pytest.raises(CredentialError, match="Auth URL"):
            provider.get_token()

    def test_non_success_status(self, make_credentials):
        provider, calls = make_credentials(status=401)

        with pytest.raises(CredentialError, match="HTTP 401"):
            provider.get_token()
        assert len(calls) == 1

    def test_missing_access_token(self, clock):
        provider = provider_with(lambda r: httpx.Response(200, json={"token_type": "Bearer"}), clock)

        with pytest.raises(CredentialError, match="No access_token"):
            provider.get_token()

    def test_invalid_json(self, clock):
        provider = provider_with(lambda r: httpx.Response(200, text="<html>"), clock)

        with pytest.raises(CredentialError, match="not valid JSON"):
            provider.get_token()

    def test_transport_error(self, clock):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = provider_with(handler, clock)

        with pytest.raises(CredentialError, match="Cannot obtain"):
            provider.get_token()

    def test_failure_keeps_no_cache(self, clock):
        responses = iter([
            httpx.Response(500),
            httpx.Response(200, json={"access_token": "late", "expires_in": 60}),
        ])
        provider = provider_with(lambda r: next(responses), clock)

        with pytest.raises(CredentialError):
            provider.get_token()
        assert provider.cached_token() is None
        assert provider.get_token() == "late"
