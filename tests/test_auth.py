"""Unit tests for per-form authentication and the admin API key check."""

from types import SimpleNamespace

import pytest

from formroute.core.auth import (
    Credentials,
    authenticate,
    parse_api_keys,
    validate_admin_api_key,
    verify_admin_api_key,
)
from formroute.core.errors import AuthDeniedError
from formroute.schemas.forms import AuthPolicy


class TestParseAPIKeys:
    """Test API key parsing utility function."""

    def test_parse_multiple_keys(self) -> None:
        assert parse_api_keys("key1,key2,key3") == {"key1", "key2", "key3"}

    def test_parse_keys_with_whitespace(self) -> None:
        assert parse_api_keys("key1 , key2  ,  key3") == {"key1", "key2", "key3"}

    def test_parse_none_returns_empty_set(self) -> None:
        assert parse_api_keys(None) == set()

    def test_parse_whitespace_only_returns_empty_set(self) -> None:
        assert parse_api_keys("   ,  ,  ") == set()


class TestAuthenticate:
    """Per-form gate: API key first, then origin allowlist."""

    def test_open_form_allows_anonymous_caller(self) -> None:
        result = authenticate(Credentials(), AuthPolicy())
        assert result.allowed is True

    def test_missing_key_is_401(self) -> None:
        result = authenticate(Credentials(), AuthPolicy(api_key="k1"))
        assert result.allowed is False
        assert result.status == 401
        assert result.reason == "API key required"

    def test_wrong_key_is_403(self) -> None:
        result = authenticate(Credentials(api_key="nope"), AuthPolicy(api_key="k1"))
        assert result.status == 403
        assert result.reason == "Invalid API key"

    def test_correct_key_passes(self) -> None:
        assert authenticate(Credentials(api_key="k1"), AuthPolicy(api_key="k1")).allowed is True

    @pytest.mark.parametrize("blank", ["", "   "])
    def test_blank_key_counts_as_unset(self, blank: str) -> None:
        policy = AuthPolicy(api_key=blank)

        assert policy.api_key is None
        assert authenticate(Credentials(), policy).allowed is True
        assert authenticate(Credentials(api_key="anything"), policy).allowed is True

    def test_empty_key_on_constructed_policy_passes(self) -> None:
        policy = AuthPolicy.model_construct(api_key="", allowed_domains=frozenset())
        assert authenticate(Credentials(), policy).allowed is True

    def test_missing_origin_is_403(self) -> None:
        result = authenticate(Credentials(), AuthPolicy(allowed_domains=["example.com"]))
        assert result.status == 403
        assert result.reason == "Origin header required"

    def test_disallowed_origin_is_403(self) -> None:
        result = authenticate(
            Credentials(origin="https://evil.test"),
            AuthPolicy(allowed_domains=["example.com"]),
        )
        assert result.status == 403
        assert result.reason == "Domain not allowed"

    def test_origin_hostname_must_match_exactly(self) -> None:
        policy = AuthPolicy(allowed_domains=["example.com"])

        assert authenticate(Credentials(origin="https://example.com:8443"), policy).allowed is True
        assert authenticate(Credentials(origin="https://EXAMPLE.com"), policy).allowed is True
        assert authenticate(Credentials(origin="https://example.com.evil.test"), policy).allowed is False
        assert authenticate(Credentials(origin="https://sub.example.com"), policy).allowed is False

    def test_referer_used_when_origin_absent(self) -> None:
        policy = AuthPolicy(allowed_domains=["example.com"])
        result = authenticate(Credentials(referer="https://example.com/contact"), policy)
        assert result.allowed is True

    def test_key_gate_runs_before_domain_gate(self) -> None:
        policy = AuthPolicy(api_key="k1", allowed_domains=["example.com"])
        result = authenticate(Credentials(origin="https://evil.test"), policy)
        assert result.status == 401

    def test_raise_for_denial_maps_status_to_code(self) -> None:
        result = authenticate(Credentials(), AuthPolicy(api_key="k1"))

        with pytest.raises(AuthDeniedError) as exc_info:
            result.raise_for_denial()

        assert exc_info.value.http_status == 401
        assert exc_info.value.code == "unauthorized"


class TestValidateAdminAPIKey:
    """Process-wide admin key guarding form management."""

    def test_bypassed_when_not_required(self) -> None:
        validate_admin_api_key(None, required=False, configured_keys=None)

    def test_raises_when_no_keys_configured(self) -> None:
        with pytest.raises(AuthDeniedError) as exc_info:
            validate_admin_api_key("some-key", required=True, configured_keys=None)

        assert exc_info.value.code == "admin_api_keys_not_configured"
        assert exc_info.value.http_status == 403

    def test_missing_key_is_401(self) -> None:
        with pytest.raises(AuthDeniedError) as exc_info:
            validate_admin_api_key(None, required=True, configured_keys="a,b")

        assert exc_info.value.http_status == 401

    def test_invalid_key_is_403(self) -> None:
        with pytest.raises(AuthDeniedError) as exc_info:
            validate_admin_api_key("c", required=True, configured_keys="a,b")

        assert exc_info.value.http_status == 403
        assert exc_info.value.code == "forbidden"

    def test_any_configured_key_is_accepted(self) -> None:
        validate_admin_api_key("b", required=True, configured_keys="a, b")

    @pytest.mark.asyncio
    async def test_dependency_reads_settings_from_app_state(self) -> None:
        app_settings = SimpleNamespace(admin_api_key_required=True, admin_api_keys="secret")
        request = SimpleNamespace(
            app=SimpleNamespace(state=SimpleNamespace(settings=SimpleNamespace(app=app_settings)))
        )

        await verify_admin_api_key(request, x_api_key="secret")

        with pytest.raises(AuthDeniedError):
            await verify_admin_api_key(request, x_api_key="wrong")
