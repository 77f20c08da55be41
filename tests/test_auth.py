"""Tests for bearer-secret and origin authentication."""

from unittest.mock import patch

import pytest

from codegate.app.middleware.auth import (
    MAX_TOKEN_LENGTH,
    AuthGate,
    derive_client_id,
    get_bearer_token,
    get_source_address,
)

from conftest import ALLOWED_ORIGIN, TEST_SECRET, auth_headers


class TestBearerToken:
    def test_extracts_token(self):
        assert get_bearer_token({"Authorization": "Bearer abc"}) == "abc"

    def test_header_name_is_case_insensitive(self):
        assert get_bearer_token({"authorization": "Bearer abc"}) == "abc"

    @pytest.mark.parametrize(
        "value",
        ["", "Basic abc", "bearer abc", "Token abc", "Bearerabc"],
    )
    def test_other_schemes_are_ignored(self, value):
        assert get_bearer_token({"Authorization": value}) is None

    def test_missing_header(self):
        assert get_bearer_token({}) is None


class TestAuthGate:
    def test_valid_secret_is_accepted(self, auth_gate):
        decision = auth_gate.authenticate(auth_headers(), source_address="10.0.0.1")

        assert decision.valid is True
        assert decision.reason is None
        assert decision.client_id.startswith("client_")

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"Authorization": ""},
            {"Authorization": "Bearer "},
            {"Authorization": f"Basic {TEST_SECRET}"},
            {"Authorization": "Bearer " + "x" * (MAX_TOKEN_LENGTH + 1)},
        ],
    )
    def test_missing_or_malformed_header(self, auth_gate, headers):
        decision = auth_gate.authenticate(headers)

        assert decision.valid is False
        assert decision.reason == "missing_or_malformed"
        assert decision.client_id is None

    @pytest.mark.parametrize("origin", [None, ALLOWED_ORIGIN, "https://evil.example"])
    @pytest.mark.parametrize("referer", [None, f"{ALLOWED_ORIGIN}/macros/s/x", "https://evil.example/"])
    @pytest.mark.parametrize("user_agent", [None, "GoogleAppsScript", "curl/8.0"])
    def test_wrong_secret_is_rejected_whatever_the_other_headers(
        self, auth_gate, origin, referer, user_agent
    ):
        headers = {"Authorization": "Bearer wrong-secret"}
        if origin:
            headers["Origin"] = origin
        if referer:
            headers["Referer"] = referer
        if user_agent:
            headers["User-Agent"] = user_agent

        decision = auth_gate.authenticate(headers)

        assert decision.valid is False
        assert decision.reason == "invalid_key"

    def test_empty_configured_secret_rejects_everything(self):
        gate = AuthGate(api_secret="", allowed_origins=["*"])

        assert gate.authenticate({"Authorization": "Bearer anything"}).reason == "invalid_key"

    def test_allowed_origin_is_accepted(self, auth_gate):
        decision = auth_gate.authenticate(auth_headers(Origin=ALLOWED_ORIGIN))

        assert decision.valid is True

    def test_disallowed_origin_is_rejected(self, auth_gate):
        decision = auth_gate.authenticate(auth_headers(Origin="https://evil.example"))

        assert decision.valid is False
        assert decision.reason == "origin_not_allowed"

    def test_origin_takes_precedence_over_referer(self, auth_gate):
        headers = auth_headers(
            Origin="https://evil.example",
            Referer=f"{ALLOWED_ORIGIN}/macros/s/abc/exec",
        )

        assert auth_gate.authenticate(headers).reason == "origin_not_allowed"

    def test_referer_origin_is_checked_when_no_origin(self, auth_gate):
        allowed = auth_gate.authenticate(auth_headers(Referer=f"{ALLOWED_ORIGIN}/macros/s/abc/exec"))
        denied = auth_gate.authenticate(auth_headers(Referer="https://evil.example/page"))
        garbage = auth_gate.authenticate(auth_headers(Referer="not a url"))

        assert allowed.valid is True
        assert denied.reason == "origin_not_allowed"
        assert garbage.reason == "origin_not_allowed"

    @pytest.mark.parametrize(
        "referer",
        [
            "https://SCRIPT.google.com:443/macros/s/abc/exec",
            "HTTPS://script.google.com/macros",
            "https://user@script.google.com/macros",
        ],
    )
    def test_equivalent_referer_forms_are_accepted(self, auth_gate, referer):
        assert auth_gate.authenticate(auth_headers(Referer=referer)).valid is True

    @pytest.mark.parametrize(
        "referer",
        [
            "https://script.google.com:8443/macros",
            "http://script.google.com/macros",
            "https://script.google.com:99999/macros",
        ],
    )
    def test_other_port_or_scheme_referer_is_rejected(self, auth_gate, referer):
        assert auth_gate.authenticate(auth_headers(Referer=referer)).reason == "origin_not_allowed"

    def test_origin_header_is_normalised(self, auth_gate):
        headers = auth_headers(Origin="https://Script.Google.com:443")

        assert auth_gate.authenticate(headers).valid is True

    def test_configured_origins_are_normalised(self):
        gate = AuthGate(api_secret=TEST_SECRET, allowed_origins=["https://Example.com:443/"])

        assert gate.authenticate(auth_headers(Origin="https://example.com")).valid is True

    def test_wildcard_allows_any_origin(self):
        gate = AuthGate(api_secret=TEST_SECRET, allowed_origins=["*"])

        assert gate.authenticate(auth_headers(Origin="https://anywhere.example")).valid is True

    def test_no_origin_headers_is_accepted(self, auth_gate):
        assert auth_gate.authenticate(auth_headers()).valid is True

    def test_missing_caller_marker_only_warns(self, auth_gate):
        headers = {"Authorization": f"Bearer {TEST_SECRET}", "User-Agent": "curl/8.0"}

        with patch("codegate.app.middleware.auth.logger") as mock_logger:
            decision = auth_gate.authenticate(headers)

        assert decision.valid is True
        mock_logger.warning.assert_called_once()

    def test_caller_marker_in_requested_with_header(self, auth_gate):
        headers = {
            "Authorization": f"Bearer {TEST_SECRET}",
            "User-Agent": "curl/8.0",
            "X-Requested-With": "GoogleAppsScript",
        }

        with patch("codegate.app.middleware.auth.logger") as mock_logger:
            decision = auth_gate.authenticate(headers)

        assert decision.valid is True
        mock_logger.warning.assert_not_called()


class TestClientId:
    def test_same_inputs_give_same_id(self):
        assert derive_client_id("1.2.3.4", "ua", "s1") == derive_client_id("1.2.3.4", "ua", "s1")

    def test_inputs_change_the_id(self):
        base = derive_client_id("1.2.3.4", "ua", "s1")

        assert derive_client_id("1.2.3.5", "ua", "s1") != base
        assert derive_client_id("1.2.3.4", "ua2", "s1") != base
        assert derive_client_id("1.2.3.4", "ua", "s2") != base

    def test_id_format(self):
        client_id = derive_client_id("1.2.3.4", "ua", "")

        assert client_id.startswith("client_")
        assert client_id[len("client_"):].isalnum()

    def test_gate_uses_forwarded_for_first_hop(self, auth_gate):
        via_proxy = auth_gate.authenticate(
            auth_headers(**{"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}),
            source_address="10.0.0.1",
        )
        direct = auth_gate.authenticate(auth_headers(), source_address="203.0.113.7")

        assert via_proxy.client_id == direct.client_id

    def test_session_header_separates_clients(self, auth_gate):
        first = auth_gate.authenticate(auth_headers(**{"X-Session-ID": "a"}), "10.0.0.1")
        second = auth_gate.authenticate(auth_headers(**{"X-Session-ID": "b"}), "10.0.0.1")

        assert first.client_id != second.client_id


class TestSourceAddress:
    def test_forwarded_for_wins(self):
        assert get_source_address({"X-Forwarded-For": "1.1.1.1, 2.2.2.2"}, "3.3.3.3") == "1.1.1.1"

    def test_falls_back_to_peer(self):
        assert get_source_address({}, "3.3.3.3") == "3.3.3.3"

    def test_unknown_without_any_address(self):
        assert get_source_address({}) == "unknown"
