"""Tests for the Xero OAuth token lifecycle."""

from datetime import timedelta

import pytest

from prepaidly.exceptions import (
    ConfigurationError,
    ConnectionDisconnectedError,
    InvalidGrantError,
    InvalidStateError,
    NotFoundError,
    TokenRefreshError,
    XeroApiError,
)
from prepaidly.models import ConnectionStatus, User, XeroConnection
from prepaidly.services.xero_oauth_service import classify_refresh_failure
from helpers import http_error


class TestAuthorizationUrl:
    """Tests for get_authorization_url."""

    def test_stores_state_for_user(self, oauth_service, state_cache, fake_xero, user):
        url = oauth_service.get_authorization_url(user.id)

        (state,) = fake_xero.calls_to("get_authorization_url")[0]
        assert state in url
        assert state_cache.get_user_id(state) == user.id
        assert state_cache.validate_state(state, user.id) is True

    def test_missing_client_id(self, oauth_service, fake_xero):
        fake_xero.client_id = ""

        with pytest.raises(ConfigurationError):
            oauth_service.get_authorization_url(1)

    def test_missing_redirect_uri(self, oauth_service, fake_xero):
        fake_xero.redirect_uri = ""

        with pytest.raises(ConfigurationError):
            oauth_service.get_authorization_url(1)


class TestExchangeCodeForTokens:
    """Tests for the authorization code exchange."""

    def test_creates_connected_connection(self, oauth_service, state_cache, encryption, clock, user, db_session):
        state = state_cache.store_state(user.id)

        connection = oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert connection.tenant_id == "tenant-1"
        assert connection.tenant_name == "Demo Company"
        assert connection.connection_status == ConnectionStatus.CONNECTED
        assert connection.disconnect_reason is None
        assert connection.xero_connection_id == "conn-1"
        assert connection.expires_at == clock() + timedelta(seconds=1800)
        assert connection.last_refreshed_at == clock()
        assert db_session.query(XeroConnection).count() == 1

    def test_tokens_stored_encrypted(self, oauth_service, state_cache, encryption, user):
        state = state_cache.store_state(user.id)

        connection = oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert connection.access_token != "access-1"
        assert connection.refresh_token != "refresh-1"
        assert encryption.decrypt(connection.access_token) == "access-1"
        assert encryption.decrypt(connection.refresh_token) == "refresh-1"

    def test_invalid_state_makes_no_http_call(self, oauth_service, fake_xero, user):
        with pytest.raises(InvalidStateError):
            oauth_service.exchange_code_for_tokens("auth-code", "forged-state", user.id)

        assert fake_xero.calls == []

    def test_state_for_other_user_rejected(self, oauth_service, state_cache, fake_xero, user):
        state = state_cache.store_state(user.id + 1)

        with pytest.raises(InvalidStateError):
            oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert fake_xero.calls == []

    def test_user_taken_from_state(self, oauth_service, state_cache, db_session):
        """Xero's redirect carries no user id; the state identifies the user."""
        second = User(email="second@prepaidly.io")
        db_session.add(second)
        db_session.commit()
        state = state_cache.store_state(second.id)

        connection = oauth_service.exchange_code_for_tokens("auth-code", state)

        assert connection.user_id == second.id
        assert state_cache.get_user_id(state) is None

    def test_unknown_state_without_user_rejected(self, oauth_service, fake_xero):
        with pytest.raises(InvalidStateError):
            oauth_service.exchange_code_for_tokens("auth-code", "forged-state")

        assert fake_xero.calls == []

    def test_state_cannot_be_replayed(self, oauth_service, state_cache, user):
        state = state_cache.store_state(user.id)
        oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        with pytest.raises(InvalidStateError):
            oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

    def test_reconnect_reactivates_disconnected_connection(
        self, oauth_service, state_cache, make_connection, user, db_session
    ):
        make_connection(status=ConnectionStatus.DISCONNECTED, refresh_token="dead-refresh")
        state = state_cache.store_state(user.id)

        connection = oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert connection.connection_status == ConnectionStatus.CONNECTED
        assert connection.disconnect_reason is None
        assert db_session.query(XeroConnection).count() == 1

    def test_one_connection_per_tenant(self, oauth_service, state_cache, fake_xero, user, db_session):
        fake_xero.tenants = [
            {"id": "conn-1", "tenantId": "tenant-1", "tenantName": "First"},
            {"id": "conn-2", "tenantId": "tenant-2", "tenantName": "Second"},
        ]
        state = state_cache.store_state(user.id)

        connection = oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert connection.tenant_id == "tenant-1"
        tenants = sorted(c.tenant_id for c in db_session.query(XeroConnection).all())
        assert tenants == ["tenant-1", "tenant-2"]

    def test_no_tenants_is_an_error(self, oauth_service, state_cache, fake_xero, user, db_session):
        fake_xero.tenants = []
        state = state_cache.store_state(user.id)

        with pytest.raises(XeroApiError):
            oauth_service.exchange_code_for_tokens("auth-code", state, user.id)

        assert db_session.query(XeroConnection).count() == 0

    def test_unknown_user(self, oauth_service, state_cache):
        state = state_cache.store_state(999)

        with pytest.raises(NotFoundError):
            oauth_service.exchange_code_for_tokens("auth-code", state, 999)

    def test_token_endpoint_failure_propagates(self, oauth_service, state_cache, fake_xero, user):
        fake_xero.queue("get_access_token", http_error(400, '{"error":"invalid_grant"}'))
        state = state_cache.store_state(user.id)

        with pytest.raises(XeroApiError) as exc_info:
            oauth_service.exchange_code_for_tokens("bad-code", state, user.id)

        assert exc_info.value.upstream_status == 400


class TestGetValidAccessToken:
    """Tests for proactive refresh before expiry."""

    def test_fresh_token_returned_without_refresh(self, oauth_service, make_connection, fake_xero):
        connection = make_connection(expires_in_minutes=30)

        assert oauth_service.get_valid_access_token(connection) == "access-1"
        assert fake_xero.calls_to("refresh_token") == []

    def test_token_expiring_within_buffer_refreshed_once(self, oauth_service, make_connection, fake_xero):
        connection = make_connection(expires_in_minutes=4)

        assert oauth_service.get_valid_access_token(connection) == "access-r1"
        assert len(fake_xero.calls_to("refresh_token")) == 1

    def test_expired_token_refreshed_once(self, oauth_service, make_connection, fake_xero):
        connection = make_connection(expires_in_minutes=-60)

        assert oauth_service.get_valid_access_token(connection) == "access-r1"
        assert len(fake_xero.calls_to("refresh_token")) == 1

    def test_disconnected_connection_rejected(self, oauth_service, make_connection, fake_xero):
        connection = make_connection(status=ConnectionStatus.DISCONNECTED, expires_in_minutes=-60)

        with pytest.raises(ConnectionDisconnectedError):
            oauth_service.get_valid_access_token(connection)

        assert fake_xero.calls == []


class TestRefreshTokens:
    """Tests for refresh, rotation and failure classification."""

    def test_rotates_tokens(self, oauth_service, make_connection, encryption, clock):
        connection = make_connection(expires_in_minutes=-10)

        oauth_service.refresh_tokens(connection)

        assert encryption.decrypt(connection.access_token) == "access-r1"
        assert encryption.decrypt(connection.refresh_token) == "refresh-r1"
        assert connection.expires_at == clock() + timedelta(seconds=1800)
        assert connection.last_refreshed_at == clock()

    def test_keeps_refresh_token_when_none_returned(self, oauth_service, make_connection, fake_xero, encryption):
        fake_xero.queue("refresh_token", {"access_token": "access-new", "expires_in": 1800})
        connection = make_connection()

        oauth_service.refresh_tokens(connection)

        assert encryption.decrypt(connection.access_token) == "access-new"
        assert encryption.decrypt(connection.refresh_token) == "refresh-1"

    def test_invalid_grant_disconnects(self, oauth_service, make_connection, fake_xero, db_session):
        fake_xero.queue("refresh_token", http_error(400, '{"error":"invalid_grant"}'))
        connection = make_connection()

        with pytest.raises(InvalidGrantError) as exc_info:
            oauth_service.refresh_tokens(connection)

        assert exc_info.value.reason == "invalid_grant"
        stored = db_session.get(XeroConnection, connection.id)
        assert stored.connection_status == ConnectionStatus.DISCONNECTED
        assert stored.disconnect_reason == "invalid_grant"

    def test_unauthorized_disconnects(self, oauth_service, make_connection, fake_xero):
        fake_xero.queue("refresh_token", http_error(401))
        connection = make_connection()

        with pytest.raises(InvalidGrantError) as exc_info:
            oauth_service.refresh_tokens(connection)

        assert exc_info.value.reason == "token_refresh_failed_401"
        assert connection.connection_status == ConnectionStatus.DISCONNECTED

    def test_server_error_is_transient(self, oauth_service, make_connection, fake_xero, encryption):
        fake_xero.queue("refresh_token", http_error(503, "Service Unavailable"))
        connection = make_connection()

        with pytest.raises(TokenRefreshError):
            oauth_service.refresh_tokens(connection)

        assert connection.connection_status == ConnectionStatus.CONNECTED
        assert encryption.decrypt(connection.refresh_token) == "refresh-1"

    def test_network_error_is_transient(self, oauth_service, make_connection, fake_xero):
        fake_xero.queue("refresh_token", XeroApiError("Failed to refresh token: request timed out"))
        connection = make_connection()

        with pytest.raises(TokenRefreshError):
            oauth_service.refresh_tokens(connection)

        assert connection.connection_status == ConnectionStatus.CONNECTED

    def test_undecryptable_refresh_token_disconnects(self, oauth_service, make_connection, fake_xero):
        connection = make_connection()
        connection.refresh_token = "garbage"

        with pytest.raises(InvalidGrantError) as exc_info:
            oauth_service.refresh_tokens(connection)

        assert exc_info.value.reason == "token_decryption_failed"
        assert connection.connection_status == ConnectionStatus.DISCONNECTED
        assert fake_xero.calls_to("refresh_token") == []

    def test_rotation_reaches_connections_on_same_grant(self, oauth_service, make_connection, encryption):
        first = make_connection(tenant_id="tenant-1", refresh_token="shared-refresh")
        second = make_connection(tenant_id="tenant-2", refresh_token="shared-refresh")
        unrelated = make_connection(tenant_id="tenant-3", refresh_token="other-refresh")

        oauth_service.refresh_tokens(first)

        assert encryption.decrypt(second.refresh_token) == "refresh-r1"
        assert encryption.decrypt(unrelated.refresh_token) == "other-refresh"


class TestClassifyRefreshFailure:
    """Tests for terminal versus transient refresh errors."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (http_error(400, '{"error":"invalid_grant"}'), "invalid_grant"),
            (http_error(400, '{"error":"unauthorized_client"}'), "unauthorized_client"),
            (http_error(400, '{"error":"invalid_request"}'), "token_refresh_failed_400"),
            (http_error(401), "token_refresh_failed_401"),
            (http_error(429, "Rate limit exceeded"), None),
            (http_error(500), None),
            (XeroApiError("connection reset"), None),
        ],
    )
    def test_classification(self, error, expected):
        assert classify_refresh_failure(error) == expected


class TestConnectionManagement:
    """Tests for status, verification and disconnect."""

    def test_status_reports_each_connection(self, oauth_service, make_connection, fake_xero, user):
        make_connection(tenant_id="tenant-1")
        make_connection(tenant_id="tenant-2", refresh_token="refresh-2", expires_in_minutes=-5)
        fake_xero.refresh_by_token["refresh-2"] = http_error(400, '{"error":"invalid_grant"}')

        statuses = {s.tenant_id: s for s in oauth_service.get_connection_status(user.id)}

        assert statuses["tenant-1"].connected is True
        assert statuses["tenant-1"].message == "Connected"
        assert statuses["tenant-2"].connected is False
        assert statuses["tenant-2"].connection_status == "DISCONNECTED"
        assert statuses["tenant-2"].disconnect_reason == "invalid_grant"

    def test_verify_connection(self, oauth_service, make_connection, fake_xero):
        connection = make_connection()
        assert oauth_service.verify_connection(connection) is True

        fake_xero.tenants = []
        assert oauth_service.verify_connection(connection) is False

    def test_verify_never_raises(self, oauth_service, make_connection, fake_xero):
        connection = make_connection()
        fake_xero.queue("get_connections", http_error(500))

        assert oauth_service.verify_connection(connection) is False

    def test_get_tenant_info_returns_none_on_failure(self, oauth_service, fake_xero):
        fake_xero.queue("get_organisation", http_error(403))

        assert oauth_service.get_tenant_info("token", "tenant-1") is None

    def test_disconnect_revokes_and_deletes(self, oauth_service, make_connection, fake_xero, user, db_session):
        make_connection()

        oauth_service.disconnect(user.id, "tenant-1")

        assert fake_xero.calls_to("delete_connection") == [("access-1", "conn-tenant-1")]
        assert db_session.query(XeroConnection).count() == 0

    def test_disconnect_deletes_even_if_revoke_fails(self, oauth_service, make_connection, fake_xero, user, db_session):
        make_connection()
        fake_xero.queue("delete_connection", http_error(404))

        oauth_service.disconnect(user.id, "tenant-1")

        assert db_session.query(XeroConnection).count() == 0

    def test_disconnect_unknown_tenant(self, oauth_service, user):
        with pytest.raises(NotFoundError):
            oauth_service.disconnect(user.id, "missing")
