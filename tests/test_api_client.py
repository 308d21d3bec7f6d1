"""Unit tests for the portal API client."""

from datetime import date, timedelta
from unittest import mock

import pytest
import requests

from masjid_display import __version__
from masjid_display.api_client import (
    CONTENT_ENDPOINT,
    EVENTS_ENDPOINT,
    HEARTBEAT_ENDPOINT,
    PRAYER_TIMES_ENDPOINT,
    SYNC_STATUS_ENDPOINT,
    FetchResult,
    RemoteResourceClient,
)
from masjid_display.common.credentials import DeviceCredentials
from masjid_display.sync.resources import ResourceKind

BASE_URL = "https://portal.example.org"


def make_response(status_code=200, body=None, invalid_json=False):
    response = mock.MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("No JSON")
    else:
        response.json.return_value = body
    return response


@pytest.fixture
def credentials(tmp_path):
    creds = DeviceCredentials(str(tmp_path / "credentials.json"))
    creds.set_credentials("key-123", "screen-42")
    return creds


@pytest.fixture
def session():
    return mock.MagicMock(spec=requests.Session)


@pytest.fixture
def api(credentials, session):
    return RemoteResourceClient(BASE_URL + "/", credentials, session=session)


def called_url(session, index=-1):
    return session.request.call_args_list[index][0][1]


class TestRequest:
    """Tests for the shared request path."""

    def test_auth_headers(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": {}})

        api.fetch(ResourceKind.PRAYER_STATUS)

        headers = session.request.call_args[1]["headers"]
        assert headers["Authorization"] == "Bearer key-123"
        assert headers["X-Screen-ID"] == "screen-42"
        assert called_url(session) == BASE_URL + "/api/screen/prayer-status"

    def test_envelope_unwrapped(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": {"nextPrayer": "Asr"}})

        result = api.fetch(ResourceKind.PRAYER_STATUS)

        assert result.success
        assert result.data == {"nextPrayer": "Asr"}

    def test_bare_body_returned_as_is(self, api, session):
        session.request.return_value = make_response(body=[{"id": 1}])

        result = api.fetch(ResourceKind.EVENTS)

        assert result.data == [{"id": 1}]

    def test_envelope_failure(self, api, session):
        session.request.return_value = make_response(body={"success": False, "error": "Screen not found"})

        result = api.fetch(ResourceKind.PRAYER_STATUS)

        assert not result.success
        assert result.error == "Screen not found"

    @pytest.mark.parametrize("status", [401, 429, 404, 500])
    def test_http_errors(self, api, session, status):
        session.request.return_value = make_response(status_code=status)

        result = api.fetch(ResourceKind.EVENTS)

        assert not result.success
        assert result.status_code == status

    def test_timeout(self, api, session):
        session.request.side_effect = requests.Timeout()

        result = api.fetch(ResourceKind.EVENTS)

        assert not result.success
        assert "Timeout" in result.error

    def test_connection_error(self, api, session):
        session.request.side_effect = requests.ConnectionError("refused")

        result = api.fetch(ResourceKind.EVENTS)

        assert not result.success
        assert result.status_code is None

    def test_invalid_json(self, api, session):
        session.request.return_value = make_response(invalid_json=True)

        result = api.fetch(ResourceKind.EVENTS)

        assert not result.success
        assert "Invalid JSON" in result.error


class TestFetchParameters:
    """Tests for per-resource request parameters."""

    def test_prayer_times_range(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": []})

        api.fetch(ResourceKind.PRAYER_TIMES)

        params = session.request.call_args[1]["params"]
        today = date.today()
        assert called_url(session) == BASE_URL + PRAYER_TIMES_ENDPOINT
        assert params["startDate"] == today.isoformat()
        assert params["endDate"] == (today + timedelta(days=7)).isoformat()

    def test_events_count(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": []})

        api.fetch(ResourceKind.EVENTS)

        assert called_url(session) == BASE_URL + EVENTS_ENDPOINT
        assert session.request.call_args[1]["params"] == {"count": 10}

    def test_heartbeat_is_not_fetchable(self, api):
        with pytest.raises(ValueError):
            api.fetch(ResourceKind.HEARTBEAT)


class TestContentChangeDetection:
    """Tests for skipping unchanged content via the sync endpoint."""

    def test_unchanged_content_skips_download(self, api, session):
        session.request.side_effect = [
            make_response(body={"success": True, "data": {"contentUpdated": "2024-01-01T00:00:00Z"}}),
            make_response(body={"success": True, "data": {"slides": [1]}}),
            make_response(body={"success": True, "data": {"contentUpdated": "2024-01-01T00:00:00Z"}}),
        ]

        first = api.fetch(ResourceKind.CONTENT)
        api.confirm_saved(ResourceKind.CONTENT, first)
        second = api.fetch(ResourceKind.CONTENT)

        assert first.data == {"slides": [1]}
        assert first.change_stamp == "2024-01-01T00:00:00Z"
        assert second.success and second.unchanged
        assert session.request.call_count == 3
        assert called_url(session) == BASE_URL + SYNC_STATUS_ENDPOINT

    def test_unconfirmed_stamp_downloads_again(self, api, session):
        session.request.side_effect = [
            make_response(body={"success": True, "data": {"contentUpdated": "v1"}}),
            make_response(body={"success": True, "data": {"slides": [1]}}),
            make_response(body={"success": True, "data": {"contentUpdated": "v1"}}),
            make_response(body={"success": True, "data": {"slides": [1]}}),
        ]

        api.fetch(ResourceKind.CONTENT)
        retry = api.fetch(ResourceKind.CONTENT)

        assert not retry.unchanged
        assert retry.data == {"slides": [1]}
        assert called_url(session) == BASE_URL + CONTENT_ENDPOINT

    def test_confirm_ignores_other_kinds(self, api, session):
        api.confirm_saved(ResourceKind.EVENTS, FetchResult(success=True, change_stamp="v1"))
        session.request.side_effect = [
            make_response(body={"success": True, "data": {"contentUpdated": "v1"}}),
            make_response(body={"success": True, "data": {"slides": []}}),
        ]

        assert not api.fetch(ResourceKind.CONTENT).unchanged

    def test_changed_stamp_downloads(self, api, session):
        session.request.side_effect = [
            make_response(body={"success": True, "data": {"contentUpdated": "v1"}}),
            make_response(body={"success": True, "data": {"slides": [1]}}),
            make_response(body={"success": True, "data": {"contentUpdated": "v2"}}),
            make_response(body={"success": True, "data": {"slides": [2]}}),
        ]

        api.fetch(ResourceKind.CONTENT)
        result = api.fetch(ResourceKind.CONTENT)

        assert result.data == {"slides": [2]}
        assert not result.unchanged

    def test_forced_fetch_skips_stamp_check(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": {"slides": []}})

        api.fetch(ResourceKind.CONTENT, force_refresh=True)

        assert session.request.call_count == 1
        assert called_url(session) == BASE_URL + CONTENT_ENDPOINT

    def test_stamp_unavailable_downloads(self, api, session):
        session.request.side_effect = [
            make_response(status_code=404),
            make_response(body={"success": True, "data": {"slides": []}}),
        ]

        result = api.fetch(ResourceKind.CONTENT)

        assert result.success and not result.unchanged


class TestSchedule:
    """Tests for the schedule resource."""

    def test_schedule_extracted_from_content(self, api, session):
        schedule = {"id": "s1", "items": []}
        session.request.return_value = make_response(body={"success": True, "data": {"schedule": schedule}})

        result = api.fetch(ResourceKind.SCHEDULE)

        assert result.data == schedule
        assert called_url(session) == BASE_URL + CONTENT_ENDPOINT

    def test_missing_schedule_is_failure(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": {"slides": []}})

        result = api.fetch(ResourceKind.SCHEDULE)

        assert not result.success


class TestHeartbeat:
    """Tests for heartbeat submission."""

    def test_heartbeat_body(self, api, session):
        session.request.return_value = make_response(body={"success": True, "data": {"commands": []}})
        metrics = {"uptime": 60, "lastError": ""}

        result = api.submit_heartbeat("ONLINE", metrics)

        args, kwargs = session.request.call_args
        assert args[0] == "POST"
        assert args[1] == BASE_URL + HEARTBEAT_ENDPOINT
        assert kwargs["json"] == {
            "status": "ONLINE",
            "appVersion": __version__,
            "currentView": "display",
            "metrics": metrics,
        }
        assert result.data == {"commands": []}


class TestFetchResult:
    def test_constructors(self):
        assert FetchResult.ok({"a": 1}).success
        failed = FetchResult.failed("nope", 500)
        assert not failed.success
        assert failed.status_code == 500
