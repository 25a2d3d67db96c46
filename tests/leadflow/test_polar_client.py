"""Tests for the Polar REST client with a mocked requests session."""

from unittest.mock import MagicMock, patch

import pytest
import requests

from leadflow.config import config
from leadflow.integrations.polar import (
    PolarAuthError,
    PolarClient,
    PolarError,
    PolarRateLimitError,
)


def make_response(status_code=200, payload=None, text=""):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if payload is not None else b""
    response.json.return_value = payload
    response.text = text
    return response


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def client(http):
    polar = PolarClient(access_token="polar_test", server="sandbox", timeout=5)
    polar._session = http
    return polar


class TestSetup:
    """Token and server selection."""

    def test_missing_token(self):
        """Test that a client cannot be built without a token."""
        with patch.object(config, "POLAR_ACCESS_TOKEN", None):
            with pytest.raises(PolarAuthError):
                PolarClient()

    def test_unknown_server(self):
        """Test ValueError for an unknown Polar environment."""
        with pytest.raises(ValueError, match="Unknown Polar server"):
            PolarClient(access_token="t", server="staging")

    def test_session_headers(self):
        """Test that the lazily built session carries the bearer token."""
        polar = PolarClient(access_token="polar_test", server="production")
        session = polar._get_session()
        assert polar.base_url == "https://api.polar.sh"
        assert session.headers["Authorization"] == "Bearer polar_test"
        polar.close()
        assert polar._session is None


class TestRequests:
    """Status code mapping and endpoints."""

    def test_ingest_events(self, client, http):
        """Test the ingestion request body and URL."""
        http.request.return_value = make_response(payload={"inserted": 1, "duplicates": 0})
        events = [{"name": "api_call", "customer_id": "cus_1", "external_id": "e1"}]

        assert client.ingest_events(events) == {"inserted": 1, "duplicates": 0}

        args, kwargs = http.request.call_args
        assert args == ("POST", "https://sandbox-api.polar.sh/v1/events/ingest")
        assert kwargs["json"] == {"events": events}
        assert kwargs["timeout"] == 5

    @pytest.mark.parametrize(
        "status_code,error_cls",
        [(401, PolarAuthError), (403, PolarAuthError), (429, PolarRateLimitError), (500, PolarError)],
    )
    def test_error_statuses(self, client, http, status_code, error_cls):
        """Test that error responses raise the matching exception."""
        http.request.return_value = make_response(status_code=status_code, text="nope")

        with pytest.raises(error_cls) as excinfo:
            client.ingest_events([])

        assert excinfo.value.status_code == status_code

    def test_transport_error(self, client, http):
        """Test that connection errors become PolarError without a status."""
        http.request.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(PolarError) as excinfo:
            client.ingest_events([])

        assert excinfo.value.status_code is None

    def test_customer_meters_follow_pagination(self, client, http):
        """Test that every page of customer meters is collected."""
        http.request.side_effect = [
            make_response(payload={"items": [{"id": "cm_1"}], "pagination": {"max_page": 2}}),
            make_response(payload={"items": [{"id": "cm_2"}], "pagination": {"max_page": 2}}),
        ]

        meters = client.list_customer_meters("cus_1")

        assert [m["id"] for m in meters] == ["cm_1", "cm_2"]
        pages = [c.kwargs["params"]["page"] for c in http.request.call_args_list]
        assert pages == [1, 2]

    def test_find_customer_by_email(self, client, http):
        """Test exact, case-insensitive email matching."""
        http.request.return_value = make_response(payload={
            "items": [
                {"id": "cus_x", "email": "ada.other@example.com"},
                {"id": "cus_1", "email": "Ada@Example.com"},
            ]
        })

        assert client.find_customer_by_email("ada@example.com")["id"] == "cus_1"

    def test_find_customer_none(self, client, http):
        """Test None when no customer matches."""
        http.request.return_value = make_response(payload={"items": []})
        assert client.find_customer_by_email("ada@example.com") is None

    def test_create_customer_body(self, client, http):
        """Test that optional fields are only sent when given."""
        http.request.return_value = make_response(payload={"id": "cus_new"})

        client.create_customer("ada@example.com", name="Ada", external_id="user_1")

        assert http.request.call_args.kwargs["json"] == {
            "email": "ada@example.com",
            "name": "Ada",
            "external_id": "user_1",
        }
