from unittest.mock import Mock, patch

import pytest
import requests

from leadcms_sync.config import Config
from leadcms_sync.core.client import LeadCMSClient, SyncPage
from leadcms_sync.core.errors import AuthenticationError, TransportError


def _anonymous_config():
    return Config(url="https://cms.example.com", api_key=None)


# Session handling
def test_session_is_thread_local_and_reused(mock_config):
    client = LeadCMSClient(mock_config)
    assert client.session is client.session
    assert client.session.headers["Accept"] == "application/json"


def test_has_credentials(mock_config):
    assert LeadCMSClient(mock_config).has_credentials
    assert not LeadCMSClient(_anonymous_config()).has_credentials


# Sync pages
@patch("leadcms_sync.core.client.requests.Session.get")
def test_get_sync_page_parses_payload(mock_get, mock_config, mock_http_response):
    """Items, deletions, base items and the next token are extracted."""
    mock_get.return_value = mock_http_response(
        200,
        {
            "items": [{"id": 1, "slug": "a"}, "junk"],
            "deleted": [2, 3],
            "baseItems": {"1": {"id": 1, "slug": "old"}, "9": "junk"},
        },
        headers={"x-next-sync-token": "tok-2"},
    )
    client = LeadCMSClient(mock_config)

    page = client.get_sync_page("content", "tok-1", 50, include_base=True)

    assert page.items == [{"id": 1, "slug": "a"}]
    assert page.deleted == [2, 3]
    assert page.base_items == {"1": {"id": 1, "slug": "old"}}
    assert page.next_token == "tok-2"
    assert not page.terminal

    args, kwargs = mock_get.call_args
    assert args[0] == "https://cms.example.com/api/content/sync"
    assert kwargs["params"] == {
        "filter[limit]": "50",
        "syncToken": "tok-1",
        "includeBase": "true",
    }
    assert "Authorization" not in kwargs["headers"]


@patch("leadcms_sync.core.client.requests.Session.get")
def test_get_sync_page_204_is_terminal(mock_get, mock_config, mock_http_response):
    mock_get.return_value = mock_http_response(204)
    page = LeadCMSClient(mock_config).get_sync_page("media", "", 100)
    assert page == SyncPage(terminal=True)


@patch("leadcms_sync.core.client.requests.Session.get")
def test_get_sync_page_authenticated_sends_bearer(
    mock_get, mock_config, mock_http_response
):
    mock_get.return_value = mock_http_response(200, {"items": []})
    LeadCMSClient(mock_config).get_sync_page(
        "email-templates", "", 100, authenticated=True
    )
    headers = mock_get.call_args[1]["headers"]
    assert headers == {"Authorization": "Bearer test-key"}


def test_authenticated_request_without_key_raises():
    client = LeadCMSClient(_anonymous_config())
    with pytest.raises(AuthenticationError, match="API key is required"):
        client.get_sync_page("email-templates", "", 100, authenticated=True)


@patch("leadcms_sync.core.client.requests.Session.get")
def test_get_sync_page_non_dict_payload_raises(
    mock_get, mock_config, mock_http_response
):
    mock_get.return_value = mock_http_response(200, [1, 2])
    with pytest.raises(TransportError, match="Unexpected sync payload"):
        LeadCMSClient(mock_config).get_sync_page("content", "", 100)


# Error translation
@pytest.mark.parametrize("status", [401, 403])
@patch("leadcms_sync.core.client.requests.Session.get")
def test_auth_status_raises_authentication_error(
    mock_get, status, mock_config, mock_http_response
):
    mock_get.return_value = mock_http_response(status)
    with pytest.raises(AuthenticationError) as exc_info:
        LeadCMSClient(mock_config).get_sync_page("content", "", 100)
    assert exc_info.value.status_code == status


@patch("leadcms_sync.core.client.requests.Session.get")
def test_server_error_raises_transport_error(
    mock_get, mock_config, mock_http_response
):
    response = mock_http_response(500)
    response.raise_for_status.side_effect = requests.HTTPError("500")
    mock_get.return_value = response

    with pytest.raises(TransportError) as exc_info:
        LeadCMSClient(mock_config).get_sync_page("content", "", 100)

    assert exc_info.value.status_code == 500
    assert not isinstance(exc_info.value, AuthenticationError)


@patch("leadcms_sync.core.client.requests.Session.get")
def test_timeout_raises_transport_error(mock_get, mock_config):
    mock_get.side_effect = requests.Timeout("slow")
    with pytest.raises(TransportError, match="timed out"):
        LeadCMSClient(mock_config).get_content_types()


@patch("leadcms_sync.core.client.requests.Session.get")
def test_connection_error_raises_transport_error(mock_get, mock_config):
    mock_get.side_effect = requests.ConnectionError("refused")
    with pytest.raises(TransportError, match="failed: refused"):
        LeadCMSClient(mock_config).get_content_types()


@patch("leadcms_sync.core.client.requests.Session.get")
def test_invalid_json_raises_transport_error(mock_get, mock_config):
    response = Mock(status_code=200, content=b"<html>", url="https://x/api")
    response.json.side_effect = ValueError("no json")
    mock_get.return_value = response
    with pytest.raises(TransportError, match="Invalid JSON"):
        LeadCMSClient(mock_config).get_content_types()


# Metadata endpoints
@patch("leadcms_sync.core.client.requests.Session.get")
def test_get_content_types(mock_get, mock_config, mock_http_response):
    mock_get.return_value = mock_http_response(
        200,
        [
            {"uid": "article", "format": "MDX"},
            {"uid": "component", "format": "json"},
            {"uid": "legacy"},
            {"format": "JSON"},
        ],
    )
    assert LeadCMSClient(mock_config).get_content_types() == {
        "article": "MDX",
        "component": "JSON",
        "legacy": "MDX",
    }


@patch("leadcms_sync.core.client.requests.Session.get")
def test_cms_config_404_is_empty(mock_get, mock_config, mock_http_response):
    response = mock_http_response(404)
    response.raise_for_status.side_effect = requests.HTTPError("404")
    mock_get.return_value = response
    assert LeadCMSClient(mock_config).get_cms_config() == {}


@patch("leadcms_sync.core.client.requests.Session.get")
def test_cms_config_other_error_propagates(
    mock_get, mock_config, mock_http_response
):
    response = mock_http_response(502)
    response.raise_for_status.side_effect = requests.HTTPError("502")
    mock_get.return_value = response
    with pytest.raises(TransportError):
        LeadCMSClient(mock_config).get_cms_config()


@patch("leadcms_sync.core.client.requests.Session.get")
def test_email_groups_skipped_without_key(mock_get):
    assert LeadCMSClient(_anonymous_config()).get_email_groups() == []
    mock_get.assert_not_called()


@patch("leadcms_sync.core.client.requests.Session.get")
def test_email_groups_with_key(mock_get, mock_config, mock_http_response):
    mock_get.return_value = mock_http_response(
        200, [{"id": 1, "name": "Newsletters"}]
    )
    assert LeadCMSClient(mock_config).get_email_groups() == [
        {"id": 1, "name": "Newsletters"}
    ]


@patch("leadcms_sync.core.client.requests.Session.get")
def test_export_settings(mock_get, mock_config, mock_http_response):
    mock_get.return_value = mock_http_response(
        200, [{"key": "AI.SiteProfile.Topic", "value": "CRM"}]
    )
    settings = LeadCMSClient(mock_config).export_settings()
    assert settings == [{"key": "AI.SiteProfile.Topic", "value": "CRM"}]
    assert mock_get.call_args[0][0].endswith("/api/settings/export")


# Media download
@patch("leadcms_sync.core.client.requests.Session.get")
def test_download_media_writes_file(mock_get, mock_config, tmp_path):
    response = Mock(status_code=200)
    response.raise_for_status.return_value = None
    response.iter_content.return_value = [b"\x89PNG", b"data"]
    response.__enter__ = Mock(return_value=response)
    response.__exit__ = Mock(return_value=False)
    mock_get.return_value = response
    dest = tmp_path / "blog" / "logo.png"

    assert LeadCMSClient(mock_config).download_media("api/media/blog/logo.png", dest)

    assert dest.read_bytes() == b"\x89PNGdata"
    assert mock_get.call_args[0][0] == "https://cms.example.com/api/media/blog/logo.png"
    assert list(dest.parent.glob("*.part")) == []


@patch("leadcms_sync.core.client.requests.Session.get")
def test_download_media_404_removes_stale_file(
    mock_get, mock_config, mock_http_response, tmp_path
):
    response = mock_http_response(404)
    response.raise_for_status.side_effect = requests.HTTPError("404")
    mock_get.return_value = response
    dest = tmp_path / "logo.png"
    dest.write_bytes(b"stale")

    assert not LeadCMSClient(mock_config).download_media("/api/media/logo.png", dest)
    assert not dest.exists()


@patch("leadcms_sync.core.client.requests.Session.get")
def test_download_media_interrupted_leaves_no_partial(
    mock_get, mock_config, tmp_path
):
    response = Mock(status_code=200)
    response.raise_for_status.return_value = None
    response.iter_content.side_effect = requests.ConnectionError("reset")
    response.__enter__ = Mock(return_value=response)
    response.__exit__ = Mock(return_value=False)
    mock_get.return_value = response
    dest = tmp_path / "logo.png"
    dest.write_bytes(b"previous")

    with pytest.raises(TransportError, match="Download of"):
        LeadCMSClient(mock_config).download_media("/api/media/logo.png", dest)

    assert dest.read_bytes() == b"previous"
    assert list(tmp_path.glob("*.part")) == []


# Event stream
@patch("leadcms_sync.core.client.requests.Session.get")
def test_open_event_stream(mock_get, mock_config, mock_http_response):
    mock_get.return_value = mock_http_response(200)
    LeadCMSClient(mock_config).open_event_stream()

    args, kwargs = mock_get.call_args
    assert args[0] == "https://cms.example.com/api/sse/stream"
    assert kwargs["params"]["entities"] == "Content"
    assert kwargs["stream"] is True
    assert kwargs["timeout"] == (10, 120)
    assert kwargs["headers"] == {"Authorization": "Bearer test-key"}
