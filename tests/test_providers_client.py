from unittest.mock import MagicMock

import pytest
import requests

from services.providers_client import ProvidersClient, ProvidersClientError

PROVIDER_ID = "0b1c2d3e-4f5a-4b6c-8d7e-9f0a1b2c3d4e"


def _response(status, body=None):
    response = MagicMock()
    response.status_code = status
    response.json.return_value = body
    return response


def _client(response=None, error=None):
    session = MagicMock()
    if error is not None:
        session.get.side_effect = error
    else:
        session.get.return_value = response
    return ProvidersClient("http://providers:8080/", timeout=2.0, session=session), session


def test_returns_snapshot():
    client, session = _client(_response(200, {"data": {
        "providerId": PROVIDER_ID,
        "name": "Maria",
        "latitude": -23.5,
        "longitude": -46.6,
        "subscriptionTier": 2,
    }}))

    snapshot = client.get_provider_for_indexing(PROVIDER_ID)

    assert snapshot.provider_id == PROVIDER_ID
    assert snapshot.subscription_tier == 2
    session.get.assert_called_once_with(
        f"http://providers:8080/api/v1/providers/{PROVIDER_ID}/indexing", timeout=2.0
    )


def test_not_found_is_none():
    client, _ = _client(_response(404))
    assert client.get_provider_for_indexing(PROVIDER_ID) is None


def test_server_error_raises():
    client, _ = _client(_response(500))
    with pytest.raises(ProvidersClientError):
        client.get_provider_for_indexing(PROVIDER_ID)


def test_transport_error_raises():
    client, _ = _client(error=requests.ConnectionError("refused"))
    with pytest.raises(ProvidersClientError):
        client.get_provider_for_indexing(PROVIDER_ID)


def test_unusable_snapshot_raises():
    client, _ = _client(_response(200, {"name": "Maria"}))
    with pytest.raises(ProvidersClientError):
        client.get_provider_for_indexing(PROVIDER_ID)
