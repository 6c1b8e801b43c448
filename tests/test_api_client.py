"""
Tests for the sales API client: token grant, status mapping, retries,
pagination and the token bucket.
"""
from unittest.mock import MagicMock

import pytest
import requests

from morrisons_edi.clients.api import (
    APIError,
    AuthenticationError,
    RateLimitError,
    ServerError,
    StoklyClient,
    TokenBucket,
    generate_signature,
)

GRANT = {
    'data': {
        'authenticationResult': {
            'accessToken': 'token-1',
            'expiry': '2099-01-01T00:00:00Z',
        }
    }
}


def _response(status_code=200, body=None):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr('morrisons_edi.utils.decorators.time.sleep', lambda seconds: None)


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = _response(200, GRANT)
    return session


@pytest.fixture
def client(session):
    bucket = TokenBucket(capacity=1000, refill_per_minute=60000)
    return StoklyClient('account-key', 'client-id-1', 'secret-key-12345678',
                        session=session, bucket=bucket, page_size=2)


class TestAuthentication:

    def test_signature_is_hmac_sha256(self):
        signature = generate_signature('client', 'secret')

        assert len(signature) == 64
        assert signature == generate_signature('client', 'secret')
        assert signature != generate_signature('client', 'other')

    def test_grant_request(self, client, session):
        client.authenticate()

        url = session.post.call_args[0][0]
        body = session.post.call_args[1]['json']
        assert url == 'https://api.stok.ly/v1/grant'
        assert body == {
            'accountkey': 'account-key',
            'clientId': 'client-id-1',
            'signature': generate_signature('client-id-1', 'secret-key-12345678'),
        }

    def test_missing_credentials(self, session):
        client = StoklyClient('', 'client-id-1', 'secret', session=session)

        with pytest.raises(AuthenticationError):
            client.authenticate()
        session.post.assert_not_called()

    def test_rejected_grant(self, client, session):
        session.post.return_value = _response(401)

        with pytest.raises(AuthenticationError):
            client.authenticate()

    def test_malformed_grant(self, client, session):
        session.post.return_value = _response(200, {'data': {}})

        with pytest.raises(AuthenticationError):
            client.authenticate()

    def test_token_is_reused(self, client, session):
        session.request.return_value = _response(200, {'data': {'niceId': '1'}})

        client.get_sale_order('so-1')
        client.get_sale_order('so-1')

        assert session.post.call_count == 1

    def test_expired_token_is_renewed(self, client, session):
        session.post.return_value = _response(200, {
            'data': {'authenticationResult': {'accessToken': 't', 'expiry': '2000-01-01T00:00:00Z'}}
        })
        session.request.return_value = _response(200, {'data': {}})

        client.get_sale_order('so-1')
        client.get_sale_order('so-1')

        assert session.post.call_count == 2

    def test_reauthenticates_once_on_401(self, client, session):
        session.request.side_effect = [_response(401), _response(200, {'data': {'niceId': '7'}})]

        assert client.get_sale_order('so-1') == {'niceId': '7'}
        assert session.post.call_count == 2

    def test_second_401_raises(self, client, session):
        session.request.return_value = _response(401)

        with pytest.raises(AuthenticationError):
            client.get_sale_order('so-1')


class TestStatusMapping:

    def test_rate_limit(self, client, session):
        session.request.return_value = _response(429)

        with pytest.raises(RateLimitError) as exc_info:
            client.get_sale_order('so-1')
        assert exc_info.value.status_code == 429

    def test_server_error_is_retried(self, client, session):
        session.request.side_effect = [_response(503), _response(200, {'data': {'niceId': '1'}})]

        assert client.get_sale_order('so-1') == {'niceId': '1'}
        assert session.request.call_count == 2

    def test_server_error_gives_up(self, client, session):
        session.request.return_value = _response(500)

        with pytest.raises(ServerError):
            client.get_sale_order('so-1')
        assert session.request.call_count == 3

    def test_network_error_is_retried(self, client, session):
        session.request.side_effect = [
            requests.ConnectionError('reset'),
            _response(200, {'data': []}),
        ]

        assert client.get_sale_order_items('so-1') == []

    def test_network_error_after_retries_becomes_api_error(self, client, session):
        session.request.side_effect = requests.Timeout('read timed out')

        with pytest.raises(APIError, match='Network error for GET /v2/saleorders/so-1'):
            client.get_sale_order('so-1')
        assert session.request.call_count == 3

    def test_invalid_json_becomes_api_error(self, client, session):
        response = _response(200)
        response.json.side_effect = ValueError('Expecting value')
        session.request.return_value = response

        with pytest.raises(APIError, match='Invalid JSON response'):
            client.get_sale_order('so-1')

    def test_client_error_is_not_retried(self, client, session):
        session.request.return_value = _response(404)

        with pytest.raises(APIError) as exc_info:
            client.get_sale_order('so-1')
        assert exc_info.value.status_code == 404
        assert session.request.call_count == 1

    def test_bearer_header(self, client, session):
        session.request.return_value = _response(200, {'data': {}})

        client.get_sale_order('so-1')

        headers = session.request.call_args[1]['headers']
        assert headers['Authorization'] == 'Bearer token-1'


class TestListing:

    def test_pages_until_short_page(self, client, session):
        session.request.side_effect = [
            _response(200, {'data': [{'niceId': '1'}, {'niceId': '2'}]}),
            _response(200, {'data': [{'niceId': '3'}]}),
        ]

        invoices = client.list_invoices('2024-03-01T00:00:00')

        assert [i['niceId'] for i in invoices] == ['1', '2', '3']
        first_params = session.request.call_args_list[0][1]['params']
        second_params = session.request.call_args_list[1][1]['params']
        assert first_params['page'] == 0
        assert second_params['page'] == 1
        assert first_params['size'] == 2
        assert first_params['sortField'] == 'niceId'
        assert first_params['filter'] == '[issueDate]>={2024-03-01T00:00:00}&&[status]=*{paid}'

    def test_empty_listing(self, client, session):
        session.request.return_value = _response(200, {'data': []})
        assert client.list_invoices('1970-01-01T00:00:00') == []

    def test_item_barcode(self, client, session):
        session.request.return_value = _response(200, {
            'data': [{'barcode': ''}, {'barcode': '5000000000011'}]
        })

        assert client.get_item_barcode('item-1') == '5000000000011'
        assert session.request.call_args[0][1] == 'https://api.stok.ly/v0/items/item-1/barcodes'

    def test_item_without_barcode(self, client, session):
        session.request.return_value = _response(200, {'data': []})
        assert client.get_item_barcode('item-1') is None


class TestTokenBucket:

    def test_burst_then_wait(self):
        now = [0.0]
        waits = []

        def sleep(seconds):
            waits.append(seconds)
            now[0] += seconds

        bucket = TokenBucket(capacity=2, refill_per_minute=60, clock=lambda: now[0], sleep=sleep)

        bucket.acquire()
        bucket.acquire()
        assert waits == []

        bucket.acquire()
        assert waits == [pytest.approx(1.0)]

    def test_refill_is_capped(self):
        now = [0.0]
        bucket = TokenBucket(capacity=10, refill_per_minute=120, clock=lambda: now[0])

        now[0] = 3600.0

        assert bucket.available == 10
