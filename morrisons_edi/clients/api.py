"""
Client for the upstream sales/invoicing API.

Handles the signed token grant, a token bucket shared by every request,
retry of transient failures and page-by-page listing.
"""
import hashlib
import hmac
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

import requests
from dateutil import parser as date_parser

from morrisons_edi.utils.decorators import retry_on_failure

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENT = 'api.stok.ly'
DEFAULT_PAGE_SIZE = 1000
DEFAULT_TIMEOUT = 30

# Token bucket: burst of 10, refilled to 120 requests per minute
BUCKET_CAPACITY = 10
BUCKET_REFILL_PER_MINUTE = 120


class APIError(Exception):
    """Upstream request failed"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Token grant rejected or credentials missing"""
    pass


class RateLimitError(APIError):
    """Upstream answered 429"""
    pass


class ServerError(APIError):
    """Upstream answered 5xx"""
    pass


class TokenBucket:
    """
    Thread-safe token bucket.

    ``acquire`` blocks until a token is available. Tokens are refilled
    continuously at ``refill_per_minute`` up to ``capacity``.
    """

    def __init__(self,
                 capacity: int = BUCKET_CAPACITY,
                 refill_per_minute: float = BUCKET_REFILL_PER_MINUTE,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        self.capacity = capacity
        self.refill_rate = refill_per_minute / 60.0
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()
        self._lock = threading.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self._updated
        self._updated = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_rate)

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def acquire(self):
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return
                wait = (1 - self._tokens) / self.refill_rate
            self._sleep(wait)


def generate_signature(client_id: str, secret_key: str) -> str:
    """HMAC-SHA256 of the client id keyed with the secret, hex encoded"""
    return hmac.new(
        secret_key.encode('utf-8'),
        client_id.encode('utf-8'),
        hashlib.sha256
    ).hexdigest()


class StoklyClient:
    """
    Sales API client.

    One instance is created per process and shared by the runner and the
    document builder, so the token bucket covers every outgoing request.
    """

    def __init__(self,
                 account_key: str,
                 client_id: str,
                 secret_key: str,
                 environment: str = DEFAULT_ENVIRONMENT,
                 session: Optional[requests.Session] = None,
                 bucket: Optional[TokenBucket] = None,
                 timeout: float = DEFAULT_TIMEOUT,
                 page_size: int = DEFAULT_PAGE_SIZE):
        self.account_key = account_key
        self.client_id = client_id
        self.secret_key = secret_key
        self.environment = environment
        self.session = session or requests.Session()
        self.bucket = bucket or TokenBucket()
        self.timeout = timeout
        self.page_size = page_size

        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None

    @classmethod
    def from_credentials(cls, credentials, **kwargs) -> 'StoklyClient':
        """Build a client from stored ApiCredentials"""
        return cls(
            account_key=credentials.account_key,
            client_id=credentials.client_id,
            secret_key=credentials.secret_key,
            **kwargs
        )

    @property
    def base_url(self) -> str:
        return f"https://{self.environment}"

    def authenticate(self):
        """Request a new access token"""
        if not (self.account_key and self.client_id and self.secret_key):
            raise AuthenticationError(
                'API credentials not configured (account key, client id and secret key required)'
            )

        try:
            response = self.session.post(
                f"{self.base_url}/v1/grant",
                json={
                    'accountkey': self.account_key,
                    'clientId': self.client_id,
                    'signature': generate_signature(self.client_id, self.secret_key),
                },
                timeout=self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise APIError(f"Network error during token grant: {e}") from e

        if response.status_code in (401, 403):
            raise AuthenticationError(
                f"HTTP {response.status_code} unauthorized: token grant rejected",
                response.status_code
            )
        if not response.ok:
            raise APIError(f"HTTP {response.status_code} error during token grant",
                           response.status_code)

        try:
            result = response.json()['data']['authenticationResult']
            self._access_token = result['accessToken']
            expiry = date_parser.isoparse(result['expiry'])
        except (KeyError, TypeError, ValueError) as e:
            raise AuthenticationError(f"Unexpected token grant response: {e}") from e

        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        self._token_expiry = expiry
        logger.info("Access token obtained")

    def ensure_token(self):
        if (self._access_token is None or self._token_expiry is None
                or datetime.now(timezone.utc) >= self._token_expiry):
            self.authenticate()

    def reset_session(self):
        """Forget the access token; the next request re-authenticates"""
        self._access_token = None
        self._token_expiry = None

    def request(self, method: str, path: str,
                params: Optional[Dict[str, Any]] = None,
                payload: Any = None) -> Dict[str, Any]:
        """
        Send one request and return the decoded JSON body.

        A 401 triggers a single re-authentication before giving up.

        Raises:
            AuthenticationError: credentials rejected
            APIError: error status, network failure after retries or undecodable body
        """
        try:
            return self._send(method, path, params, payload)
        except requests.RequestException as e:
            raise APIError(f"Network error for {method.upper()} {path}: {e}") from e

    @retry_on_failure(max_attempts=3, delay_seconds=0.2,
                      exceptions=(requests.ConnectionError, requests.Timeout, ServerError))
    def _send(self, method, path, params, payload):
        url = path if path.startswith('http') else f"{self.base_url}{path}"

        for attempt in (1, 2):
            self.ensure_token()
            self.bucket.acquire()

            response = self.session.request(
                method.upper(),
                url,
                params=params,
                json=payload if method.upper() in ('POST', 'PUT') else None,
                headers={
                    'Content-Type': 'application/json',
                    'Authorization': f"Bearer {self._access_token}",
                },
                timeout=self.timeout
            )

            if response.status_code == 401 and attempt == 1:
                logger.info("Access token rejected, re-authenticating")
                self.reset_session()
                continue
            break

        status = response.status_code
        if status == 401 or status == 403:
            raise AuthenticationError(f"HTTP {status} unauthorized for {method.upper()} {path}", status)
        if status == 429:
            raise RateLimitError(f"HTTP 429 rate limit exceeded for {method.upper()} {path}", status)
        if status >= 500:
            raise ServerError(f"HTTP {status} server error for {method.upper()} {path}", status)
        if status >= 400:
            raise APIError(f"HTTP {status} error for {method.upper()} {path}", status)

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON response for {method.upper()} {path}: {e}", status) from e

    def loop_through(self, path: str,
                     params: Optional[Dict[str, Any]] = None,
                     filter_expr: Optional[str] = None) -> Iterator[Dict[str, Any]]:
        """
        Yield every record of a paginated listing.
        Stops after the first page shorter than the page size.
        """
        page = 0
        while True:
            query = dict(params or {})
            query.update({'size': self.page_size, 'page': page})
            if filter_expr:
                query['filter'] = filter_expr

            response = self.request('GET', path, params=query)
            records = response.get('data') or []

            for record in records:
                yield record

            if len(records) < self.page_size:
                break
            page += 1

    def list_invoices(self, since: str) -> List[Dict[str, Any]]:
        """Paid invoices issued on or after ``since``, ascending by display id"""
        return list(self.loop_through(
            '/v0/invoices',
            params={'sortDirection': 'ASC', 'sortField': 'niceId'},
            filter_expr=f"[issueDate]>={{{since}}}&&[status]=*{{paid}}"
        ))

    def get_sale_order_items(self, sale_order_id: Any) -> List[Dict[str, Any]]:
        return self.request('GET', f"/v2/saleorders/{sale_order_id}/items").get('data') or []

    def get_sale_order(self, sale_order_id: Any) -> Dict[str, Any]:
        return self.request('GET', f"/v2/saleorders/{sale_order_id}").get('data') or {}

    def get_item_barcode(self, item_id: Any) -> Optional[str]:
        """First barcode registered for an item, None if it has none"""
        records = self.request('GET', f"/v0/items/{item_id}/barcodes").get('data') or []
        for record in records:
            if isinstance(record, dict):
                barcode = record.get('barcode')
            else:
                barcode = record
            if barcode not in (None, ''):
                return str(barcode)
        return None
