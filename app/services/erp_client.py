from __future__ import annotations

import json
import logging
import socket
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from app.config import settings


logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 1000


class ErpError(Exception):
    def __init__(self, message: str, *, status: int | None = None, data: Any = None) -> None:
        super().__init__(message)
        self.status = status
        self.data = data


class ErpTransientError(ErpError):
    """Network failure, timeout, 429 or 5xx. Retried before surfacing."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        data: Any = None,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status=status, data=data)
        self.retry_after = retry_after


class ErpRequestError(ErpError):
    pass


class ErpResponseShapeError(ErpError):
    pass


class ResponseShape(str, Enum):
    BARE = 'BARE'
    WRAPPED = 'WRAPPED'


@dataclass(frozen=True)
class ErpEntity:
    name: str
    path: str
    list_keys: tuple[str, ...]


LOCATIONS = ErpEntity('Locations', '/ref/location', ('LocationList', 'Locations'))
PRODUCT_AVAILABILITY = ErpEntity(
    'ProductAvailability', '/ref/productavailability', ('ProductAvailabilityList', 'ProductAvailability')
)
PRODUCTS = ErpEntity('Products', '/product', ('Products', 'ProductList'))
CUSTOMERS = ErpEntity('Customers', '/customer', ('CustomerList', 'Customers'))
SALE_PATH = '/sale'


@dataclass(frozen=True)
class ErpPage:
    items: list[dict]
    shape: ResponseShape
    total: int | None = None


def decode_page(payload: Any, entity: ErpEntity) -> ErpPage:
    """Normalize a list response into an ErpPage.

    The ERP returns either a bare JSON array or an object wrapping the array
    under an entity-specific key. Anything else is rejected.
    """
    if isinstance(payload, list):
        return ErpPage(items=[row for row in payload if isinstance(row, dict)], shape=ResponseShape.BARE)

    if isinstance(payload, dict):
        total = _parse_total(payload.get('Total'))
        for key in entity.list_keys:
            value = payload.get(key)
            if isinstance(value, list):
                return ErpPage(
                    items=[row for row in value if isinstance(row, dict)],
                    shape=ResponseShape.WRAPPED,
                    total=total,
                )
        if total == 0:
            return ErpPage(items=[], shape=ResponseShape.WRAPPED, total=0)
        raise ErpResponseShapeError(
            f'Unrecognized {entity.name} response: expected a list or one of {list(entity.list_keys)}, '
            f'got keys {sorted(payload)}',
            data=payload,
        )

    raise ErpResponseShapeError(
        f'Unrecognized {entity.name} response type: {type(payload).__name__}',
        data=payload,
    )


def _parse_total(value: Any) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _error_message(data: Any, status: int) -> str:
    if isinstance(data, dict):
        message = data.get('ErrorMessage') or data.get('Exception') or data.get('message')
        if message:
            return str(message)
    if isinstance(data, list):
        messages = [str(row.get('Exception') or row.get('ErrorMessage')) for row in data if isinstance(row, dict)]
        messages = [m for m in messages if m and m != 'None']
        if messages:
            return '; '.join(messages)
    return f'HTTP {status} error'


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        'ERP request failed (attempt %s), retrying in %.0fs: %s',
        retry_state.attempt_number,
        delay,
        exc,
    )


class ErpClient:
    def __init__(
        self,
        *,
        base_url: str,
        account_id: str,
        application_key: str,
        timeout_seconds: int = 30,
        page_size: int = 500,
        max_retries: int = 3,
        max_pages: int = 200,
        quote_status: str = 'NOTAUTHORISED',
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.base_url = base_url.rstrip('/')
        self.headers = {
            'api-auth-accountid': account_id,
            'api-auth-applicationkey': application_key,
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        self.timeout_seconds = timeout_seconds
        self.page_size = min(max(page_size, 1), MAX_PAGE_SIZE)
        self.max_retries = max_retries
        self.max_pages = max_pages
        self.quote_status = quote_status
        self._sleep = sleep

    @classmethod
    def from_settings(cls) -> ErpClient:
        if not settings.erp_account_id or not settings.erp_application_key:
            raise ValueError('ERP_ACCOUNT_ID and ERP_APPLICATION_KEY are required')
        return cls(
            base_url=settings.erp_base_url,
            account_id=settings.erp_account_id,
            application_key=settings.erp_application_key,
            timeout_seconds=settings.erp_timeout_seconds,
            page_size=settings.erp_page_size,
            max_retries=settings.erp_max_retries,
            max_pages=settings.erp_max_pages,
            quote_status=settings.erp_quote_status,
        )

    def _send(self, method: str, path: str, params: dict | None, payload: dict | None) -> Any:
        url = f'{self.base_url}{path}'
        if params:
            url = f'{url}?{urlencode(params)}'
        data = json.dumps(payload).encode('utf-8') if payload is not None else None
        req = Request(url=url, data=data, headers=self.headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout_seconds) as response:
                raw = response.read().decode('utf-8')
        except HTTPError as exc:
            body = exc.read().decode('utf-8', errors='ignore') if exc.fp else ''
            try:
                error_data = json.loads(body) if body else None
            except ValueError:
                error_data = body
            message = f'ERP API error on {method} {path}: {_error_message(error_data, exc.code)}'
            if exc.code == 429 or exc.code >= 500:
                retry_after = _parse_retry_after(exc.headers.get('Retry-After') if exc.headers else None)
                raise ErpTransientError(message, status=exc.code, data=error_data, retry_after=retry_after) from exc
            raise ErpRequestError(message, status=exc.code, data=error_data) from exc
        except URLError as exc:
            raise ErpTransientError(f'ERP API network error on {method} {path}: {exc.reason}') from exc
        except (TimeoutError, socket.timeout) as exc:
            raise ErpTransientError(f'ERP API timeout on {method} {path}') from exc

        if not raw.strip():
            return {}
        try:
            return json.loads(raw)
        except ValueError as exc:
            raise ErpResponseShapeError(f'ERP API returned non-JSON body on {method} {path}') from exc

    def request(self, method: str, path: str, *, params: dict | None = None, payload: dict | None = None) -> Any:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_exponential(multiplier=2, max=60),
            retry=retry_if_exception_type(ErpTransientError),
            sleep=self._sleep,
            before_sleep=_log_retry,
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                result = self._send(method, path, params, payload)
        return result

    def paginate(self, entity: ErpEntity, params: dict | None = None) -> list[dict]:
        items: list[dict] = []
        page = 1
        while page <= self.max_pages:
            query = dict(params or {})
            query.update({'Page': page, 'Limit': self.page_size})
            decoded = decode_page(self.request('GET', entity.path, params=query), entity)
            items.extend(decoded.items)
            if len(decoded.items) < self.page_size:
                break
            if decoded.total is not None and len(items) >= decoded.total:
                break
            page += 1
        else:
            logger.warning('Stopped paging %s after %s pages', entity.name, self.max_pages)
        return items

    def test_connection(self) -> bool:
        decode_page(self.request('GET', LOCATIONS.path, params={'Page': 1, 'Limit': 1}), LOCATIONS)
        return True

    def list_locations(self) -> list[dict]:
        return self.paginate(LOCATIONS)

    def list_product_availability(self, *, location: str | None = None) -> list[dict]:
        params = {'Location': location} if location else None
        rows = self.paginate(PRODUCT_AVAILABILITY, params)
        if location:
            for row in rows:
                if not row.get('Location'):
                    row['Location'] = location
        return rows

    def list_products(self) -> list[dict]:
        return self.paginate(PRODUCTS)

    def list_customers(self) -> list[dict]:
        return self.paginate(CUSTOMERS)

    def create_sale(self, payload: dict) -> dict:
        body = dict(payload)
        body['OrderStatus'] = self.quote_status
        response = self.request('POST', SALE_PATH, payload=body)
        if not isinstance(response, dict):
            raise ErpResponseShapeError('ERP API returned an unexpected sale response', data=response)
        return response
