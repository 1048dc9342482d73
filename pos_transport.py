"""Single round-trip client for the action-based remote API."""
from __future__ import annotations

import enum
import json as _json
import logging
from typing import Any, Dict, Mapping, Optional

import requests

logger = logging.getLogger(__name__)

# The remote host only skips the CORS preflight for simple content types,
# so JSON bodies travel as text/plain.
POST_CONTENT_TYPE = 'text/plain;charset=utf-8'


class ErrorKind(enum.Enum):
    NETWORK_ERROR = 'network_error'
    INVALID_RESPONSE = 'invalid_response'
    BUSINESS_ERROR = 'business_error'


class PosApiError(Exception):
    """Base class for failures talking to the remote API."""
    kind: ErrorKind

    def __init__(self, message: str, action: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.action = action


class NetworkError(PosApiError):
    kind = ErrorKind.NETWORK_ERROR


class InvalidResponse(PosApiError):
    """Raised when the body is not JSON (e.g. an HTML error page)."""
    kind = ErrorKind.INVALID_RESPONSE

    def __init__(self, message: str, action: Optional[str] = None, body: str = ''):
        super().__init__(message, action)
        self.body = body


class BusinessError(PosApiError):
    kind = ErrorKind.BUSINESS_ERROR


class ValidationError(ValueError):
    """Local input rejected before any request is issued."""


def business_failure(result: Any) -> Optional[str]:
    """Return the server message when `result` is an error envelope."""
    if not isinstance(result, dict):
        return None
    if result.get('error'):
        return str(result['error'])
    if 'success' in result and not result.get('success'):
        return str(result.get('message') or result.get('error') or 'Request rejected')
    return None


def as_collection(result: Any, *keys: str) -> list:
    """Accept a raw array or an object wrapping one under `data` or a named key."""
    if isinstance(result, list):
        return result
    message = business_failure(result)
    if message:
        raise BusinessError(message)
    if isinstance(result, dict):
        for key in keys + ('data',):
            value = result.get(key)
            if isinstance(value, list):
                return value
        return []
    if result is None:
        return []
    raise InvalidResponse(f'Expected a collection, got {type(result).__name__}')


class Transport:
    """Issues one request/response round trip against the remote endpoint."""

    def __init__(self, base_url: str, timeout: float = 20.0, session: Optional[requests.Session] = None):
        self.base_url = base_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def call(self, action: str, payload: Optional[Mapping[str, Any]] = None, method: str = 'GET') -> Any:
        payload = dict(payload or {})
        method = method.upper()
        if method == 'POST':
            body = _json.dumps({'action': action, **payload})
            request_kwargs: Dict[str, Any] = {
                'data': body.encode('utf-8'),
                'headers': {'Content-Type': POST_CONTENT_TYPE},
            }
        elif method == 'GET':
            request_kwargs = {'params': {'action': action, **payload}}
        else:
            raise ValueError(f'Unsupported method {method}')

        try:
            resp = self.session.request(
                method,
                self.base_url,
                timeout=self.timeout,
                allow_redirects=True,
                **request_kwargs
            )
            raw = resp.text
        except requests.RequestException as exc:
            logger.debug('Request %s failed: %s', action, exc)
            raise NetworkError(str(exc), action) from exc

        try:
            return _json.loads(raw)
        except (TypeError, ValueError) as exc:
            excerpt = (raw or '')[:200]
            raise InvalidResponse(
                f'Non-JSON response for {action} (status={resp.status_code})',
                action,
                body=excerpt
            ) from exc

    def close(self) -> None:
        self.session.close()
