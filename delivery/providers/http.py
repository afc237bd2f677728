from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from delivery.exceptions import (
    ProviderAuthFailure,
    ProviderRequestError,
    ProviderUnavailable,
)

logger = logging.getLogger(__name__)

RETRY_STATUS_CODES = (429, 502, 503, 504)
# POST is never retried.
RETRY_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})


def build_session(max_attempts: Optional[int] = None) -> requests.Session:
    if max_attempts is None:
        max_attempts = getattr(settings, "DELIVERY_HTTP_MAX_RETRIES", 3)
    retry = Retry(
        total=max(int(max_attempts) - 1, 0),
        backoff_factor=0.5,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=RETRY_METHODS,
        raise_on_status=False,
        respect_retry_after_header=True,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session = requests.Session()
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _error_message(response: requests.Response) -> str:
    try:
        details = response.json()
    except ValueError:
        return (response.text or "").strip()[:500] or response.reason or ""
    if isinstance(details, dict):
        return str(details.get("message") or details.get("error") or details.get("detail") or details)
    return str(details)


class ProviderHTTPClient:
    """Thin JSON-over-HTTP wrapper shared by the provider clients.

    Every call has a bounded timeout. Transport failures and 5xx answers become
    ``ProviderUnavailable``; 401/403 become ``ProviderAuthFailure``; any other
    4xx becomes ``ProviderRequestError`` carrying the upstream status.
    """

    def __init__(
        self,
        provider: str,
        base_url: str,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        self.provider = provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout if timeout is not None else getattr(settings, "DELIVERY_HTTP_TIMEOUT", 20)
        self.session = session or build_session()

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(
        self,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        data: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = self._url(path)
        try:
            response = self.session.request(
                method,
                url,
                headers=headers,
                json=json,
                data=data,
                params=params,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            logger.warning("%s %s %s timed out", self.provider, method, url)
            raise ProviderUnavailable(f"{self.provider} request timed out", provider=self.provider) from exc
        except requests.RequestException as exc:
            logger.warning("%s %s %s failed: %s", self.provider, method, url, exc)
            raise ProviderUnavailable(f"{self.provider} is unreachable", provider=self.provider) from exc

        if not response.ok:
            message = _error_message(response)
            logger.warning(
                "%s %s %s returned %s: %s", self.provider, method, url, response.status_code, message
            )
            context = {"provider": self.provider, "upstream_status": response.status_code}
            if response.status_code in (401, 403):
                raise ProviderAuthFailure(message or "Authentication rejected", **context)
            if response.status_code >= 500 or response.status_code == 429:
                raise ProviderUnavailable(message or "Provider error", **context)
            raise ProviderRequestError(message or "Request rejected", **context)

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise ProviderRequestError(
                f"{self.provider} returned a non-JSON response",
                provider=self.provider,
                upstream_status=response.status_code,
            ) from exc

    def get(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("GET", path, **kwargs)

    def post(self, path: str, **kwargs) -> Dict[str, Any]:
        return self.request("POST", path, **kwargs)
