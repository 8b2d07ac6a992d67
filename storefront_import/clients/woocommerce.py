"""
WooCommerce REST client (``/wp-json/wc/v3/orders``).

Contract:
    ``count()`` reads the ``X-WP-Total`` header of a one-item page;
    ``fetch_page()`` returns the raw order objects of one page, oldest
    first.

Failure modes:
    - 401 / 403                     -> ExternalSourceAuthError (never retried)
    - 429, 5xx, timeout, transport  -> ExternalSourceUnavailableError (retryable)
    - other 4xx, non-JSON, non-list -> ExternalSourceResponseError
"""

from __future__ import annotations

from typing import Any

import httpx

from storefront_config.schema import StoreCredentials
from storefront_kernel.exceptions import (
    ExternalSourceAuthError,
    ExternalSourceResponseError,
    ExternalSourceUnavailableError,
)
from storefront_kernel.logging_config import get_logger

from storefront_import.clients.base import OrderFilters

logger = get_logger("import.woocommerce")

ORDERS_PATH = "/wp-json/wc/v3/orders"
TOTAL_HEADER = "X-WP-Total"


class WooCommerceOrderSource:
    """Reads orders from one WooCommerce store over HTTPS basic auth."""

    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        *,
        timeout: float = 30.0,
        verify: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self._base_url,
            auth=httpx.BasicAuth(consumer_key, consumer_secret),
            timeout=timeout,
            verify=verify,
            follow_redirects=False,
            headers={"Accept": "application/json"},
            transport=transport,
        )

    @classmethod
    def from_credentials(
        cls,
        credentials: StoreCredentials,
        transport: httpx.BaseTransport | None = None,
    ) -> WooCommerceOrderSource:
        return cls(
            credentials.base_url,
            credentials.consumer_key,
            credentials.consumer_secret,
            timeout=credentials.timeout_seconds,
            verify=credentials.verify_ssl,
            transport=transport,
        )

    # -------------------------------------------------------------------------
    # ExternalOrderSource
    # -------------------------------------------------------------------------

    def count(self, filters: OrderFilters) -> int:
        response = self._get("count", self._params(filters, page=1, page_size=1))
        raw = response.headers.get(TOTAL_HEADER)
        try:
            total = int(raw) if raw is not None else None
        except ValueError:
            total = None
        if total is None or total < 0:
            raise ExternalSourceResponseError("count", f"missing or invalid {TOTAL_HEADER} header: {raw!r}")
        return total

    def fetch_page(
        self, filters: OrderFilters, page: int, page_size: int,
    ) -> list[dict[str, Any]]:
        operation = f"fetch_page({page})"
        response = self._get(operation, self._params(filters, page=page, page_size=page_size))
        try:
            body = response.json()
        except ValueError as exc:
            raise ExternalSourceResponseError(operation, f"body is not JSON: {exc}") from exc
        if not isinstance(body, list):
            raise ExternalSourceResponseError(
                operation, f"expected a list of orders, got {type(body).__name__}",
            )
        return body

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> WooCommerceOrderSource:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @staticmethod
    def _params(filters: OrderFilters, page: int, page_size: int) -> dict[str, Any]:
        params: dict[str, Any] = {
            "orderby": "date",
            "order": "asc",
            "page": page,
            "per_page": page_size,
        }
        if filters.status:
            params["status"] = filters.status
        if filters.created_after:
            params["after"] = filters.created_after.isoformat()
        if filters.created_before:
            params["before"] = filters.created_before.isoformat()
        return params

    def _get(self, operation: str, params: dict[str, Any]) -> httpx.Response:
        try:
            response = self._client.get(ORDERS_PATH, params=params)
        except httpx.TimeoutException as exc:
            raise ExternalSourceUnavailableError(operation, f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise ExternalSourceUnavailableError(operation, f"transport error: {exc}") from exc

        status = response.status_code
        logger.debug(
            "woocommerce_request",
            extra={"operation": operation, "status_code": status, "page": params.get("page")},
        )
        if status in (401, 403):
            raise ExternalSourceAuthError(operation, status)
        if status == 429 or status >= 500:
            raise ExternalSourceUnavailableError(operation, response.reason_phrase or "server error", status)
        if status >= 400:
            raise ExternalSourceResponseError(operation, f"HTTP {status}: {response.text[:200]}")
        return response
