from __future__ import annotations

import time
from typing import Any, Callable

import httpx
import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    stop_any,
    wait_exponential,
)

from otcprovider.diagnostics.classify import ApiError, classify, decode_error_body
from otcprovider.engine.waiter import Cancellation

logger = structlog.get_logger()

DEFAULT_USER_AGENT = "otcprovider/0.1.0"

REQUEST_ID_HEADERS = ("X-Request-Id", "X-Openstack-Request-Id", "X-Compute-Request-Id")


def is_retryable(exc: BaseException) -> bool:
    """Throttled and transient failures are retried inside the call."""
    return isinstance(exc, ApiError) and classify(exc).retryable


class ServiceClient:
    """Synchronous JSON facade over one service endpoint.

    Throttled and transient failures are retried with capped exponential
    backoff up to ``max_retries`` attempts; the final error carries the
    retry history.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None,
        *,
        service: str = "",
        timeout: float = 30.0,
        max_retries: int = 5,
        backoff: float = 1.0,
        backoff_max: float = 30.0,
        cancel: Cancellation | None = None,
        sleep: Callable[[float], Any] | None = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.service = service
        self._token = token
        self._max_retries = max(1, max_retries)
        self._backoff = backoff
        self._backoff_max = backoff_max
        self._cancel = cancel
        self._sleep = sleep
        self._user_agent = user_agent
        self._http = httpx.Client(timeout=timeout, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "ServiceClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": self._user_agent,
        }
        if self._token:
            headers["X-Auth-Token"] = self._token
        return headers

    def _pause(self, seconds: float) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif self._cancel is not None:
            self._cancel.wait(seconds)
        else:
            time.sleep(seconds)

    def _stop_if_cancelled(self, retry_state: RetryCallState) -> bool:
        return self._cancel is not None and self._cancel.cancelled()

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """Execute a request, retrying throttled and transient failures."""
        url = f"{self.base_url}{path}"
        history: list[str] = []

        def record(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            history.append(f"attempt {retry_state.attempt_number}: {exc} (retrying in {delay:.1f}s)")
            logger.warning(
                "http_retryable_error",
                service=self.service,
                method=method,
                url=url,
                attempt=retry_state.attempt_number,
                error=str(exc),
            )

        retrying = Retrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_any(stop_after_attempt(self._max_retries), self._stop_if_cancelled),
            wait=wait_exponential(multiplier=self._backoff, min=self._backoff, max=self._backoff_max),
            sleep=self._pause,
            before_sleep=record,
            reraise=True,
        )

        try:
            for attempt in retrying:
                with attempt:
                    return self._send(method, url, params=params, json=json, headers=headers)
        except ApiError as exc:
            if history:
                history.append(f"attempt {len(history) + 1}: {exc}")
                exc.history = history
            logger.debug(
                "http_request_failed",
                service=self.service,
                method=method,
                url=url,
                status=exc.status,
                code=exc.code,
                kind=str(classify(exc)),
            )
            raise
        raise AssertionError("unreachable")  # pragma: no cover

    def _send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> Any:
        req_headers = self._headers()
        if headers:
            req_headers.update(headers)

        try:
            response = self._http.request(method, url, params=params, json=json, headers=req_headers)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            logger.warning("http_network_error", method=method, url=url, error=str(exc))
            raise ApiError(0, str(exc) or type(exc).__name__, method=method, url=url, transport=True) from exc

        if response.is_success:
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError as exc:
                raise ApiError(
                    response.status_code,
                    f"could not decode response body: {exc}",
                    method=method,
                    url=url,
                    request_id=_header_request_id(response),
                    decode_error=True,
                ) from exc

        raise _error_from_response(response, method, url)

    def get(self, path: str, *, params: dict[str, Any] | None = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("POST", path, json=json, params=params)

    def put(self, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("PUT", path, json=json, params=params)

    def patch(self, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("PATCH", path, json=json, params=params)

    def delete(self, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        return self.request("DELETE", path, json=json, params=params)


def _header_request_id(response: httpx.Response) -> str | None:
    for name in REQUEST_ID_HEADERS:
        value = response.headers.get(name)
        if value:
            return value
    return None


def _error_from_response(response: httpx.Response, method: str, url: str) -> ApiError:
    code = message = request_id = None
    try:
        code, message, request_id = decode_error_body(response.json())
    except ValueError:
        pass
    if not message:
        message = response.text.strip() or response.reason_phrase or "request failed"
    return ApiError(
        response.status_code,
        message,
        code=code,
        request_id=request_id or _header_request_id(response),
        method=method,
        url=url,
    )
