"""httpx request helpers shared by platform clients."""

from __future__ import annotations

import time
from typing import Any

import httpx
from loguru import logger

MAX_GET_ATTEMPTS = 3
DEFAULT_RETRY_BACKOFF_SECONDS = 0.5


class AlmAuthError(RuntimeError):
    """Raised when no credential is available for a platform."""


class AlmInputError(ValueError):
    """Raised when repository or pull request identifiers are invalid."""


class AlmApiError(RuntimeError):
    """Raised when a platform API request fails."""

    def __init__(self, message: str, *, status_code: int, endpoint: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class AlmRateLimitError(AlmApiError):
    """Raised when rate limiting prevents request completion."""


def ensure_mapping(value: object, *, context: str) -> dict[str, Any]:
    """Ensure a response fragment is a JSON object."""
    if not isinstance(value, dict):
        raise AlmApiError(
            f"Expected JSON object for {context}.",
            status_code=500,
            endpoint=context,
        )
    return value


def ensure_list(value: object, *, context: str) -> list[dict[str, Any]]:
    """Ensure a response fragment is an array of JSON objects."""
    if not isinstance(value, list):
        raise AlmApiError(
            f"Expected JSON array for {context}.",
            status_code=500,
            endpoint=context,
        )
    return [ensure_mapping(item, context=context) for item in value]


def require_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str:
    """Read a required string field from payload."""
    value = payload.get(key)
    if not isinstance(value, str):
        raise AlmApiError(
            f"Expected string field '{key}' in API response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_int(payload: dict[str, Any], *, key: str, endpoint: str) -> int:
    """Read a required integer field from payload."""
    value = payload.get(key)
    if not isinstance(value, int) or isinstance(value, bool):
        raise AlmApiError(
            f"Expected integer field '{key}' in API response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def require_object(payload: dict[str, Any], *, key: str, endpoint: str) -> dict[str, Any]:
    """Read a required object field from payload."""
    value = payload.get(key)
    if not isinstance(value, dict):
        raise AlmApiError(
            f"Expected object field '{key}' in API response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def optional_str(payload: dict[str, Any], *, key: str, endpoint: str) -> str | None:
    """Read a string-or-null field from payload."""
    value = payload.get(key)
    if value is not None and not isinstance(value, str):
        raise AlmApiError(
            f"Expected '{key}' to be a string or null in API response.",
            status_code=500,
            endpoint=endpoint,
        )
    return value


def _is_retryable_status(status_code: int) -> bool:
    """Return whether a status code is retryable under policy."""
    return status_code == 429 or 500 <= status_code < 600


def _parse_retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse Retry-After header as seconds if present and valid."""
    retry_after = response.headers.get("Retry-After")
    if retry_after is None:
        return None
    try:
        parsed_value = float(retry_after)
    except ValueError:
        return None
    if parsed_value < 0:
        return None
    return parsed_value


def _compute_retry_delay_seconds(response: httpx.Response, *, attempt_number: int) -> float:
    """Compute retry delay from Retry-After header or exponential backoff."""
    retry_after_seconds = _parse_retry_after_seconds(response)
    if retry_after_seconds is not None:
        return retry_after_seconds
    return DEFAULT_RETRY_BACKOFF_SECONDS * (2 ** (attempt_number - 1))


def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    time.sleep(seconds)


def _raise_http_error(response: httpx.Response, method: str, endpoint: str) -> None:
    """Raise a typed error for a non-success API response."""
    message = f"API request {method} '{endpoint}' failed with status {response.status_code}."
    if response.status_code == 429:
        raise AlmRateLimitError(
            message,
            status_code=response.status_code,
            endpoint=endpoint,
        )
    raise AlmApiError(
        message,
        status_code=response.status_code,
        endpoint=endpoint,
    )


def request(
    client: httpx.Client,
    method: str,
    endpoint: str,
    *,
    accept_header: str | None = None,
    json: object | None = None,
    params: dict[str, str | int] | None = None,
    max_attempts: int = MAX_GET_ATTEMPTS,
) -> httpx.Response:
    """Perform a request; only GETs are retried on 429/5xx responses."""
    headers: dict[str, str] = {}
    if accept_header:
        headers["Accept"] = accept_header
    attempts = max_attempts if method == "GET" else 1

    for attempt_number in range(1, attempts + 1):
        response = client.request(
            method,
            endpoint,
            headers=headers or None,
            json=json,
            params=params,
        )
        if response.status_code < 400:
            return response

        should_retry = _is_retryable_status(response.status_code) and attempt_number < attempts
        if not should_retry:
            _raise_http_error(response, method, endpoint)

        delay_seconds = _compute_retry_delay_seconds(response, attempt_number=attempt_number)
        logger.debug(
            "Retrying {} {} after status {} in {}s",
            method,
            endpoint,
            response.status_code,
            delay_seconds,
        )
        _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a response.")


def _decode_json(response: httpx.Response, endpoint: str) -> object:
    try:
        return response.json()
    except ValueError as error:
        raise AlmApiError(
            f"Expected JSON response for {endpoint}.",
            status_code=response.status_code,
            endpoint=endpoint,
        ) from error


def request_json(
    client: httpx.Client,
    method: str,
    endpoint: str,
    *,
    json: object | None = None,
    params: dict[str, str | int] | None = None,
    accept_header: str | None = "application/json",
) -> dict[str, Any]:
    """Perform a request whose response is a JSON object."""
    response = request(
        client, method, endpoint, accept_header=accept_header, json=json, params=params
    )
    return ensure_mapping(_decode_json(response, endpoint), context=endpoint)


def request_json_list(
    client: httpx.Client,
    endpoint: str,
    *,
    params: dict[str, str | int] | None = None,
    accept_header: str | None = "application/json",
) -> list[dict[str, Any]]:
    """Perform a GET whose response is an array of objects."""
    response = request(client, "GET", endpoint, accept_header=accept_header, params=params)
    return ensure_list(_decode_json(response, endpoint), context=endpoint)


def request_text(
    client: httpx.Client,
    endpoint: str,
    *,
    accept_header: str,
) -> str:
    """Perform a text GET with explicit Accept header."""
    return request(client, "GET", endpoint, accept_header=accept_header).text
