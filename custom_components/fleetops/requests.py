"""
Low-level HTTP request library for Fleet Ops upstream communication.
This module handles all HTTP requests and turns every failure into one of the
typed errors from errors.py.
"""
import asyncio
import logging
import aiohttp

from .const import API_ERROR_MESSAGES, REQUEST_TIMEOUT
from .errors import ApiResponseError, MalformedResponseError, TransportError


_LOGGER = logging.getLogger(__name__)


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload=None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = 1
):
    """
    Make an HTTP request and return the parsed JSON body.

    Args:
        method: HTTP method (GET, POST, PUT)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PUT requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Number of attempts on timeout. Upstream fetches use a single
            attempt; the next poll tick is their retry.

    Returns:
        Parsed JSON response

    Raises:
        ApiResponseError: Upstream returned an error payload
        TransportError: Network failure, timeout or non-JSON error response
        MalformedResponseError: Successful response that is not JSON
    """
    method = method.upper()
    if method not in ("GET", "POST", "PUT"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        # Timeout increases with each attempt
        timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
        try:
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError) as e:
            if attempt < max_attempts - 1:
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise TransportError(f"Timeout while connecting to {url}") from e

        except aiohttp.ClientError as e:
            raise TransportError(
                f"Failed to connect to the upstream service. Details: {e}"
            ) from e

    raise TransportError(f"No attempt made for {method} {url}")


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response
    """
    content_type = response.headers.get('Content-Type', '')
    ok = 200 <= response.status < 300

    if 'application/json' not in content_type:
        text = await response.text()
        if ok:
            _LOGGER.warning(
                "Unexpected content type in successful response: %s (status %s) from %s",
                content_type, response.status, url
            )
            raise MalformedResponseError(f"Expected JSON but got {content_type}: {text[:200]}")
        # Non-JSON error response (e.g., HTML error page)
        _LOGGER.warning(
            "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
            url, response.status, content_type, text[:200]
        )
        raise TransportError(
            f"HTTP {response.status} with {content_type or 'no content type'} "
            f"(expected application/json) from {url}",
            response.status,
        )

    try:
        body = await response.json()
    except ValueError as e:
        if ok:
            raise MalformedResponseError(f"Invalid JSON from {url}: {e}") from e
        raise TransportError(f"HTTP {response.status} with invalid JSON from {url}", response.status) from e

    # Mapon reports errors inside a 200 response as well
    if isinstance(body, dict) and body.get("error"):
        raise decode_error_payload(body, response.status)

    if not ok:
        raise decode_error_payload(body if isinstance(body, dict) else {}, response.status)

    return body


def decode_error_payload(body: dict, status: int) -> ApiResponseError:
    """
    Build an ApiResponseError from an upstream or proxy error payload.

    Understands both ``{"error": {"code": n, "msg": "..."}}`` and the flat
    ``{"message": "...", "code": n, "details": "..."}`` shape.
    """
    error = body.get("error")
    if isinstance(error, dict):
        message = error.get("msg") or error.get("message")
        code = error.get("code")
    else:
        message = error if isinstance(error, str) else body.get("message")
        code = body.get("code")
    if code is None:
        code = status

    if not message:
        message = API_ERROR_MESSAGES.get(code, "An unknown error occurred.")
    if body.get("details"):
        message = f"{message}. Details: {body['details']}"

    return ApiResponseError(message, code, status)
