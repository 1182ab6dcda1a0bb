"""Errors raised around remote API calls and their log-friendly diagnostics."""

from typing import Any, Dict

import httpx

MAX_BODY_CHARS = 500


class UnexpectedStatusError(Exception):
    """Raised when the remote API answers with a status outside 200-299."""

    def __init__(self, response: httpx.Response):
        self.response = response
        self.status_code = response.status_code
        super().__init__(f"Unexpected status {response.status_code} from {response.request.method} {response.request.url}")


def _response_body(response: httpx.Response) -> str:
    try:
        text = response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return "<unreadable body>"
    if len(text) > MAX_BODY_CHARS:
        return text[:MAX_BODY_CHARS] + "..."
    return text


def describe_failure(exc: BaseException) -> Dict[str, Any]:
    """Builds a structured diagnostic for a failed call.

    Distinguishes a server that answered with an error status, a request that
    never got a response, several aggregated errors, and anything else.
    """
    if isinstance(exc, (UnexpectedStatusError, httpx.HTTPStatusError)):
        response = exc.response
        return {
            "kind": "response",
            "status": response.status_code,
            "url": str(response.request.url),
            "body": _response_body(response),
        }
    if isinstance(exc, httpx.RequestError):
        try:
            url = str(exc.request.url)
        except RuntimeError:
            url = None
        return {
            "kind": "no_response",
            "error": f"{type(exc).__name__}: {exc}",
            "url": url,
        }
    if isinstance(exc, BaseExceptionGroup):
        return {
            "kind": "aggregate",
            "message": exc.message,
            "errors": [describe_failure(inner) for inner in exc.exceptions],
        }
    return {
        "kind": "unknown",
        "error": f"{type(exc).__name__}: {exc}",
    }
