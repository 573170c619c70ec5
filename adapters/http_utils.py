"""Request-building helpers shared by every Dify endpoint wrapper.

Provides:
- build_url: base URL + relative path + query params
- create_headers: bearer auth and JSON content type
- handle_response: whole-body JSON or a status-carrying error
- build_multipart: httpx files/data pair for uploads
"""

import json
from typing import IO, Any, Dict, Mapping, Optional, Tuple, Union

import httpx

from config_loader import redact_string
from dify_errors import DifyHTTPError, InvalidURLError, ResponseDecodeError

FileContent = Union[bytes, IO[bytes]]


def build_url(
    base_url: str,
    path: str,
    params: Optional[Mapping[str, Any]] = None,
) -> str:
    """Join path onto base_url, keeping every segment of base_url.

    base_url is treated as a directory (implicit trailing slash) and a
    leading '/' on path is ignored, so "https://h/v1" + "/p" gives
    "https://h/v1/p". Params with None values are omitted.
    """
    try:
        base = httpx.URL(base_url if base_url.endswith("/") else f"{base_url}/")
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidURLError(f"Invalid base URL {base_url!r}: {e}") from e

    if base.scheme not in ("http", "https") or not base.host:
        raise InvalidURLError(f"Base URL must be an absolute http(s) URL: {base_url!r}")

    try:
        url = base.join(path.lstrip("/"))
    except httpx.InvalidURL as e:
        raise InvalidURLError(f"Invalid path {path!r}: {e}") from e

    if params:
        present = {key: value for key, value in params.items() if value is not None}
        if present:
            url = url.copy_merge_params(present)

    return str(url)


def create_headers(
    api_key: str,
    extra_headers: Optional[Mapping[str, str]] = None,
    include_content_type: bool = True,
) -> Dict[str, str]:
    """Build the auth header set. extra_headers win on key collision.

    Header names compare case-insensitively, so {"authorization": ...}
    replaces the built-in Authorization rather than sitting beside it.
    """
    headers: Dict[str, str] = {"Authorization": f"Bearer {api_key}"}
    if extra_headers:
        _merge_headers(headers, extra_headers)

    if include_content_type:
        _merge_headers(headers, {"Content-Type": "application/json"})

    return headers


def _merge_headers(headers: Dict[str, str], overlay: Mapping[str, str]) -> None:
    for key, value in overlay.items():
        for existing in [name for name in headers if name.lower() == key.lower()]:
            del headers[existing]
        headers[key] = value


def handle_response(response: httpx.Response) -> Any:
    """Return the parsed JSON body of a read response, or raise.

    Non-2xx statuses raise DifyHTTPError; a 2xx body that is not JSON
    raises ResponseDecodeError.
    """
    raise_for_status(response)

    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ResponseDecodeError(
            f"Non-JSON response body: {redact_string(response.text[:200])}",
            status_code=response.status_code,
        ) from e


def raise_for_status(response: httpx.Response) -> None:
    """Raise DifyHTTPError for a non-2xx response. The body must be read."""
    if not response.is_success:
        raise DifyHTTPError(
            response.status_code,
            response.reason_phrase,
            _safe_error_body(response),
        )


def _safe_error_body(response: httpx.Response) -> str:
    """Short, redacted error description from a Dify error body ({code, message, status})."""
    return redact_string(_error_excerpt(response))


def _error_excerpt(response: httpx.Response) -> str:
    try:
        data = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text[:200] if response.text else ""

    if isinstance(data, dict):
        message = data.get("message")
        code = data.get("code")
        if message and code:
            return f"[{code}] {message}"[:200]
        if message:
            return str(message)[:200]
    return response.text[:200]


def build_multipart(
    file: FileContent,
    filename: str,
    user: str,
    mime_type: Optional[str] = None,
) -> Tuple[Dict[str, tuple], Dict[str, str]]:
    """Build the (files, data) pair httpx needs for a multipart upload."""
    if mime_type:
        file_part: tuple = (filename, file, mime_type)
    else:
        file_part = (filename, file)
    return {"file": file_part}, {"user": user}
