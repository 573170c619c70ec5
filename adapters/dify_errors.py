"""Error taxonomy for the Dify client adapters.

Every failure surfaced by the client derives from DifyError so callers can
catch one type. None of these are retried internally.
"""

from typing import Optional


class DifyError(Exception):
    """Structured error with a machine-readable code."""

    code = "dify_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": str(self),
            "status_code": self.status_code,
        }


class InvalidURLError(DifyError):
    code = "invalid_url"


class DifyHTTPError(DifyError):
    """Non-success status on a blocking or stream-initiating request."""

    code = "http_error"

    def __init__(self, status_code: int, status_text: str = "", detail: str = ""):
        message = f"Request failed: {status_code} {status_text}".rstrip()
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message, status_code=status_code)
        self.status_text = status_text
        self.detail = detail

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["status_text"] = self.status_text
        return result


class EmptyBodyError(DifyError):
    code = "empty_body"


class MalformedFrameError(DifyError):
    """A data frame whose payload is not valid JSON. Fatal to the stream."""

    code = "malformed_frame"

    def __init__(self, frame: str):
        super().__init__(f"Invalid chunk format: {frame[:200]!r}")
        self.frame = frame


class StreamReadError(DifyError):
    code = "stream_read_error"


class ResponseDecodeError(DifyError):
    code = "invalid_response"


class DifyConnectionError(DifyError):
    """Timeout or connection failure before a response arrived."""

    code = "network_error"
