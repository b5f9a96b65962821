"""
Error taxonomy for the generation core

Every user-facing failure ends up as a short message on the controller;
the classes only exist so callers can tell the failure kinds apart.
"""

from typing import Optional


class PanelError(Exception):
    """Base class for all generation failures"""


class ConfigurationError(PanelError):
    """Backend endpoint missing or unusable"""


class NoSelectionError(PanelError):
    """Host reported no active selection"""


class BackendRequestError(PanelError):
    """Backend answered with a non-2xx status"""

    def __init__(self, status_code: int, body: str, elapsed_ms: Optional[int] = None, timeout_ms: Optional[int] = None):
        self.status_code = status_code
        self.body = body
        self.elapsed_ms = elapsed_ms
        self.timeout_ms = timeout_ms
        detail = f"Request failed ({status_code})"
        if elapsed_ms is not None:
            detail += f" after {elapsed_ms}ms"
        if timeout_ms is not None:
            detail += f" (timeout {timeout_ms}ms)"
        super().__init__(f"{detail}: {body}")


class BackendTimeoutError(PanelError):
    """Request did not settle within its timeout"""

    def __init__(self, timeout_ms: int):
        self.timeout_ms = timeout_ms
        super().__init__(f"Request timed out after {timeout_ms}ms")


class EmptyResultError(PanelError):
    """Backend returned a successful response without images"""

    def __init__(self, message: str = "No usable images were returned by the backend"):
        super().__init__(message)


class BatchAbortedError(PanelError):
    """A batch item failed; the remaining queue was not processed"""

    def __init__(self, item_name: str, message: Optional[str] = None):
        self.item_name = item_name
        super().__init__(message or f"batch item «{item_name}» returned no images")
