"""
Centralized Error Handling Module for the Full-Page Capture service

Provides the capture error hierarchy, consistent error responses, logging,
and user-friendly messages.
"""

import logging
import traceback
from typing import Dict, Any, List, Optional
from fastapi import status
from fastapi.responses import JSONResponse

logger = logging.getLogger("page_stitcher")


# =============================================================================
# ERROR HINTS - User-friendly troubleshooting suggestions
# =============================================================================

ERROR_HINTS = {
    "measurement_failed": {
        "message": "Could not measure the page",
        "hint": "The page may still be loading. The capture continued with a single viewport; retry once the page has settled.",
        "docs": "/docs/measurement"
    },
    "capture_timeout": {
        "message": "Capturing the visible area timed out",
        "hint": "The browser may be busy rendering. Increase STITCH_CAPTURE_TIMEOUT or reduce page activity before capturing.",
        "docs": "/docs/capture-timeouts"
    },
    "capture_transport": {
        "message": "Lost contact with the browser while capturing",
        "hint": "Check the browser is still running and the page has not been closed or navigated away.",
        "docs": "/docs/browser-connection"
    },
    "scroll_blocked": {
        "message": "The page did not scroll to every part of the document",
        "hint": "The page may lock scrolling (modal dialogs, scroll-snap containers) or report a larger size than it can scroll. Close overlays and try again.",
        "docs": "/docs/scrolling"
    },
    "capture_empty": {
        "message": "The browser returned an empty screenshot",
        "hint": "The tab may be hidden or minimised. Bring it to the foreground and try again.",
        "docs": "/docs/capture-empty"
    },
    "capture_cancelled": {
        "message": "Capture was cancelled",
        "hint": "No screenshot was produced. Start a new capture when ready.",
        "docs": "/docs/cancellation"
    },
    "decode_failed": {
        "message": "A captured image could not be decoded",
        "hint": "The capture data was corrupt. Retry the capture; if it keeps failing switch the format to PNG.",
        "docs": "/docs/formats"
    },
    "composition_failed": {
        "message": "Failed to assemble the full-page image",
        "hint": "The page may be too large for the configured canvas limits. Lower STITCH_MAX_CANVAS_AREA to split output into parts.",
        "docs": "/docs/canvas-limits"
    },
    "packaging_failed": {
        "message": "Failed to encode the screenshot",
        "hint": "Check the requested format and quality (1-100).",
        "docs": "/docs/formats"
    },
    "busy": {
        "message": "Another capture is already running",
        "hint": "Wait for the running capture to finish, or cancel it first.",
        "docs": "/docs/cancellation"
    },
}


def get_error_with_hint(error_type: str, original_message: str = "") -> dict:
    """
    Get error message with troubleshooting hint.

    Args:
        error_type: Key from ERROR_HINTS dictionary
        original_message: Original error message to include

    Returns:
        Dict with error, hint, and optional docs link
    """
    hint_info = ERROR_HINTS.get(error_type, {})
    return {
        "error": original_message or hint_info.get("message", "Unknown error"),
        "hint": hint_info.get("hint", ""),
        "docs": hint_info.get("docs", "")
    }


def classify_error(error_message: str) -> str:
    """
    Classify an error message to determine the appropriate hint type.

    Args:
        error_message: The error message to classify

    Returns:
        Error type key for ERROR_HINTS lookup
    """
    msg = error_message.lower()

    if "cancel" in msg or "aborted" in msg:
        return "capture_cancelled"
    if "not reached" in msg:
        return "scroll_blocked"
    if "timeout" in msg or "timed out" in msg:
        return "capture_timeout"
    if "empty" in msg:
        return "capture_empty"
    if "decode" in msg or "corrupt" in msg:
        return "decode_failed"
    if "composit" in msg or "canvas" in msg:
        return "composition_failed"
    if "encode" in msg or "packag" in msg:
        return "packaging_failed"
    if "measure" in msg:
        return "measurement_failed"
    if "transport" in msg or "connection" in msg or "browser" in msg or "closed" in msg:
        return "capture_transport"
    if "already running" in msg or "busy" in msg:
        return "busy"

    return ""


class PageCaptureError(Exception):
    """Base exception for all full-page capture errors"""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)


class MeasurementError(PageCaptureError):
    """Raised when page extents cannot be measured (recoverable)"""

    def __init__(self, message: str):
        super().__init__(message, code="MEASUREMENT_ERROR")


class RetryableCaptureError(PageCaptureError):
    """A single capture attempt failed in a way worth retrying"""

    kind = "retryable"


class CaptureTimeout(RetryableCaptureError):
    """Raised when one capture attempt exceeds its timeout"""

    kind = "timeout"

    def __init__(self, message: str, timeout_s: Optional[float] = None):
        super().__init__(message, code="CAPTURE_TIMEOUT", details={"timeout_s": timeout_s})


class CaptureTransportError(RetryableCaptureError):
    """Raised when the host fails to deliver a capture"""

    kind = "transport-error"

    def __init__(self, message: str):
        super().__init__(message, code="CAPTURE_TRANSPORT_ERROR")


class CaptureEmptyResponse(RetryableCaptureError):
    """Raised when the host returns no image data"""

    kind = "empty-response"

    def __init__(self, message: str = "Capture returned an empty response"):
        super().__init__(message, code="CAPTURE_EMPTY_RESPONSE")


class CaptureFailure(PageCaptureError):
    """
    Raised when a tile cannot be captured; fatal to the run.

    reason is one of "attempts_exhausted", "scroll_mismatch" (the viewport
    never reached the tile), "host_error" (the host raised something that
    is not retryable) or "run_timeout".
    """

    def __init__(
        self,
        tile_index: int,
        attempts: Optional[List[Any]] = None,
        message: Optional[str] = None,
        reason: str = "attempts_exhausted",
    ):
        self.tile_index = tile_index
        self.attempts = list(attempts or [])
        self.reason = reason
        last_kind = self.attempts[-1].error_kind if self.attempts else None
        super().__init__(
            message or f"Tile {tile_index} failed after {len(self.attempts)} attempt(s) (last error: {last_kind})",
            code="CAPTURE_FAILURE",
            details={
                "tile_index": tile_index,
                "attempts": [a.to_dict() for a in self.attempts],
                "reason": reason,
            },
        )


class RunTimeout(CaptureFailure):
    """Raised at a tile boundary once the whole run has exceeded run_timeout_s"""

    def __init__(self, tile_index: int, timeout_s: float, captured: int):
        self.timeout_s = timeout_s
        self.captured = captured
        super().__init__(
            tile_index,
            message=f"Run timed out after {timeout_s}s before tile {tile_index} ({captured} tiles captured)",
            reason="run_timeout",
        )
        self.code = "RUN_TIMEOUT"
        self.details["timeout_s"] = timeout_s
        self.details["captured"] = captured


class CaptureCancelled(PageCaptureError):
    """Raised when a run is aborted at a tile boundary"""

    def __init__(self, captured: int, planned: int):
        self.captured = captured
        self.planned = planned
        super().__init__(
            f"Capture cancelled after {captured} of {planned} tiles",
            code="CAPTURE_CANCELLED",
            details={"captured": captured, "planned": planned},
        )


class DecodeError(PageCaptureError):
    """Raised when a captured raster cannot be decoded; not retried"""

    def __init__(self, message: str, tile_index: Optional[int] = None):
        self.tile_index = tile_index
        super().__init__(message, code="DECODE_ERROR", details={"tile_index": tile_index})


class CompositionError(PageCaptureError):
    """Raised when tiles cannot be assembled onto the output canvases"""

    def __init__(self, message: str):
        super().__init__(message, code="COMPOSITION_ERROR")


class PackagingError(PageCaptureError):
    """Raised when a canvas cannot be encoded into an artifact"""

    def __init__(self, message: str):
        super().__init__(message, code="PACKAGING_ERROR")


def create_error_response(
    error: Exception,
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
    include_traceback: bool = False,
) -> JSONResponse:
    """
    Create a standardized error response

    Args:
        error: The exception that occurred
        status_code: HTTP status code
        include_traceback: Include full traceback in response (debug only)

    Returns:
        JSONResponse with error details
    """
    error_response = {
        "success": False,
        "error": {"message": str(error), "type": error.__class__.__name__},
    }

    if isinstance(error, PageCaptureError):
        error_response["error"]["code"] = error.code
        error_response["error"]["details"] = error.details

    hint_type = classify_error(str(error))
    if hint_type:
        hint = get_error_with_hint(hint_type)
        error_response["error"]["hint"] = hint["hint"]
        error_response["error"]["docs"] = hint["docs"]

    if include_traceback:
        error_response["error"]["traceback"] = traceback.format_exc()

    logger.error(f"{error.__class__.__name__}: {error}", exc_info=status_code >= 500)

    return JSONResponse(status_code=status_code, content=error_response)


def handle_api_error(error: Exception) -> JSONResponse:
    """
    Handle API errors with appropriate status codes

    Args:
        error: The exception to handle

    Returns:
        JSONResponse with appropriate status code
    """
    if isinstance(error, CaptureCancelled):
        return create_error_response(error, status.HTTP_409_CONFLICT)

    elif isinstance(error, ValueError):
        return create_error_response(error, status.HTTP_400_BAD_REQUEST)

    elif isinstance(error, RunTimeout):
        return create_error_response(error, status.HTTP_504_GATEWAY_TIMEOUT)

    elif isinstance(error, CaptureFailure):
        last = error.attempts[-1].error_kind if error.attempts else None
        if last == CaptureTimeout.kind:
            return create_error_response(error, status.HTTP_504_GATEWAY_TIMEOUT)
        return create_error_response(error, status.HTTP_502_BAD_GATEWAY)

    elif isinstance(error, RetryableCaptureError):
        return create_error_response(error, status.HTTP_502_BAD_GATEWAY)

    elif isinstance(error, (DecodeError, CompositionError, PackagingError)):
        return create_error_response(error, status.HTTP_500_INTERNAL_SERVER_ERROR)

    else:
        return create_error_response(error, status.HTTP_500_INTERNAL_SERVER_ERROR)


def get_user_friendly_message(error: Exception) -> str:
    """
    Get a user-friendly error message for notifications

    Args:
        error: The exception

    Returns:
        User-friendly error message
    """
    if isinstance(error, CaptureCancelled):
        return "Screenshot cancelled. No image was saved."

    elif isinstance(error, RunTimeout):
        return (
            f"The screenshot took longer than {error.timeout_s:g}s and was stopped at part "
            f"{error.tile_index + 1}. No image was saved."
        )

    elif isinstance(error, CaptureFailure) and error.reason == "scroll_mismatch":
        return (
            f"Could not scroll to part {error.tile_index + 1} of the page, so no image was saved. "
            f"The page may be blocking scrolling."
        )

    elif isinstance(error, CaptureFailure) and error.reason == "host_error":
        return (
            f"The browser reported an error while capturing part {error.tile_index + 1} of the page. "
            f"Please try again."
        )

    elif isinstance(error, CaptureFailure):
        return (
            f"Failed to capture part {error.tile_index + 1} of the page after "
            f"{len(error.attempts)} attempts. Please try again."
        )

    elif isinstance(error, CaptureTimeout):
        return "The browser took too long to capture the page. Please try again."

    elif isinstance(error, DecodeError):
        return "A captured image was corrupt, so no screenshot was saved. Please try again."

    elif isinstance(error, CompositionError):
        return f"Failed to assemble the full-page screenshot: {error.message}"

    elif isinstance(error, PackagingError):
        return f"Failed to save the screenshot: {error.message}"

    else:
        return f"Failed to capture screenshot: {str(error)}"


def create_success_response(
    data: Any = None,
    message: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create a standardized success response

    Args:
        data: The response data payload
        message: Optional success message

    Returns:
        Dict with success response format: {success: True, data: ..., message: ...}
    """
    response = {"success": True}

    if data is not None:
        response["data"] = data

    if message is not None:
        response["message"] = message

    return response


class ErrorContext:
    """
    Context manager for error handling

    Usage:
        with ErrorContext("encoding artifact", raise_as=PackagingError):
            # code that might fail
            pass
    """

    def __init__(self, operation: str, raise_as: type = PageCaptureError):
        self.operation = operation
        self.raise_as = raise_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None:
            logger.error(f"Error during {self.operation}: {exc_val}", exc_info=True)
            if not isinstance(exc_val, PageCaptureError):
                raise self.raise_as(f"Failed {self.operation}: {exc_val}") from exc_val
        return False
