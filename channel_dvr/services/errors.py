from enum import Enum
from html import escape
from typing import Optional


class ErrorType(Enum):
    NETWORK = "network"
    FETCH = "fetch"
    PARSE = "parse"
    PERSISTENCE = "persistence"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    BACKEND_REJECTED = "backend_rejected"
    RESOLUTION_ERROR = "resolution_error"
    RESOLUTION_UNAVAILABLE = "resolution_unavailable"
    UNKNOWN = "unknown"


CATEGORIES = {
    ErrorType.NETWORK: "feed unreachable",
    ErrorType.FETCH: "feed request failed",
    ErrorType.PARSE: "malformed feed",
    ErrorType.PERSISTENCE: "database error",
    ErrorType.CONNECTION_REFUSED: "backend unreachable",
    ErrorType.TIMEOUT: "backend timed out",
    ErrorType.BACKEND_REJECTED: "backend rejected the download",
    ErrorType.RESOLUTION_ERROR: "no suitable format",
    ErrorType.RESOLUTION_UNAVAILABLE: "resolution service unavailable",
    ErrorType.UNKNOWN: "unexpected error",
}


class DvrError(Exception):
    """Base error carrying a stable category for operator-facing messages."""

    error_type = ErrorType.UNKNOWN

    def __init__(
        self,
        message: str,
        video_title: Optional[str] = None,
        video_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.video_title = video_title
        self.video_id = video_id

    @property
    def category(self) -> str:
        return CATEGORIES.get(self.error_type, "error")

    def to_admin_message(self) -> str:
        """Format error message for admin notification (Telegram HTML)."""
        emoji_map = {
            ErrorType.NETWORK: "🌐",
            ErrorType.FETCH: "📡",
            ErrorType.PARSE: "🧩",
            ErrorType.PERSISTENCE: "💾",
            ErrorType.CONNECTION_REFUSED: "🔌",
            ErrorType.TIMEOUT: "⏱️",
            ErrorType.BACKEND_REJECTED: "🚫",
            ErrorType.RESOLUTION_ERROR: "🎞️",
            ErrorType.RESOLUTION_UNAVAILABLE: "🔒",
            ErrorType.UNKNOWN: "❓",
        }
        emoji = emoji_map.get(self.error_type, "❓")

        lines = [f"{emoji} <b>Error: {self.category}</b>"]

        if self.video_title:
            lines.append(f"Video: {escape(self.video_title, quote=False)}")
        if self.video_id:
            lines.append(f"https://youtu.be/{self.video_id}")

        lines.append(f"\n{escape(self.message, quote=False)}")

        solution = self._get_solution()
        if solution:
            lines.append(f"\n💡 <b>Fix:</b> {solution}")

        return "\n".join(lines)

    def _get_solution(self) -> str:
        solutions = {
            ErrorType.NETWORK: "Check the server's internet connection.",
            ErrorType.FETCH: "Check that the channel id is correct and the channel still exists.",
            ErrorType.CONNECTION_REFUSED: "Check your settings and make sure the download backend is running.",
            ErrorType.TIMEOUT: "The backend did not answer in time. Check its address in the settings.",
            ErrorType.BACKEND_REJECTED: "Check the backend's own logs for the reason.",
            ErrorType.RESOLUTION_ERROR: "Make sure yt-dlp is installed and up to date.",
            ErrorType.RESOLUTION_UNAVAILABLE: "The video may be age-restricted, private or region-blocked.",
        }
        return solutions.get(self.error_type, "")


class NetworkError(DvrError):
    error_type = ErrorType.NETWORK


class FetchError(DvrError):
    error_type = ErrorType.FETCH

    def __init__(self, status_code: int, reason: str) -> None:
        super().__init__(f"HTTP {status_code}: {reason}")
        self.status_code = status_code
        self.reason = reason


class ParseError(DvrError):
    error_type = ErrorType.PARSE


class PersistenceError(DvrError):
    error_type = ErrorType.PERSISTENCE


class ConnectionRefused(DvrError):
    error_type = ErrorType.CONNECTION_REFUSED


class Timeout(DvrError):
    error_type = ErrorType.TIMEOUT


class BackendRejected(DvrError):
    error_type = ErrorType.BACKEND_REJECTED

    def __init__(self, status: Optional[int], message: str, **kwargs) -> None:
        text = f"{status} {message}" if status is not None else message
        super().__init__(text, **kwargs)
        self.status = status
        self.reason = message


class ResolutionError(DvrError):
    error_type = ErrorType.RESOLUTION_ERROR


class ResolutionUnavailable(DvrError):
    error_type = ErrorType.RESOLUTION_UNAVAILABLE
