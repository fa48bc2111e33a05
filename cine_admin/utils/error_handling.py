"""Error types and user-facing error reporting for cine-admin.

Read failures stay inside the collection caches (logged, last snapshot kept).
Write failures travel up to the caller, which reports them as a blocking
alert carrying the backend message verbatim.
"""

import functools
import logging
from typing import Any, Callable, Optional

import click
from rich.console import Console
from rich.panel import Panel

logger = logging.getLogger(__name__)


class CineAdminError(Exception):
    """Base class for all cine-admin errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RemoteStoreError(CineAdminError):
    """The hosted database rejected a request or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[str] = None,
        hint: Optional[str] = None,
    ):
        """Initialize remote store error.

        Args:
            message: Backend message, kept verbatim
            status_code: HTTP status code (None for transport failures)
            code: Postgres/PostgREST error code
            details: Extra details reported by the backend
            hint: Backend hint for fixing the request
        """
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.details = details
        self.hint = hint


class FetchError(CineAdminError):
    """A read path (full collection query) failed."""


class WriteError(CineAdminError):
    """A create, update or delete failed."""


class AuthenticationError(CineAdminError):
    """Credentials were rejected or the user is not an administrator."""


class ConfigurationError(CineAdminError):
    """Configuration is missing or invalid."""


def create_user_friendly_error(error: Exception) -> str:
    """Turn an exception into a message suitable for the terminal.

    Args:
        error: Exception raised by a command

    Returns:
        Human readable message
    """
    if isinstance(error, (FetchError, WriteError, RemoteStoreError)):
        return error.message
    if isinstance(error, AuthenticationError):
        return f"Access denied: {error.message}"
    if isinstance(error, ConfigurationError):
        return f"Configuration problem: {error.message}"
    if isinstance(error, FileNotFoundError):
        return f"File not found: {error.filename}"
    if isinstance(error, PermissionError):
        return f"Permission denied: {error.filename}"
    if isinstance(error, KeyError):
        return f"Unknown key: {error.args[0]}"
    if isinstance(error, ValueError):
        return f"Invalid value: {error}"
    return str(error) or error.__class__.__name__


class ErrorHandler:
    """Reports command errors as blocking alerts."""

    def __init__(self, verbose: bool = False, console: Optional[Console] = None):
        """Initialize error handler.

        Args:
            verbose: Show exception details below the alert
            console: Rich console used for output (stderr by default)
        """
        self.verbose = verbose
        self.console = console or Console(stderr=True)

    def alert(self, error: Exception, title: str = "Error") -> None:
        """Show a red alert panel for an error.

        Args:
            error: Exception to report
            title: Panel title
        """
        self.console.print(
            Panel(
                create_user_friendly_error(error),
                title=f"[bold red]{title}[/bold red]",
                border_style="red",
            )
        )
        if self.verbose:
            self.console.print(f"[dim]Details: {error!r}[/dim]")


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator for click commands: report cine-admin errors and exit 1."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except CineAdminError as e:
            ctx = click.get_current_context(silent=True)
            handler = None
            if ctx is not None and isinstance(ctx.obj, dict):
                handler = ctx.obj.get("error_handler")
            (handler or ErrorHandler()).alert(e, title=_alert_title(e))
            logger.debug("command failed", exc_info=True)
            raise SystemExit(1)

    return wrapper


def _alert_title(error: Exception) -> str:
    if isinstance(error, WriteError):
        return "Could not save changes"
    if isinstance(error, FetchError):
        return "Could not load data"
    if isinstance(error, AuthenticationError):
        return "Authentication required"
    return "Error"
