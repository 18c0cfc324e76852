"""Unified error handling for the TrueNAS SDK.

Every failure the client surfaces is a subclass of ``TrueNASSDKError``. Each
error keeps a human readable message and, where one exists, the underlying
exception as ``cause`` so that transport level detail is never lost.

The taxonomy follows the lifecycle of a session:

- ``ConfigError``: the configuration is unusable, raised before any I/O
- ``ConnectError`` / ``HandshakeTimeout``: the socket could not be opened
- ``AuthError`` / ``AuthTimeout``: the appliance rejected or ignored the login
- ``NotConnected``: an operation needed a ready session and there was none
- ``RequestTimeout``: a call got no response before its deadline
- ``NotFound``: a filtered query returned no rows
- ``RemoteError``: the appliance answered a call with an error frame
"""

from typing import Any, Optional


class TrueNASSDKError(Exception):
    """Base exception for all TrueNAS SDK errors."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause:
            return f"{self.message}: {self.cause}"
        return self.message

    def __repr__(self) -> str:
        if self.cause:
            return f"{self.__class__.__name__}('{self.message}', cause={self.cause!r})"
        return f"{self.__class__.__name__}('{self.message}')"


class ConfigError(TrueNASSDKError):
    """Error that occurs due to configuration issues.

    Raised when a required setting is missing or a value fails validation.
    Always raised before a connection is attempted.

    Examples:
        ```python
        try:
            config = ClientConfig.from_env()
        except ConfigError as e:
            print(f"fix your environment: {e}")
        ```
    """

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"configuration error: {message}", cause)

    @classmethod
    def missing_field(cls, name: str) -> "ConfigError":
        """Create a ConfigError for a missing required setting."""
        return cls(f"missing required setting: {name}")

    @classmethod
    def missing_env_var(cls, var_name: str) -> "ConfigError":
        """Create a ConfigError for a missing environment variable."""
        return cls(f"missing environment variable: {var_name}")


class ConnectError(TrueNASSDKError):
    """The websocket to the appliance could not be opened."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"connect failed: {message}", cause)


class HandshakeTimeout(ConnectError):
    """The opening handshake did not complete in time.

    A subclass of ``ConnectError`` so callers that only care whether the
    connection came up can catch a single type.
    """

    def __init__(self, timeout: float, cause: Optional[Exception] = None) -> None:
        self.timeout = timeout
        TrueNASSDKError.__init__(self, f"handshake timed out after {timeout}s", cause)


class AuthError(TrueNASSDKError):
    """The appliance rejected the API key."""

    def __init__(self, message: str, cause: Optional[Exception] = None) -> None:
        super().__init__(f"authentication failed: {message}", cause)


class AuthTimeout(AuthError):
    """No answer to the login request arrived in time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        TrueNASSDKError.__init__(self, f"authentication timed out after {timeout}s")


class NotConnected(TrueNASSDKError):
    """An operation required a ready session but none was available."""

    def __init__(self, message: str = "websocket is not connected", cause: Optional[Exception] = None) -> None:
        super().__init__(message, cause)


class RequestTimeout(TrueNASSDKError):
    """A remote call received no response before its deadline."""

    def __init__(self, method: str, timeout: float) -> None:
        self.method = method
        self.timeout = timeout
        super().__init__(f"request timeout: {method} got no response within {timeout}s")


class NotFound(TrueNASSDKError):
    """A filtered query returned zero rows.

    Examples:
        ```python
        try:
            app = await client.get_app_state("plex")
        except NotFound as e:
            assert "plex" in str(e)
        ```
    """

    def __init__(self, resource: str, key: Any) -> None:
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} {key} not found")


class RemoteError(TrueNASSDKError):
    """The appliance answered a call with an error frame, or with a result
    that does not have the expected shape.

    For error frames ``str()`` is the peer supplied message, passed through
    verbatim.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        method: Optional[str] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        self.code = code
        self.method = method
        super().__init__(message, cause)


def format_error_chain(error: Exception) -> str:
    """Format an error with its full chain of causes.

    Args:
        error: The exception to format

    Returns:
        One line per error in the chain, outermost first
    """
    lines = []
    current: Optional[BaseException] = error

    while current is not None:
        lines.append(f"  {type(current).__name__}: {current}")

        if getattr(current, "cause", None) is not None:
            current = current.cause
        elif current.__cause__ is not None:
            current = current.__cause__
        else:
            current = None

    return "\n".join(lines)
