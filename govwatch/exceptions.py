"""Error taxonomy shared across the sampling, correlation, and alert layers.

- TransientFetchError: a limit or status fetch failed; callers log and move on.
- ConfigurationError: a component was built with missing or invalid settings.
- TerminalProcessError: the external process exited non-zero (session failure).
- ChannelDeliveryError: a notification channel failed to deliver one alert.
"""


class GovwatchError(Exception):
    """Base exception for govwatch errors."""


class TransientFetchError(GovwatchError):
    """Raised when fetching limits or deployment status fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(GovwatchError):
    """Raised when required configuration is missing or inconsistent."""


class TerminalProcessError(GovwatchError):
    """Raised when the external process ends with a non-zero exit code."""

    def __init__(
        self,
        message: str,
        exit_code: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr


class ChannelDeliveryError(GovwatchError):
    """Raised by a notification channel when delivery fails."""

    def __init__(self, channel: str, message: str):
        super().__init__(f"{channel}: {message}")
        self.channel = channel
