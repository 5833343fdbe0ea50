"""Exceptions raised by helmsail.

Only execution, timeout and validation failures ever reach callers.
Diagnostic steps (dangling-secret cleanup, event dumps, teardown) log their
failures instead of raising them.
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import datetime as dt


class HelmsailError(Exception):
    """Base exception for all helmsail errors."""


class ExecutableNotFoundError(HelmsailError):
    """Required CLI tool is not installed."""

    def __init__(self, command: str) -> None:
        """Record the missing executable name."""
        self.command = command
        super().__init__(f"Required executable '{command}' not found in PATH")


class ProcessExecutionError(HelmsailError):
    """An external command exited with a non-zero status.

    Attributes
    ----------
    command
        The command line that was executed.
    returncode
        Exit status reported by the process.
    stderr
        Everything the process wrote to stderr, in arrival order.

    """

    def __init__(self, command: str, returncode: int, stderr: str) -> None:
        """Build the message from the command line and captured stderr."""
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"Error while executing script '{command}' "
            f"(exit code {returncode}): {stderr}"
        )


class DnsTimeoutError(HelmsailError, TimeoutError):
    """A host name did not become resolvable in time."""

    def __init__(self, host: str, timeout: dt.timedelta) -> None:
        """Record the host and the timeout that elapsed."""
        self.host = host
        self.timeout = timeout
        super().__init__(
            f"The DNS address {host} could not be resolved within "
            f"{timeout.total_seconds():g} seconds"
        )


class ChartValidationError(HelmsailError):
    """A chart source could not be resolved."""


class RepositoryNotRegisteredError(ChartValidationError):
    """The requested repository URL is missing from ``helm repo list``."""

    def __init__(self, url: str) -> None:
        """Point the caller at ``helm repo add``."""
        self.url = url
        super().__init__(
            "Provided helm repository is not registered in the helm client. "
            f"Execute 'helm repo add <name> {url}' to register it."
        )


class ChartDownloadError(ChartValidationError):
    """``helm pull`` finished but the expected archive is missing."""

    @classmethod
    def missing_archive(cls, archive: str) -> ChartDownloadError:
        """Create the error for an archive absent after a pull."""
        return cls(f"Fail to download the chart from the repository: {archive}")


class ReleaseClosedError(HelmsailError):
    """The release handle has already been torn down."""

    def __init__(self, release_name: str) -> None:
        """Name the closed release."""
        self.release_name = release_name
        super().__init__(f"Release '{release_name}' has already been disposed")


class ConfigError(HelmsailError):
    """Invalid helmsail configuration."""

    @classmethod
    def invalid_value(cls, name: str, value: str) -> ConfigError:
        """Create the error for an unusable environment value.

        Parameters
        ----------
        name
            Environment variable name.
        value
            The rejected raw value.

        Returns
        -------
        ConfigError
            Error naming the variable and value.

        """
        return cls(f"Invalid value for {name}: {value!r}")

    @classmethod
    def empty_binary(cls, name: str) -> ConfigError:
        """Create the error for a blank executable setting."""
        return cls(f"{name} must name an executable, got an empty value")


__all__ = [
    "ChartDownloadError",
    "ChartValidationError",
    "ConfigError",
    "DnsTimeoutError",
    "ExecutableNotFoundError",
    "HelmsailError",
    "ProcessExecutionError",
    "ReleaseClosedError",
    "RepositoryNotRegisteredError",
]
