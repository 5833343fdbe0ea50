"""Drive Helm and kubectl from Python to stand up throwaway releases.

The package wraps the two command-line tools rather than the Kubernetes API.
It covers four areas:

* **Chart sources** - local paths, repository references, and a download
  cache built on ``helm pull``.
* **Installation** - idempotent ``helm upgrade --install`` with dangling
  release repair, stale index retry, and an event dump after each attempt.
* **Release handles** - background ``kubectl port-forward`` tunnels, ``exec``
  in the release's pods, and uninstall on close.
* **Cluster context** - connection flags shared by every call, plus DNS
  polling for in-cluster service names.

Quick example
-------------

Install a local chart, forward a port and tear everything down::

    import datetime as dt

    from helmsail import ChartFromLocalPath, ChartInstaller
    from helmsail.presets import create_default_configuration

    installer = ChartInstaller()
    async with await installer.install(
        ChartFromLocalPath("./charts/mssql"),
        "r1",
        overrides=create_default_configuration(),
        timeout=dt.timedelta(minutes=2),
    ) as release:
        port = await release.start_port_forward_for_service("r1-mssql", 1433)

"""

from __future__ import annotations

from .charts import (
    CachedChartFromRepository,
    Chart,
    ChartFromLocalPath,
    ChartFromRepository,
    HelmRepository,
)
from .config import HelmsailSettings
from .context import KubernetesContext
from .dns import wait_for_dns_availability
from .errors import (
    ChartDownloadError,
    ChartValidationError,
    ConfigError,
    DnsTimeoutError,
    ExecutableNotFoundError,
    HelmsailError,
    ProcessExecutionError,
    ReleaseClosedError,
    RepositoryNotRegisteredError,
)
from .installer import ChartInstaller
from .parameters import (
    CommandParameterBuilder,
    HelmCommandParameterBuilder,
    KubectlCommandParameterBuilder,
)
from .process import DEFAULT_OUTPUT_SINK, ConsoleOutputSink, OutputSink, ProcessLauncher
from .release import PortForward, Release

__all__ = [
    "DEFAULT_OUTPUT_SINK",
    "CachedChartFromRepository",
    "Chart",
    "ChartDownloadError",
    "ChartFromLocalPath",
    "ChartFromRepository",
    "ChartInstaller",
    "ChartValidationError",
    "CommandParameterBuilder",
    "ConfigError",
    "ConsoleOutputSink",
    "DnsTimeoutError",
    "ExecutableNotFoundError",
    "HelmCommandParameterBuilder",
    "HelmRepository",
    "HelmsailError",
    "HelmsailSettings",
    "KubectlCommandParameterBuilder",
    "KubernetesContext",
    "OutputSink",
    "PortForward",
    "ProcessExecutionError",
    "ProcessLauncher",
    "Release",
    "ReleaseClosedError",
    "RepositoryNotRegisteredError",
    "wait_for_dns_availability",
]
