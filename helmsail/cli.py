"""Command-line entry point for helmsail.

Usage:
    helmsail install ./charts/mssql r1 --values values.yaml --timeout 120
    helmsail uninstall r1
    helmsail pull https://charts.bitnami.com/bitnami nginx 19.0.2 --use-local

Environment variables:
    HELMSAIL_HELM          - Helm executable (default: helm)
    HELMSAIL_KUBECTL       - kubectl executable (default: kubectl)
    HELMSAIL_LOG_LEVEL     - femtologging level (default: INFO)
    HELMSAIL_OVERRIDES_DIR - Directory for generated values files
    HELMSAIL_NAMESPACE     - Default namespace
    HELMSAIL_KUBE_CONTEXT  - Default kubeconfig context
"""

from __future__ import annotations

import asyncio
import datetime as dt
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from helmsail.charts import (
    CachedChartFromRepository,
    ChartFromLocalPath,
    HelmRepository,
)
from helmsail.config import HelmsailSettings
from helmsail.context import KubernetesContext
from helmsail.errors import ConfigError, HelmsailError
from helmsail.installer import ChartInstaller
from helmsail.logging import configure_logging, get_logger, log_exception
from helmsail.process import ProcessLauncher

logger = get_logger(__name__)

YAML_VERSION = (1, 2)

app = App(
    name="helmsail",
    help="Install, inspect and remove Helm releases for test environments",
    version="0.1.0",
)


def load_values(path: Path) -> object:
    """Load a YAML or JSON values file into plain Python objects.

    Raises
    ------
    ConfigError
        If the file cannot be read or parsed.

    """
    yaml = YAML(typ="safe")
    yaml.version = YAML_VERSION
    yaml.allow_duplicate_keys = False
    try:
        return yaml.load(path.read_text(encoding="utf-8"))
    except (OSError, YAMLError) as exc:
        msg = f"failed to load values file {path}: {exc}"
        raise ConfigError(msg) from exc


def _bootstrap() -> HelmsailSettings:
    settings = HelmsailSettings.from_env()
    _, invalid = configure_logging(settings.log_level)
    if invalid:
        print(
            f"Unknown HELMSAIL_LOG_LEVEL {settings.log_level!r}, using INFO",
            file=sys.stderr,
        )
    return settings


def _report(exc: HelmsailError) -> int:
    log_exception(logger, "helmsail command failed", exc)
    print(f"error: {exc}", file=sys.stderr)
    return 1


@app.command
def install(  # noqa: PLR0913
    chart: Path,
    release: str,
    *,
    values: Path | None = None,
    timeout: float | None = None,
    namespace: typ.Annotated[
        str | None, Parameter(env_var="HELMSAIL_NAMESPACE")
    ] = None,
    kube_context: typ.Annotated[
        str | None, Parameter(env_var="HELMSAIL_KUBE_CONTEXT")
    ] = None,
) -> int:
    """Install a local chart as ``release``, replacing any earlier release.

    The release is left running; remove it with ``helmsail uninstall``.

    Args:
        chart: Chart directory or ``.tgz`` archive.
        release: Helm release name.
        values: YAML or JSON file with value overrides.
        timeout: Seconds Helm may wait for the release to become ready.
        namespace: Target namespace.
        kube_context: kubeconfig context to use.

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    try:
        settings = _bootstrap()
        overrides = load_values(values) if values is not None else None
        context = KubernetesContext(namespace=namespace, context=kube_context)
        installer = ChartInstaller(settings=settings)
        asyncio.run(
            installer.install(
                ChartFromLocalPath(chart),
                release,
                overrides=overrides,
                timeout=None if timeout is None else dt.timedelta(seconds=timeout),
                context=context,
            )
        )
    except HelmsailError as exc:
        return _report(exc)

    print(f"Release '{release}' installed.")
    return 0


@app.command
def uninstall(
    release: str,
    *,
    namespace: typ.Annotated[
        str | None, Parameter(env_var="HELMSAIL_NAMESPACE")
    ] = None,
    kube_context: typ.Annotated[
        str | None, Parameter(env_var="HELMSAIL_KUBE_CONTEXT")
    ] = None,
) -> int:
    """Uninstall ``release`` and wait for its resources to go.

    Args:
        release: Helm release name.
        namespace: Namespace of the release.
        kube_context: kubeconfig context to use.

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    try:
        settings = _bootstrap()
        context = KubernetesContext(namespace=namespace, context=kube_context)
        asyncio.run(ChartInstaller(settings=settings).uninstall(release, context))
    except HelmsailError as exc:
        return _report(exc)

    print(f"Release '{release}' uninstalled.")
    return 0


@app.command
def pull(
    repo_url: str,
    chart: str,
    version: str,
    *,
    use_local: bool = False,
    directory: Path | None = None,
) -> int:
    """Download a chart archive once and print its path.

    Args:
        repo_url: Chart repository URL.
        chart: Chart name in the repository.
        version: Exact chart version.
        use_local: Pull through the alias registered with ``helm repo add``.
        directory: Cache directory (default: current directory).

    Returns:
        Exit code (0 for success, 1 for failure).

    """
    try:
        settings = _bootstrap()
        cached = asyncio.run(
            CachedChartFromRepository.create(
                HelmRepository(repo_url, use_locally_registered=use_local),
                chart,
                version,
                launcher=ProcessLauncher(),
                directory=directory,
                settings=settings,
            )
        )
    except HelmsailError as exc:
        return _report(exc)

    print(cached.archive)
    return 0


def main() -> int:
    """Entry point for the CLI."""
    return app()


if __name__ == "__main__":
    sys.exit(main())
