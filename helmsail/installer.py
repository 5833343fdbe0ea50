"""Idempotent Helm chart installation.

``ChartInstaller.install`` reconciles whatever is left of a previous release
with the same name before running ``helm upgrade --install``:

1. ``helm list`` the name in deployed, failed and uninstalling states.
2. Uninstall a listed release, or otherwise delete a dangling Helm release
   secret that Helm itself no longer reports.
3. Write the overrides to ``<overrides dir>/<release>.json``.
4. ``helm upgrade --install --force --atomic --wait``, retried once after
   ``helm repo update`` when Helm reports a stale repository index.
5. After every attempt, print the cluster events of the release.

Installs of the same release name must be serialized by the caller.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import shlex
import typing as typ

import msgspec

from helmsail.charts import is_stale_repository_error
from helmsail.config import HelmsailSettings
from helmsail.errors import ProcessExecutionError
from helmsail.events import decode_events, select_release_events
from helmsail.logging import get_logger, log_info, log_warning
from helmsail.parameters import (
    HelmCommandParameterBuilder,
    KubectlCommandParameterBuilder,
)
from helmsail.process import DEFAULT_OUTPUT_SINK, OutputSink, ProcessLauncher
from helmsail.release import Release

if typ.TYPE_CHECKING:
    from pathlib import Path

    from helmsail.charts import Chart
    from helmsail.context import KubernetesContext

logger = get_logger(__name__)

_HELM_RELEASE_SECRET_PREFIX = "sh.helm.release."


class _SecretMetadata(msgspec.Struct):
    name: str = ""
    labels: dict[str, str] = msgspec.field(default_factory=dict)


class _Secret(msgspec.Struct):
    kind: str = ""
    metadata: _SecretMetadata = msgspec.field(default_factory=_SecretMetadata)


class _SecretList(msgspec.Struct):
    items: list[_Secret] = msgspec.field(default_factory=list)


def find_dangling_release_secret(payload: str, release_name: str) -> str | None:
    """Return the Helm release secret for ``release_name`` in a secret list.

    Parameters
    ----------
    payload : str
        Output of ``kubectl get secrets -A -o json``.
    release_name : str
        Release whose bookkeeping secret is wanted.

    Returns
    -------
    str | None
        Name of the first secret labelled ``owner=helm`` and
        ``name=<release_name>`` whose name carries Helm's release prefix.

    """
    secrets = msgspec.json.decode(payload, type=_SecretList)
    for secret in secrets.items:
        labels = secret.metadata.labels
        if (
            secret.kind == "Secret"
            and labels.get("name") == release_name
            and labels.get("owner") == "helm"
        ):
            name = secret.metadata.name
            if name.strip() and name.startswith(_HELM_RELEASE_SECRET_PREFIX):
                return name
            return None
    return None


def _format_timeout(timeout: dt.timedelta) -> str:
    seconds = timeout.total_seconds()
    return f"{int(seconds) if seconds.is_integer() else seconds}s"


class ChartInstaller:
    """Install charts with Helm and hand back a :class:`Release`.

    Parameters
    ----------
    sink
        Receives the live output of every helm and kubectl call.
    launcher
        Process launcher to use; built from ``sink`` when omitted.
    settings
        Executable names and the overrides directory.

    """

    def __init__(
        self,
        sink: OutputSink = DEFAULT_OUTPUT_SINK,
        *,
        launcher: ProcessLauncher | None = None,
        settings: HelmsailSettings | None = None,
    ) -> None:
        """Wire the sink, launcher and settings together."""
        self._sink = sink
        self._launcher = launcher or ProcessLauncher(sink)
        self._settings = settings or HelmsailSettings()

    @property
    def settings(self) -> HelmsailSettings:
        """Settings in use."""
        return self._settings

    async def install(  # noqa: PLR0913
        self,
        chart: Chart,
        release_name: str,
        overrides: object | None = None,
        timeout: dt.timedelta | None = None,
        context: KubernetesContext | None = None,
    ) -> Release:
        """Install ``chart`` as ``release_name``, replacing any earlier release.

        Parameters
        ----------
        chart : Chart
            Source contributing the chart arguments.
        release_name : str
            Helm release name, inserted into command lines as-is.
        overrides : object | None
            Values overlay; anything ``msgspec.json`` can encode.
        timeout : datetime.timedelta | None
            Passed to Helm as ``--timeout``; Helm enforces it.
        context : KubernetesContext | None
            Cluster connection settings for every call.

        Returns
        -------
        Release
            Handle used for port-forwarding, exec and teardown.

        Raises
        ------
        ProcessExecutionError
            If any helm call fails (after the single stale-index retry).

        """
        if await self._release_exists(release_name, context):
            await self.uninstall(release_name, context)
        else:
            await self.remove_dangling_release_secret(release_name, context)

        parameters = HelmCommandParameterBuilder(
            ["--install", "--force", "--atomic", "--wait"]
        )
        if timeout is not None:
            parameters.add(f"--timeout {_format_timeout(timeout)}")
        parameters.apply_context(context)
        chart.apply_install_parameters(parameters.parameters)
        if overrides is not None:
            overrides_path = await self._write_overrides(release_name, overrides)
            parameters.add(f"-f {shlex.quote(str(overrides_path))}")

        arguments = f"upgrade {release_name} {parameters.build()}"
        try:
            await self._perform_install(release_name, arguments, context)
        except ProcessExecutionError as exc:
            if not is_stale_repository_error(exc):
                raise
            log_warning(
                logger,
                "Helm repository index is stale, updating before retrying %s",
                release_name,
            )
            await self._launcher.execute_to_end(
                self._settings.helm_binary, "repo update"
            )
            await self._perform_install(release_name, arguments, context)

        log_info(logger, "Installed release %s", release_name)
        return Release(release_name, self._launcher, context, settings=self._settings)

    async def uninstall(
        self, release_name: str, context: KubernetesContext | None = None
    ) -> None:
        """Run ``helm uninstall <release> --wait``."""
        parameters = HelmCommandParameterBuilder(["--wait"])
        parameters.apply_context(context)
        await self._launcher.execute_to_end(
            self._settings.helm_binary,
            f"uninstall {release_name} {parameters.build()}",
        )

    async def remove_dangling_release_secret(
        self, release_name: str, context: KubernetesContext | None = None
    ) -> None:
        """Delete a Helm release secret that ``helm list`` no longer reports.

        Helm occasionally uninstalls a release without updating the state
        kept in its ``sh.helm.release.*`` secret, after which installing the
        same name fails. This is a best-effort repair: failures are logged
        and written to the error sink, never raised.
        """
        kubectl = self._settings.kubectl_binary
        try:
            parameters = KubectlCommandParameterBuilder(["-A", "-o json"])
            parameters.apply_context(context)
            payload = await self._launcher.execute_to_end(
                kubectl, f"get secrets {parameters.build()}", mute=True
            )
            secret_name = find_dangling_release_secret(payload, release_name)
            if secret_name is None:
                return

            self._sink.write(
                f"Detected dangling release by discovering secret '{secret_name}'"
            )
            log_info(logger, "Deleting dangling release secret %s", secret_name)
            delete_parameters = KubectlCommandParameterBuilder()
            delete_parameters.apply_context(context)
            await self._launcher.execute_to_end(
                kubectl,
                f"delete secrets {secret_name} {delete_parameters.build()}",
            )
        except Exception as exc:  # noqa: BLE001 - best-effort repair
            self._sink.write_error(str(exc))
            log_warning(
                logger,
                "Dangling secret cleanup for %s failed",
                release_name,
                exc_info=exc,
            )

    async def dump_release_events(
        self,
        release_name: str,
        since: dt.datetime,
        context: KubernetesContext | None = None,
    ) -> None:
        """Write the cluster events of ``release_name`` newer than ``since``.

        Diagnostic only: any failure is logged and otherwise ignored.
        """
        parameters = KubectlCommandParameterBuilder(["-o json"])
        parameters.apply_context(context)
        try:
            payload = await self._launcher.execute_to_end(
                self._settings.kubectl_binary,
                f"get events {parameters.build()}",
                mute=True,
            )
            events = select_release_events(decode_events(payload), release_name, since)
        except Exception as exc:  # noqa: BLE001 - diagnostics only
            log_warning(
                logger, "Could not read events for %s", release_name, exc_info=exc
            )
            return

        if not events:
            return
        self._sink.write("Events from the installation:")
        for event in events:
            self._sink.write(event.format_line())

    async def _release_exists(
        self, release_name: str, context: KubernetesContext | None
    ) -> bool:
        parameters = HelmCommandParameterBuilder(
            [
                f"--filter {shlex.quote(release_name)}",
                "--deployed",
                "--failed",
                "--uninstalling",
                "-o json",
            ]
        )
        parameters.apply_context(context)
        listing = await self._launcher.execute_to_end(
            self._settings.helm_binary, f"list {parameters.build()}"
        )
        return listing.strip() != "[]"

    async def _write_overrides(self, release_name: str, overrides: object) -> Path:
        path = self._settings.overrides_path(release_name)
        await asyncio.to_thread(path.write_bytes, msgspec.json.encode(overrides))
        return path

    async def _perform_install(
        self,
        release_name: str,
        arguments: str,
        context: KubernetesContext | None,
    ) -> None:
        started_at = dt.datetime.now(dt.UTC)
        try:
            await self._launcher.execute_to_end(self._settings.helm_binary, arguments)
        finally:
            await self.dump_release_events(release_name, started_at, context)
