"""Handle to an installed Helm release.

A :class:`Release` is returned by ``ChartInstaller.install``. It runs
``kubectl port-forward`` tunnels in the background, executes commands in the
release's pods, and uninstalls the release when it is closed:

    async with await installer.install(chart, "r1") as release:
        port = await release.start_port_forward_for_service("r1-mssql", 1433)
        await release.execute_command_on_all_pods("ls /tmp")

"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import re
import shlex
import typing as typ

from helmsail.errors import ProcessExecutionError, ReleaseClosedError
from helmsail.logging import get_logger, log_error, log_info, log_warning
from helmsail.parameters import (
    HelmCommandParameterBuilder,
    KubectlCommandParameterBuilder,
)

if typ.TYPE_CHECKING:
    import collections.abc as cabc
    import types

    from helmsail.config import HelmsailSettings
    from helmsail.context import KubernetesContext
    from helmsail.process import ProcessLauncher

logger = get_logger(__name__)

_FORWARDING_PREFIX = "Forwarding from"
_FORWARDED_PORT_PATTERN = re.compile(r":(\d+) ->")

PortForwardTarget = typ.Literal["service", "pod"]


def extract_port_number(line: str) -> int:
    """Return the local port from a ``Forwarding from`` line.

    Raises
    ------
    ValueError
        If the line carries no ``:<port> ->`` fragment.

    """
    match = _FORWARDED_PORT_PATTERN.search(line)
    if match is None:
        msg = f"Invalid input. No port number found in {line!r}"
        raise ValueError(msg)
    return int(match.group(1))


@dataclasses.dataclass(slots=True)
class PortForward:
    """An active ``kubectl port-forward`` tunnel.

    Attributes
    ----------
    target
        ``service/<name>`` or ``pod/<name>``.
    local_port
        Local port bound by kubectl.
    remote_port
        Port on the service or pod.
    task
        Background task draining the tunnel's remaining output.
    cancel
        Cancellation switch terminating only this tunnel.

    """

    target: str
    local_port: int
    remote_port: int
    task: asyncio.Task[None]
    cancel: asyncio.Event

    @property
    def active(self) -> bool:
        """True until the tunnel process has ended."""
        return not self.task.done()

    async def stop(self) -> None:
        """Terminate the tunnel and wait for its drain task."""
        self.cancel.set()
        await asyncio.wait({self.task})
        if not self.task.cancelled() and (error := self.task.exception()) is not None:
            log_warning(
                logger,
                "Port-forward to %s ended with an error",
                self.target,
                exc_info=error,
            )


async def _drain(lines: cabc.AsyncGenerator[str, None]) -> None:
    async with contextlib.aclosing(lines):
        async for _ in lines:
            pass


class Release:
    """A live Helm release plus the tunnels opened against it."""

    def __init__(
        self,
        name: str,
        launcher: ProcessLauncher,
        context: KubernetesContext | None = None,
        *,
        settings: HelmsailSettings | None = None,
    ) -> None:
        """Wrap an installed release; use ``ChartInstaller.install`` instead."""
        self._name = name
        self._launcher = launcher
        self._context = context
        self._helm = settings.helm_binary if settings is not None else "helm"
        self._kubectl = settings.kubectl_binary if settings is not None else "kubectl"
        self._port_forwards: list[PortForward] = []
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def name(self) -> str:
        """The Helm release name."""
        return self._name

    @property
    def closed(self) -> bool:
        """True once teardown has started."""
        return self._closed

    @property
    def port_forwards(self) -> tuple[PortForward, ...]:
        """Snapshot of the registered tunnels."""
        return tuple(self._port_forwards)

    async def start_port_forward_for_service(
        self, service_name: str, service_port: int, local_port: int | None = None
    ) -> int:
        """Forward a local port to a service; see :meth:`start_port_forward`."""
        return await self.start_port_forward(
            "service", service_name, service_port, local_port
        )

    async def start_port_forward_for_pod(
        self, pod_name: str, pod_port: int, local_port: int | None = None
    ) -> int:
        """Forward a local port to a pod; see :meth:`start_port_forward`."""
        return await self.start_port_forward("pod", pod_name, pod_port, local_port)

    async def start_port_forward(
        self,
        target: PortForwardTarget,
        name: str,
        remote_port: int,
        local_port: int | None = None,
    ) -> int:
        """Start a background ``kubectl port-forward`` tunnel.

        Parameters
        ----------
        target : {"service", "pod"}
            Kind of object to forward to.
        name : str
            Name of the service or pod.
        remote_port : int
            Port on the target.
        local_port : int | None
            Local port to bind; kubectl picks a free one when omitted.

        Returns
        -------
        int
            The bound local port, or ``0`` when kubectl did not report an
            active forward. Callers must check for ``0``.

        Raises
        ------
        ReleaseClosedError
            If the release is being or has been torn down.

        """
        if self._closed:
            raise ReleaseClosedError(self._name)

        parameters = KubectlCommandParameterBuilder(
            [
                "port-forward",
                shlex.quote(f"{target}/{name}"),
                f"{local_port if local_port is not None else ''}:{remote_port}",
            ]
        )
        parameters.apply_context(self._context)
        cancel = asyncio.Event()
        lines = typ.cast(
            "cabc.AsyncGenerator[str, None]",
            self._launcher.execute(self._kubectl, parameters.build(), cancel=cancel),
        )

        try:
            first_line = await anext(lines)
        except StopAsyncIteration:
            return 0
        except ProcessExecutionError as exc:
            log_warning(
                logger, "Port-forward to %s/%s failed", target, name, exc_info=exc
            )
            return 0

        if not first_line.startswith(_FORWARDING_PREFIX):
            try:
                await _drain(lines)
            except ProcessExecutionError as exc:
                log_warning(
                    logger, "Port-forward to %s/%s failed", target, name, exc_info=exc
                )
            return 0

        try:
            bound_port = extract_port_number(first_line)
        except ValueError:
            await lines.aclose()
            raise
        forward = PortForward(
            target=f"{target}/{name}",
            local_port=bound_port,
            remote_port=remote_port,
            task=asyncio.create_task(_drain(lines)),
            cancel=cancel,
        )
        async with self._lock:
            if not self._closed:
                self._port_forwards.append(forward)
                log_info(
                    logger,
                    "Forwarding 127.0.0.1:%d to %s:%d",
                    bound_port,
                    forward.target,
                    remote_port,
                )
                return bound_port

        await forward.stop()
        raise ReleaseClosedError(self._name)

    async def stop_port_forward(self, local_port: int) -> bool:
        """Stop the tunnel bound to ``local_port``.

        Returns
        -------
        bool
            False if no registered tunnel uses that port.

        """
        async with self._lock:
            forward = next(
                (f for f in self._port_forwards if f.local_port == local_port), None
            )
            if forward is None:
                return False
            self._port_forwards.remove(forward)
        await forward.stop()
        return True

    async def execute_command_on_all_pods(
        self, command: str, pod_selector: str | None = None
    ) -> None:
        """Run ``command`` with ``kubectl exec`` in every matching pod.

        Pods are handled one after another; the first failure propagates and
        the remaining pods are skipped.

        Parameters
        ----------
        command : str
            Command line executed inside each pod.
        pod_selector : str | None
            Label selector; defaults to
            ``app.kubernetes.io/instance=<release name>``.

        """
        for pod_name in await self.get_pod_names(pod_selector):
            parameters = KubectlCommandParameterBuilder(
                ["exec", shlex.quote(f"pod/{pod_name}")]
            )
            parameters.apply_context(self._context)
            parameters.add("--")
            parameters.add(command)
            await self._launcher.execute_to_end(self._kubectl, parameters.build())

    async def get_pod_names(self, pod_selector: str | None = None) -> list[str]:
        """Return the names of the pods matching ``pod_selector``."""
        selector = pod_selector or f"app.kubernetes.io/instance={self._name}"
        parameters = KubectlCommandParameterBuilder(
            [
                "get pods",
                f"-l {shlex.quote(selector)}",
                "-o jsonpath='{.items[*].metadata.name}'",
            ]
        )
        parameters.apply_context(self._context)
        output = await self._launcher.execute_to_end(self._kubectl, parameters.build())
        return [name for name in output.replace("'", " ").split() if name]

    async def aclose(self) -> None:
        """Stop every tunnel, then uninstall the release.

        Tunnel and uninstall failures are logged rather than raised. Only the
        first call has any effect.
        """
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            forwards, self._port_forwards = self._port_forwards, []

        for forward in forwards:
            forward.cancel.set()
        results = await asyncio.gather(
            *(forward.task for forward in forwards), return_exceptions=True
        )
        for forward, result in zip(forwards, results, strict=True):
            if isinstance(result, BaseException):
                log_warning(
                    logger,
                    "Port-forward to %s ended with an error",
                    forward.target,
                    exc_info=result,
                )

        parameters = HelmCommandParameterBuilder(["--wait"])
        parameters.apply_context(self._context)
        try:
            await self._launcher.execute_to_end(
                self._helm, f"uninstall {self._name} {parameters.build()}"
            )
        except Exception as exc:  # noqa: BLE001 - teardown must not raise
            log_error(
                logger, "Failed to uninstall release %s", self._name, exc_info=exc
            )
        else:
            log_info(logger, "Uninstalled release %s", self._name)

    async def __aenter__(self) -> Release:
        """Return the release itself."""
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: types.TracebackType | None,
    ) -> None:
        """Tear the release down."""
        await self.aclose()
