"""Unit tests for Release port-forwarding, exec and teardown."""

from __future__ import annotations

import asyncio
import typing as typ

import pytest

from helmsail.context import KubernetesContext
from helmsail.errors import ProcessExecutionError, ReleaseClosedError
from helmsail.process import ProcessLauncher
from helmsail.release import Release, extract_port_number
from tests.helpers.fake_launcher import RecordingSink

if typ.TYPE_CHECKING:
    from cmd_mox import CmdMox

    from tests.helpers.fake_launcher import FakeLauncher


def _release(
    launcher: FakeLauncher, context: KubernetesContext | None = None
) -> Release:
    return Release("r1", typ.cast("ProcessLauncher", launcher), context)


def _forwarding(local: int, remote: int) -> str:
    return f"Forwarding from 127.0.0.1:{local} -> {remote}"


class TestExtractPortNumber:
    """Parsing kubectl's forwarding banner."""

    def test_reads_local_port(self) -> None:
        """The port before the arrow is returned."""
        assert extract_port_number(_forwarding(54321, 1433)) == 54321

    def test_ipv6_banner(self) -> None:
        """The IPv6 banner uses the same layout."""
        assert extract_port_number("Forwarding from [::1]:8080 -> 80") == 8080

    def test_rejects_lines_without_port(self) -> None:
        """A line without ``:<port> ->`` is an error."""
        with pytest.raises(ValueError, match="No port number found"):
            extract_port_number("error: unable to forward")


class TestPortForward:
    """Starting and stopping tunnels."""

    @pytest.mark.asyncio
    async def test_returns_bound_port(self, launcher: FakeLauncher) -> None:
        """The local port is read from the first output line."""
        launcher.script(
            "kubectl", "port-forward", lines=[_forwarding(54321, 1433)], hold=True
        )
        release = _release(launcher, KubernetesContext(namespace="apps"))

        port = await release.start_port_forward_for_service("r1-mssql", 1433)

        assert port == 54321
        (call,) = launcher.calls_for("kubectl", "port-forward")
        assert call.argv == ["port-forward", "service/r1-mssql", ":1433", "-n", "apps"]
        assert [f.local_port for f in release.port_forwards] == [54321]
        await release.aclose()

    @pytest.mark.asyncio
    async def test_explicit_local_port_for_pod(self, launcher: FakeLauncher) -> None:
        """A requested local port precedes the remote port."""
        launcher.script(
            "kubectl", "port-forward", lines=[_forwarding(15432, 5432)], hold=True
        )
        release = _release(launcher)

        port = await release.start_port_forward_for_pod("r1-db-0", 5432, 15432)

        assert port == 15432
        (call,) = launcher.calls_for("kubectl", "port-forward")
        assert call.argv == ["port-forward", "pod/r1-db-0", "15432:5432"]
        await release.aclose()

    @pytest.mark.asyncio
    async def test_unexpected_first_line_returns_zero(
        self, launcher: FakeLauncher
    ) -> None:
        """Output other than a forwarding banner yields port 0."""
        launcher.script(
            "kubectl",
            "port-forward",
            lines=['error: services "r1-mssql" not found'],
        )
        release = _release(launcher)

        port = await release.start_port_forward_for_service("r1-mssql", 1433)

        assert port == 0
        assert release.port_forwards == ()

    @pytest.mark.asyncio
    async def test_failed_kubectl_returns_zero(self, launcher: FakeLauncher) -> None:
        """A kubectl failure before any output yields port 0."""
        launcher.script("kubectl", "port-forward", stderr="connection refused")
        release = _release(launcher)

        assert await release.start_port_forward_for_service("r1-mssql", 1433) == 0

    @pytest.mark.asyncio
    async def test_silent_kubectl_returns_zero(self, launcher: FakeLauncher) -> None:
        """kubectl exiting without output yields port 0."""
        release = _release(launcher)

        assert await release.start_port_forward_for_service("r1-mssql", 1433) == 0

    @pytest.mark.asyncio
    async def test_tunnels_stop_independently(self, launcher: FakeLauncher) -> None:
        """Stopping one tunnel leaves the others running."""
        launcher.script(
            "kubectl",
            "port-forward service/a",
            lines=[_forwarding(40001, 80)],
            hold=True,
        )
        launcher.script(
            "kubectl",
            "port-forward service/b",
            lines=[_forwarding(40002, 80)],
            hold=True,
        )
        release = _release(launcher)
        await release.start_port_forward_for_service("a", 80)
        await release.start_port_forward_for_service("b", 80)
        first, second = release.port_forwards

        assert await release.stop_port_forward(40001) is True

        assert not first.active, "stopped tunnel should have ended"
        assert second.active, "other tunnel should keep running"
        assert [f.local_port for f in release.port_forwards] == [40002]
        await release.aclose()
        assert not second.active

    @pytest.mark.asyncio
    async def test_unparsable_banner_closes_stream(
        self, launcher: FakeLauncher
    ) -> None:
        """A banner without a port raises after ending the kubectl stream."""
        launcher.script(
            "kubectl", "port-forward", lines=["Forwarding from nowhere"], hold=True
        )
        release = _release(launcher)

        with pytest.raises(ValueError, match="No port number found"):
            await release.start_port_forward_for_service("r1-mssql", 1433)

        (call,) = launcher.calls_for("kubectl", "port-forward")
        assert call.finished, "kubectl stream should be closed before raising"
        assert release.port_forwards == ()

    @pytest.mark.asyncio
    async def test_stop_unknown_port(self, launcher: FakeLauncher) -> None:
        """Stopping a port nobody forwards reports False."""
        release = _release(launcher)

        assert await release.stop_port_forward(1) is False


class TestTeardown:
    """Closing the release."""

    @pytest.mark.asyncio
    async def test_close_stops_tunnels_then_uninstalls(
        self, launcher: FakeLauncher
    ) -> None:
        """Every tunnel ends before the single uninstall runs."""
        launcher.script(
            "kubectl", "port-forward", lines=[_forwarding(54321, 1433)], hold=True
        )
        release = _release(launcher, KubernetesContext(kubeconfig="/tmp/kc"))
        await release.start_port_forward_for_service("r1-mssql", 1433)
        (forward,) = release.port_forwards

        async with asyncio.timeout(5):
            await release.aclose()

        assert not forward.active
        (tunnel,) = launcher.calls_for("kubectl", "port-forward")
        assert tunnel.cancelled, "tunnel should end through its cancel event"
        (uninstall,) = launcher.calls_for("helm", "uninstall")
        assert uninstall.argv == [
            "uninstall", "r1", "--wait", "--kubeconfig", "/tmp/kc"
        ]  # fmt: skip
        assert launcher.calls[-1] is uninstall, "uninstall must come last"

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, launcher: FakeLauncher) -> None:
        """A second close does nothing."""
        release = _release(launcher)

        await release.aclose()
        await release.aclose()

        assert release.closed
        assert len(launcher.calls_for("helm", "uninstall")) == 1

    @pytest.mark.asyncio
    async def test_context_manager_tears_down(self, launcher: FakeLauncher) -> None:
        """Leaving ``async with`` uninstalls the release."""
        async with _release(launcher) as release:
            assert release.name == "r1"

        assert len(launcher.calls_for("helm", "uninstall")) == 1

    @pytest.mark.asyncio
    async def test_uninstall_failure_is_swallowed(self, launcher: FakeLauncher) -> None:
        """Teardown logs uninstall errors instead of raising them."""
        launcher.script("helm", "uninstall", stderr="Error: release: not found")
        release = _release(launcher)

        await release.aclose()

        assert release.closed

    @pytest.mark.asyncio
    async def test_tunnel_opened_during_close_is_stopped(
        self, launcher: FakeLauncher
    ) -> None:
        """A tunnel reporting in after teardown began is shut down again."""
        first_line = asyncio.Event()
        launcher.script(
            "kubectl",
            "port-forward",
            lines=[_forwarding(54321, 1433)],
            hold=True,
            gate=first_line,
        )
        release = _release(launcher)
        pending = asyncio.create_task(
            release.start_port_forward_for_service("r1-mssql", 1433)
        )
        while not launcher.calls_for("kubectl", "port-forward"):
            await asyncio.sleep(0)

        await release.aclose()
        first_line.set()

        with pytest.raises(ReleaseClosedError, match="r1"):
            await asyncio.wait_for(pending, timeout=5)
        (tunnel,) = launcher.calls_for("kubectl", "port-forward")
        assert tunnel.cancelled, "late tunnel should end through its cancel event"
        assert release.port_forwards == ()
        assert len(launcher.calls_for("helm", "uninstall")) == 1

    @pytest.mark.asyncio
    async def test_forwarding_after_close_is_rejected(
        self, launcher: FakeLauncher
    ) -> None:
        """A closed release refuses new tunnels."""
        release = _release(launcher)
        await release.aclose()

        with pytest.raises(ReleaseClosedError, match="r1"):
            await release.start_port_forward_for_service("r1-mssql", 1433)


class TestPodCommands:
    """Pod discovery and exec."""

    @pytest.mark.asyncio
    async def test_pod_names_use_default_selector(self, launcher: FakeLauncher) -> None:
        """Pods are selected by the instance label unless told otherwise."""
        launcher.script("kubectl", "get pods", lines=["'r1-mssql-0 r1-mssql-1'"])
        release = _release(launcher, KubernetesContext(namespace="apps"))

        names = await release.get_pod_names()

        assert names == ["r1-mssql-0", "r1-mssql-1"]
        (call,) = launcher.calls_for("kubectl", "get pods")
        assert call.argv == [
            "get", "pods", "-l", "app.kubernetes.io/instance=r1",
            "-o", "jsonpath={.items[*].metadata.name}", "-n", "apps",
        ]  # fmt: skip

    @pytest.mark.asyncio
    async def test_exec_runs_in_every_pod(self, launcher: FakeLauncher) -> None:
        """The command runs once per pod, in listing order."""
        launcher.script("kubectl", "get pods", lines=["'web-0 web-1'"])
        release = _release(launcher, KubernetesContext(namespace="apps"))

        await release.execute_command_on_all_pods("ls /tmp", pod_selector="app=web")

        execs = launcher.calls_for("kubectl", "exec")
        assert [call.argv for call in execs] == [
            ["exec", "pod/web-0", "-n", "apps", "--", "ls", "/tmp"],
            ["exec", "pod/web-1", "-n", "apps", "--", "ls", "/tmp"],
        ]
        (listing,) = launcher.calls_for("kubectl", "get pods")
        assert "app=web" in listing.argv

    @pytest.mark.asyncio
    async def test_first_failing_pod_stops_the_rest(
        self, launcher: FakeLauncher
    ) -> None:
        """An exec failure propagates and later pods are skipped."""
        launcher.script("kubectl", "get pods", lines=["'p0 p1 p2'"])
        launcher.script(
            "kubectl",
            "exec pod/p1",
            stderr="command terminated with exit code 2",
            exit_code=2,
        )
        release = _release(launcher)

        with pytest.raises(ProcessExecutionError) as excinfo:
            await release.execute_command_on_all_pods("ls /tmp")

        assert excinfo.value.returncode == 2
        execs = launcher.calls_for("kubectl", "exec")
        assert [call.argv[1] for call in execs] == ["pod/p0", "pod/p1"]

    @pytest.mark.asyncio
    async def test_no_pods_means_no_exec(self, launcher: FakeLauncher) -> None:
        """An empty listing runs nothing."""
        launcher.script("kubectl", "get pods", lines=["''"])
        release = _release(launcher)

        await release.execute_command_on_all_pods("true")

        assert launcher.calls_for("kubectl", "exec") == []


class TestPodCommandsWithKubectlBinary:
    """Pod discovery against a mocked ``kubectl`` executable."""

    @pytest.mark.asyncio
    async def test_pod_names_from_jsonpath_output(self, cmd_mox: CmdMox) -> None:
        """The jsonpath query reaches kubectl without shell quotes."""
        cmd_mox.mock("kubectl").with_args(
            "get",
            "pods",
            "-l",
            "app.kubernetes.io/instance=r1",
            "-o",
            "jsonpath={.items[*].metadata.name}",
            "--context",
            "kind-dev",
        ).returns(exit_code=0, stdout="r1-mssql-0 r1-mssql-1")
        release = Release(
            "r1",
            ProcessLauncher(RecordingSink()),
            KubernetesContext(context="kind-dev"),
        )

        assert await release.get_pod_names() == ["r1-mssql-0", "r1-mssql-1"]
