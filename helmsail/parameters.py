"""Ordered argument builders for helm and kubectl command lines.

Tokens are kept in insertion order because both tools are sensitive to
positional arguments; the chart reference, for example, must be the last
positional token of ``helm upgrade``. A token may hold a flag together with
its (shell-quoted) value, such as ``--kube-context 'kind-dev'``.

Examples
--------
Build the argument string for a release listing:

    builder = HelmCommandParameterBuilder(["--filter r1", "-o json"])
    builder.apply_context(KubernetesContext(namespace="apps"))
    builder.build()  # "--filter r1 -o json -n apps"

"""

from __future__ import annotations

import shlex
import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from helmsail.context import KubernetesContext


def _flag(name: str, value: object) -> str:
    return f"{name} {shlex.quote(str(value))}"


class CommandParameterBuilder:
    """Append-only list of command-line tokens."""

    def __init__(self, parameters: cabc.Iterable[str] | None = None) -> None:
        """Start from a copy of ``parameters`` (or an empty list)."""
        self._parameters: list[str] = list(parameters or ())

    @property
    def parameters(self) -> list[str]:
        """The live token list; chart sources append to it directly."""
        return self._parameters

    def add(self, parameter: str) -> None:
        """Append one token."""
        self._parameters.append(parameter)

    def build(self) -> str:
        """Join the tokens with single spaces."""
        return " ".join(self._parameters)

    def arguments(self) -> list[str]:
        """Split the built string into an argv list using shell rules."""
        return shlex.split(self.build())

    def apply_context(self, context: KubernetesContext | None) -> None:
        """Append the flags for every field set on ``context``."""
        if context is None:
            return
        self._parameters.extend(self._context_flags(context))

    def _context_flags(self, context: KubernetesContext) -> list[str]:
        raise NotImplementedError


class HelmCommandParameterBuilder(CommandParameterBuilder):
    """Builder emitting Helm's spelling of the cluster context flags."""

    def _context_flags(self, context: KubernetesContext) -> list[str]:  # noqa: C901
        flags: list[str] = []
        if context.burst_limit is not None:
            flags.append(_flag("--burst-limit", context.burst_limit))
        if context.debug:
            flags.append("--debug")
        if context.api_server:
            flags.append(_flag("--kube-apiserver", context.api_server))
        flags.extend(_flag("--kube-as-group", group) for group in context.as_group)
        if context.as_user:
            flags.append(_flag("--kube-as-user", context.as_user))
        if context.ca_file:
            flags.append(_flag("--kube-ca-file", context.ca_file))
        if context.context:
            flags.append(_flag("--kube-context", context.context))
        if context.insecure_skip_tls_verify:
            flags.append("--kube-insecure-skip-tls-verify")
        if context.tls_server_name:
            flags.append(_flag("--kube-tls-server-name", context.tls_server_name))
        if context.token:
            flags.append(_flag("--kube-token", context.token))
        if context.kubeconfig:
            flags.append(_flag("--kubeconfig", context.kubeconfig))
        if context.namespace:
            flags.append(_flag("-n", context.namespace))
        return flags


class KubectlCommandParameterBuilder(CommandParameterBuilder):
    """Builder emitting kubectl's spelling of the cluster context flags.

    kubectl has no client burst limit option, so ``burst_limit`` is ignored.
    """

    def _context_flags(self, context: KubernetesContext) -> list[str]:  # noqa: C901
        flags: list[str] = []
        if context.debug:
            flags.append("--v=6")
        if context.api_server:
            flags.append(_flag("--server", context.api_server))
        flags.extend(_flag("--as-group", group) for group in context.as_group)
        if context.as_user:
            flags.append(_flag("--as", context.as_user))
        if context.ca_file:
            flags.append(_flag("--certificate-authority", context.ca_file))
        if context.context:
            flags.append(_flag("--context", context.context))
        if context.insecure_skip_tls_verify:
            flags.append("--insecure-skip-tls-verify")
        if context.tls_server_name:
            flags.append(_flag("--tls-server-name", context.tls_server_name))
        if context.token:
            flags.append(_flag("--token", context.token))
        if context.kubeconfig:
            flags.append(_flag("--kubeconfig", context.kubeconfig))
        if context.namespace:
            flags.append(_flag("-n", context.namespace))
        return flags
