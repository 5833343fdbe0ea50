"""Cluster connection settings shared by every helm and kubectl call."""

from __future__ import annotations

import dataclasses
import os
import typing as typ

from helmsail.dns import wait_for_dns_availability

if typ.TYPE_CHECKING:
    import datetime as dt


@dataclasses.dataclass(frozen=True, slots=True)
class KubernetesContext:
    """Connection and authorization parameters for the target cluster.

    Every field is optional; an unset field contributes no command-line flag.

    Attributes
    ----------
    burst_limit
        Client-side throttling limit (Helm only).
    debug
        Enable verbose output.
    api_server
        Address and port of the Kubernetes API server.
    as_group
        Groups to impersonate; one flag is emitted per group.
    as_user
        Username to impersonate.
    ca_file
        Certificate authority file for the API server connection.
    context
        Name of the kubeconfig context to use.
    insecure_skip_tls_verify
        Skip validation of the API server certificate.
    tls_server_name
        Server name used for API server certificate validation.
    token
        Bearer token used for authentication.
    kubeconfig
        Path to the kubeconfig file.
    namespace
        Namespace scope for the requests.

    """

    burst_limit: int | None = None
    debug: bool | None = None
    api_server: str | None = None
    as_group: tuple[str, ...] = ()
    as_user: str | None = None
    ca_file: str | None = None
    context: str | None = None
    insecure_skip_tls_verify: bool | None = None
    tls_server_name: str | None = None
    token: str | None = None
    kubeconfig: str | None = None
    namespace: str | None = None

    @classmethod
    def from_env(cls) -> KubernetesContext:
        """Build a context from ``HELMSAIL_NAMESPACE``, ``HELMSAIL_KUBE_CONTEXT``
        and ``KUBECONFIG``.
        """
        return cls(
            namespace=os.environ.get("HELMSAIL_NAMESPACE") or None,
            context=os.environ.get("HELMSAIL_KUBE_CONTEXT") or None,
            kubeconfig=os.environ.get("KUBECONFIG") or None,
        )

    def resolve_service_address(self, service_name: str) -> str:
        """Return the in-cluster DNS name of ``service_name``."""
        namespace = self.namespace or "default"
        return f"{service_name}.{namespace}.svc.cluster.local"

    async def resolve_working_service_address(
        self, service_name: str, timeout: dt.timedelta
    ) -> str:
        """Resolve the service address and wait until DNS answers for it.

        Raises
        ------
        DnsTimeoutError
            If the address does not resolve within ``timeout``.

        """
        address = self.resolve_service_address(service_name)
        await wait_for_dns_availability(address, timeout)
        return address
