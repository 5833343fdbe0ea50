"""Values overlay for the SQL Server sample chart.

The chart (microsoft/mssql-docker ``linux/sample-helm-chart``) reads flat,
dotted keys, so every field is renamed to the key the chart expects:

    overrides = MsSqlConfiguration(sa_password="An0therPass!")
    await installer.install(
        ChartFromLocalPath("./charts/mssql"), "r1", overrides=overrides
    )

"""

from __future__ import annotations

import msgspec


class MsSqlConfiguration(msgspec.Struct, kw_only=True):
    """SQL Server container settings.

    Attributes
    ----------
    image_repository
        Image to deploy.
    image_tag
        Tag of ``image_repository``.
    accept_eula
        Value of ``ACCEPT_EULA``; any value accepts the SQL Server EULA.
    mssql_pid
        Edition or product key.
    agent_enabled
        Run the SQL Server Agent.
    hostname
        Name reported by ``SELECT @@SERVERNAME``.
    sa_password
        Password of the ``sa`` login.
    container_port
        Port SQL Server listens on inside the container.
    service_type
        Kubernetes service type.
    service_port
        Port exposed by the service.

    """

    image_repository: str = msgspec.field(
        default="mcr.microsoft.com/mssql/server", name="image.repository"
    )
    image_tag: str = msgspec.field(default="2019-latest", name="image.tag")
    accept_eula: str = msgspec.field(default="Y", name="ACCEPT_EULA.value")
    mssql_pid: str = msgspec.field(default="Developer", name="MSSQL_PID.value")
    agent_enabled: bool = msgspec.field(
        default=True, name="MSSQL_AGENT_ENABLED.value"
    )
    hostname: str = "mssqllatest"
    sa_password: str = "StrongPass1!"  # noqa: S105
    container_port: int = msgspec.field(
        default=1433, name="containers.ports.containerPort"
    )
    service_type: str = msgspec.field(default="LoadBalancer", name="service.type")
    service_port: int = msgspec.field(default=1433, name="service.port")


def create_default_configuration() -> MsSqlConfiguration:
    """Return the overlay for a Developer edition instance on port 1433."""
    return MsSqlConfiguration()


__all__ = ["MsSqlConfiguration", "create_default_configuration"]
