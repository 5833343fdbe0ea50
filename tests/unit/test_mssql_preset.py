"""Unit tests for the SQL Server values preset."""

from __future__ import annotations

import msgspec

from helmsail.presets import MsSqlConfiguration, create_default_configuration


def test_default_configuration_uses_chart_keys() -> None:
    """The default overlay serializes to the chart's dotted keys."""
    encoded = msgspec.json.decode(msgspec.json.encode(create_default_configuration()))

    assert encoded == {
        "image.repository": "mcr.microsoft.com/mssql/server",
        "image.tag": "2019-latest",
        "ACCEPT_EULA.value": "Y",
        "MSSQL_PID.value": "Developer",
        "MSSQL_AGENT_ENABLED.value": True,
        "hostname": "mssqllatest",
        "sa_password": "StrongPass1!",
        "containers.ports.containerPort": 1433,
        "service.type": "LoadBalancer",
        "service.port": 1433,
    }


def test_fields_can_be_overridden() -> None:
    """Individual values replace the defaults."""
    config = MsSqlConfiguration(service_port=14330, sa_password="An0ther!")

    encoded = msgspec.json.decode(msgspec.json.encode(config))

    assert encoded["service.port"] == 14330
    assert encoded["sa_password"] == "An0ther!"
    assert encoded["containers.ports.containerPort"] == 1433
