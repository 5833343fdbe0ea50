"""Ready-made value overlays for commonly installed charts."""

from __future__ import annotations

from .mssql import MsSqlConfiguration, create_default_configuration

__all__ = ["MsSqlConfiguration", "create_default_configuration"]
