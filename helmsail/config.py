"""Runtime settings for helmsail."""

from __future__ import annotations

import dataclasses
import os
import tempfile
from pathlib import Path

from helmsail.errors import ConfigError

_DEFAULT_HELM = "helm"
_DEFAULT_KUBECTL = "kubectl"
_DEFAULT_LOG_LEVEL = "INFO"


def _default_overrides_dir() -> Path:
    return Path(tempfile.gettempdir())


@dataclasses.dataclass(frozen=True, slots=True)
class HelmsailSettings:
    """Executables and paths used by the installer.

    Attributes
    ----------
    helm_binary
        Name or path of the Helm executable.
    kubectl_binary
        Name or path of the kubectl executable.
    log_level
        Level passed to ``configure_logging`` by the CLI.
    overrides_dir
        Directory receiving ``<release>.json`` values overlays.

    """

    helm_binary: str = _DEFAULT_HELM
    kubectl_binary: str = _DEFAULT_KUBECTL
    log_level: str = _DEFAULT_LOG_LEVEL
    overrides_dir: Path = dataclasses.field(default_factory=_default_overrides_dir)

    def __post_init__(self) -> None:
        """Reject blank executable names."""
        if not self.helm_binary.strip():
            raise ConfigError.empty_binary("helm_binary")
        if not self.kubectl_binary.strip():
            raise ConfigError.empty_binary("kubectl_binary")

    def overrides_path(self, release_name: str) -> Path:
        """Return the overlay file path used for ``release_name``."""
        return self.overrides_dir / f"{release_name}.json"

    @classmethod
    def from_env(cls) -> HelmsailSettings:
        """Build settings from ``HELMSAIL_*`` environment variables.

        Reads ``HELMSAIL_HELM``, ``HELMSAIL_KUBECTL``, ``HELMSAIL_LOG_LEVEL``
        and ``HELMSAIL_OVERRIDES_DIR``. Unset variables keep their defaults.

        Raises
        ------
        ConfigError
            If ``HELMSAIL_OVERRIDES_DIR`` points at something that is not a
            directory, or an executable name is blank.

        """
        overrides_dir = _default_overrides_dir()
        raw_dir = os.environ.get("HELMSAIL_OVERRIDES_DIR")
        if raw_dir is not None:
            overrides_dir = Path(raw_dir)
            if not overrides_dir.is_dir():
                raise ConfigError.invalid_value("HELMSAIL_OVERRIDES_DIR", raw_dir)

        return cls(
            helm_binary=os.environ.get("HELMSAIL_HELM", _DEFAULT_HELM),
            kubectl_binary=os.environ.get("HELMSAIL_KUBECTL", _DEFAULT_KUBECTL),
            log_level=os.environ.get("HELMSAIL_LOG_LEVEL", _DEFAULT_LOG_LEVEL),
            overrides_dir=overrides_dir,
        )
