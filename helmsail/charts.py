"""Chart sources accepted by ``ChartInstaller.install``.

A chart source contributes the trailing arguments of ``helm upgrade``: a
local directory or archive, or a repository reference with optional
credentials and version. ``CachedChartFromRepository`` downloads an archive
once and then behaves like a local path.

Examples
--------
Install from a local directory, or from a repository:

    ChartFromLocalPath("./charts/mssql")
    ChartFromRepository(HelmRepository("https://charts.bitnami.com/bitnami"), "nginx")

Download a chart once and reuse the archive on later runs:

    chart = await CachedChartFromRepository.create(
        HelmRepository(
            "https://charts.bitnami.com/bitnami", use_locally_registered=True
        ),
        "nginx",
        "19.0.2",
    )

"""

from __future__ import annotations

import asyncio
import dataclasses
import shlex
import typing as typ
from pathlib import Path

import msgspec

from helmsail.errors import (
    ChartDownloadError,
    ProcessExecutionError,
    RepositoryNotRegisteredError,
)
from helmsail.logging import get_logger, log_info, log_warning
from helmsail.parameters import HelmCommandParameterBuilder
from helmsail.process import ProcessLauncher

if typ.TYPE_CHECKING:
    from helmsail.config import HelmsailSettings

logger = get_logger(__name__)

STALE_REPOSITORY_MARKER = "try 'helm repo update'"


def is_stale_repository_error(error: BaseException) -> bool:
    """Return True when Helm failed because its repository index is stale.

    Helm reports no structured code for this; the check relies on the hint
    it prints in the error text.
    """
    return isinstance(error, ProcessExecutionError) and (
        STALE_REPOSITORY_MARKER in str(error)
    )


class Chart(typ.Protocol):
    """A source of ``helm upgrade`` chart arguments."""

    def apply_install_parameters(self, parameters: list[str]) -> None:
        """Append this chart's arguments to ``parameters``."""
        ...


@dataclasses.dataclass(frozen=True, slots=True)
class HelmRepository:
    """Location of a chart repository.

    Attributes
    ----------
    url
        Repository URL. Empty means "let Helm resolve the chart name against
        its locally registered repositories".
    login
        Optional user name for the repository.
    password
        Password paired with ``login``.
    use_locally_registered
        Resolve ``url`` against ``helm repo list`` and pull through the
        registered alias instead of passing the URL and credentials.

    """

    url: str
    login: str | None = None
    password: str | None = None
    use_locally_registered: bool = False

    @classmethod
    def locally_available(cls) -> HelmRepository:
        """Return a repository that defers to Helm's registered repositories."""
        return cls("")

    def apply_credentials(self, parameters: list[str]) -> None:
        """Append ``--repo`` and the optional credentials."""
        parameters.append(f"--repo {shlex.quote(self.url)}")
        if self.login and self.login.strip():
            parameters.append(f"--username {shlex.quote(self.login)}")
            parameters.append(f"--password {shlex.quote(self.password or '')}")


@dataclasses.dataclass(frozen=True, slots=True)
class ChartFromLocalPath:
    """Chart stored on the local filesystem (directory or ``.tgz``)."""

    path: str | Path

    def apply_install_parameters(self, parameters: list[str]) -> None:
        """Append the chart path."""
        parameters.append(shlex.quote(str(self.path)))


@dataclasses.dataclass(frozen=True, slots=True)
class ChartFromRepository:
    """Chart pulled from a repository at install time."""

    repository: HelmRepository
    chart_name: str
    version: str | None = None

    def apply_install_parameters(self, parameters: list[str]) -> None:
        """Append repository, credentials, version and finally the chart name."""
        if self.repository.url.strip():
            self.repository.apply_credentials(parameters)
        if self.version is not None:
            parameters.append(f"--version {shlex.quote(self.version)}")
        parameters.append(shlex.quote(self.chart_name))


class RepoListItem(msgspec.Struct):
    """One entry of ``helm repo list -o json``."""

    name: str
    url: str


@dataclasses.dataclass(frozen=True, slots=True)
class CachedChartFromRepository:
    """Chart archive downloaded once into a local directory.

    Build instances with :meth:`create`; the constructor only wraps an
    archive path that already exists.
    """

    archive: Path

    def apply_install_parameters(self, parameters: list[str]) -> None:
        """Append the archive path."""
        parameters.append(shlex.quote(str(self.archive)))

    @classmethod
    async def create(  # noqa: PLR0913
        cls,
        repository: HelmRepository,
        chart_name: str,
        version: str,
        *,
        launcher: ProcessLauncher | None = None,
        directory: Path | None = None,
        settings: HelmsailSettings | None = None,
    ) -> CachedChartFromRepository:
        """Return a cached chart, running ``helm pull`` only when needed.

        Parameters
        ----------
        repository : HelmRepository
            Where to pull the chart from.
        chart_name : str
            Chart name inside the repository.
        version : str
            Exact chart version; part of the archive name.
        launcher : ProcessLauncher | None
            Launcher used for ``helm`` calls.
        directory : Path | None
            Cache directory, defaulting to the working directory (where
            ``helm pull`` writes the archive).
        settings : HelmsailSettings | None
            Supplies the ``helm`` executable name.

        Raises
        ------
        RepositoryNotRegisteredError
            If ``use_locally_registered`` is set and no registered repository
            has exactly ``repository.url``.
        ChartDownloadError
            If the archive is still missing after pulling.

        """
        cache_dir = directory or Path.cwd()
        archive = cache_dir / f"{chart_name}-{version}.tgz"
        if await asyncio.to_thread(archive.exists):
            return cls(archive)

        launcher = launcher or ProcessLauncher()
        helm = settings.helm_binary if settings is not None else "helm"
        parameters = await _build_pull_parameters(
            launcher, helm, repository, chart_name, version
        )
        parameters.add(f"--destination {shlex.quote(str(cache_dir))}")

        async def download() -> None:
            await launcher.execute_to_end(helm, f"pull {parameters.build()}")
            if not await asyncio.to_thread(archive.exists):
                raise ChartDownloadError.missing_archive(str(archive))

        try:
            await download()
        except ProcessExecutionError as exc:
            if not is_stale_repository_error(exc):
                raise
            log_warning(logger, "Helm repository index is stale, updating")
            await launcher.execute_to_end(helm, "repo update")
            await download()

        log_info(logger, "Cached chart %s at %s", chart_name, archive)
        return cls(archive)


async def _build_pull_parameters(
    launcher: ProcessLauncher,
    helm: str,
    repository: HelmRepository,
    chart_name: str,
    version: str,
) -> HelmCommandParameterBuilder:
    parameters = HelmCommandParameterBuilder()

    if repository.use_locally_registered:
        response = await launcher.execute_to_end(helm, "repo list -o json", mute=True)
        if response.strip():
            registered = msgspec.json.decode(response, type=list[RepoListItem])
            match = next((r for r in registered if r.url == repository.url), None)
            if match is None:
                raise RepositoryNotRegisteredError(repository.url)
            parameters.add(f"--version {shlex.quote(version)}")
            parameters.add(shlex.quote(f"{match.name}/{chart_name}"))
            return parameters

    repository.apply_credentials(parameters.parameters)
    parameters.add(f"--version {shlex.quote(version)}")
    parameters.add(shlex.quote(chart_name))
    return parameters


__all__ = [
    "STALE_REPOSITORY_MARKER",
    "CachedChartFromRepository",
    "Chart",
    "ChartFromLocalPath",
    "ChartFromRepository",
    "HelmRepository",
    "RepoListItem",
    "is_stale_repository_error",
]
