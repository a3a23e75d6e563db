from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import requests
from ape.logging import logger
from requests.exceptions import HTTPError, RequestException

from solgas._models import ImportReference
from solgas._utils import DEFAULT_PACKAGE_MIRRORS, ImportKind, get_import_paths
from solgas.exceptions import (
    ImportFetchError,
    ImportResolutionLimitError,
    MissingRelativeImportError,
)

DEFAULT_MAX_PASSES = 20
DEFAULT_MAX_FETCH_WORKERS = 8

Fetcher = Callable[[str], str]


class RemoteFetcher:
    """
    Fetches source text over HTTP(S). Non-success statuses raise
    :class:`~requests.exceptions.HTTPError`.
    """

    def __init__(self, timeout: Optional[float] = 30.0, session: Optional[requests.Session] = None):
        self.timeout = timeout
        self.session = session or requests.Session()

    def __call__(self, url: str) -> str:
        response = self.session.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response.text


def get_import_references(sources: dict[str, str]) -> list[ImportReference]:
    return [
        ImportReference(source_id=source_id, import_path=import_path)
        for source_id, content in sources.items()
        for import_path in get_import_paths(content)
    ]


def get_package_urls(reference: ImportReference, mirrors: Iterable[str]) -> list[str]:
    return [
        m.format(package=reference.package_name, path=reference.package_path) for m in mirrors
    ]


def _get_status_code(err: Exception) -> Optional[int]:
    if isinstance(err, HTTPError) and err.response is not None:
        return err.response.status_code

    return None


class ImportResolver:
    """
    Completes a source set by filling in its unresolved imports.

    Relative imports must already be present in the source set. Package
    imports (e.g. ``@openzeppelin/contracts/...``) are fetched from the first
    package mirror that serves them and remote (``https://``) imports are
    fetched directly. Fetched sources are keyed by their import path.
    """

    def __init__(
        self,
        fetcher: Optional[Fetcher] = None,
        package_mirrors: Optional[Iterable[str]] = None,
        max_passes: int = DEFAULT_MAX_PASSES,
        max_workers: int = DEFAULT_MAX_FETCH_WORKERS,
    ):
        self.fetcher = fetcher or RemoteFetcher()
        self.package_mirrors = list(
            DEFAULT_PACKAGE_MIRRORS if package_mirrors is None else package_mirrors
        )
        self.max_passes = max_passes
        self.max_workers = max_workers

    @classmethod
    def from_config(cls, config) -> "ImportResolver":
        return cls(
            fetcher=RemoteFetcher(timeout=config.fetch_timeout),
            package_mirrors=config.package_mirrors,
            max_passes=config.max_resolution_passes,
            max_workers=config.max_fetch_workers,
        )

    def resolve(self, initial_sources: dict[str, str]) -> dict[str, str]:
        """
        Resolve all imports, transitively.

        Args:
            initial_sources (dict[str, str]): Source IDs to source code.

        Returns:
            dict[str, str]: A new source set containing the initial sources
            (unchanged) plus every fetched import.
        """
        sources = dict(initial_sources)
        last_added: Optional[ImportReference] = None
        for pass_number in range(1, self.max_passes + 1):
            if not (pending := self.get_unresolved(sources)):
                return sources

            # Fetches within a pass are independent. The whole pass is applied
            # before scanning again.
            for reference, content in zip(pending, self._fetch_all(pending)):
                sources[reference.expected_key] = content
                last_added = reference

            added = ", ".join(r.import_path for r in pending)
            logger.debug(f"Import resolution pass {pass_number} added: {added}")

        assert last_added is not None  # For mypy
        raise ImportResolutionLimitError(
            last_added.import_path, last_added.source_id, self.max_passes
        )

    def get_unresolved(self, sources: dict[str, str]) -> list[ImportReference]:
        """
        The imports that need fetching, in order of discovery.
        Raises when a relative import is missing.
        """
        pending: dict[str, ImportReference] = {}
        for reference in get_import_references(sources):
            key = reference.expected_key
            if key in sources or key in pending:
                continue

            elif reference.kind is ImportKind.RELATIVE:
                raise MissingRelativeImportError(reference.import_path, reference.source_id, key)

            pending[key] = reference

        return list(pending.values())

    def fetch(self, reference: ImportReference) -> str:
        if reference.kind is ImportKind.REMOTE:
            return self._fetch_remote(reference)

        return self._fetch_package(reference)

    def _fetch_all(self, references: list[ImportReference]) -> list[str]:
        if len(references) == 1:
            return [self.fetch(references[0])]

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="import-fetch"
        ) as executor:
            return list(executor.map(self.fetch, references))

    def _fetch_remote(self, reference: ImportReference) -> str:
        try:
            return self.fetcher(reference.import_path)
        except RequestException as err:
            status_code = _get_status_code(err)
            reason = f"HTTP {status_code}" if status_code else f"{err}"
            raise ImportFetchError(
                reference.import_path, reference.source_id, reason, status_code=status_code
            ) from err

    def _fetch_package(self, reference: ImportReference) -> str:
        last_err: Optional[Exception] = None
        for url in get_package_urls(reference, self.package_mirrors):
            try:
                content = self.fetcher(url)
            except RequestException as err:
                logger.debug(f"Failed to fetch '{url}': {err}")
                last_err = err
                continue

            logger.info(f"Fetched import '{reference.import_path}' from '{url}'.")
            return content

        reason = f"{last_err}" if last_err else "no package mirrors configured"
        raise ImportFetchError(
            reference.import_path,
            reference.source_id,
            reason,
            status_code=_get_status_code(last_err) if last_err else None,
        ) from last_err
