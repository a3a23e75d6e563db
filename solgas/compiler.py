import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from pathlib import Path
from typing import Optional

from ape.api import PluginConfig
from ape.logging import logger
from packaging.version import Version
from solcx import compile_standard, get_installed_solc_versions, install_solc
from solcx.exceptions import SolcError
from solcx.install import get_executable

from solgas._models import DEFAULT_OPTIMIZATION_RUNS, CompileOutput, CompileRequest, Diagnostic
from solgas._utils import (
    BASELINE_VERSION_TAG,
    DEFAULT_PACKAGE_MIRRORS,
    DEFAULT_VERSION_MAP,
    iter_short_versions,
    strip_commit_hash,
)
from solgas.exceptions import CompilerInvocationError, SolcCompileError, SolcInstallError

DEFAULT_COMPILER_LOAD_TIMEOUT = 20.0
DEFAULT_MAX_RESOLUTION_PASSES = 20

Installer = Callable[[Version], Optional[Path]]


class SolgasConfig(PluginConfig):
    """
    Configure the compile-and-estimate pipeline.
    """

    optimize: bool = False
    """
    Compile with optimization. Defaults to ``False`` so deployment
    estimates reflect unoptimized code.
    """

    optimization_runs: int = DEFAULT_OPTIMIZATION_RUNS

    evm_version: Optional[str] = None
    """
    Compile targeting this EVM version.
    """

    version_map: dict[str, str] = DEFAULT_VERSION_MAP
    """
    Pragma ``major.minor`` to compiler version tag, e.g.
    ``{"0.8": "v0.8.20+commit.a1b79de6"}``.
    """

    baseline_version: str = BASELINE_VERSION_TAG
    """
    The compiler used when no pragma matches and whenever loading a
    version-matched compiler fails or times out.
    """

    compiler_load_timeout: float = DEFAULT_COMPILER_LOAD_TIMEOUT
    """
    Seconds to wait for a version-matched compiler before
    falling back to the baseline compiler.
    """

    max_resolution_passes: int = DEFAULT_MAX_RESOLUTION_PASSES

    package_mirrors: list[str] = DEFAULT_PACKAGE_MIRRORS
    """
    URL templates tried in order when fetching a package import.
    Supports ``{package}`` and ``{path}`` placeholders.
    """

    fetch_timeout: Optional[float] = 30.0
    max_fetch_workers: int = 8
    max_rpc_workers: int = 4
    rpc_timeout: float = 30.0

    monad_rpc_url: Optional[str] = None
    ethereum_rpc_url: Optional[str] = None

    def rpc_endpoints(self) -> dict[str, Optional[str]]:
        return {"monad": self.monad_rpc_url, "ethereum": self.ethereum_rpc_url}


def select_version_tag(
    sources: dict[str, str],
    version_map: Optional[dict[str, str]] = None,
    default: Optional[str] = None,
) -> str:
    """
    Select a compiler version tag from the pragmas in the given sources.
    Sources are checked in key order and the first mapped pragma wins;
    conflicting pragmas in later files are not reconciled.

    Args:
        sources (dict[str, str]): Source IDs to Solidity source code.
        version_map (Optional[dict[str, str]]): ``major.minor`` to version tag.
          Defaults to the built-in map.
        default (Optional[str]): The tag used when nothing matches.
          Defaults to the baseline tag.

    Returns:
        str
    """
    version_map = DEFAULT_VERSION_MAP if version_map is None else version_map
    default = default or BASELINE_VERSION_TAG
    selected: Optional[tuple[str, str]] = None
    for source_id, short_version in iter_short_versions(sources):
        if short_version not in version_map:
            continue

        elif selected is None:
            selected = (source_id, short_version)

        elif short_version != selected[1]:
            logger.debug(
                f"Pragma in '{source_id}' ({short_version}) differs from "
                f"'{selected[0]}' ({selected[1]}). Using {selected[1]}."
            )

    if selected is None:
        return default

    return version_map[selected[1]]


class CompilerInstance:
    """
    A ``solc`` binary able to compile standard-JSON input.
    When ``solc_binary`` is not set, ``solcx`` locates the installed
    binary for ``version`` at compile time.
    """

    def __init__(self, version: Version, solc_binary: Optional[Path] = None):
        self.version = version
        self.solc_binary = solc_binary

    def __repr__(self) -> str:
        return f"<CompilerInstance {self.version}>"

    def compile(self, input_json: dict) -> dict:
        arguments: dict = {"allow_empty": True}
        if self.solc_binary:
            arguments["solc_binary"] = self.solc_binary
        else:
            arguments["solc_version"] = self.version

        return compile_standard(input_json, **arguments)


def _install_from_remote(version: Version) -> Path:
    install_solc(version, show_progress=False)
    return get_executable(version=version)


class CompilerLoader:
    """
    Obtains compiler instances by version tag. When a version-matched
    compiler cannot be installed in time, an installed fallback compiler
    is returned instead: the baseline if present, else the newest one.
    """

    def __init__(
        self,
        baseline_version: str = BASELINE_VERSION_TAG,
        installer: Optional[Installer] = None,
        timeout: float = DEFAULT_COMPILER_LOAD_TIMEOUT,
    ):
        self.baseline_version = strip_commit_hash(baseline_version)
        self.installer = installer or _install_from_remote
        self.timeout = timeout

    @classmethod
    def from_config(cls, config: SolgasConfig) -> "CompilerLoader":
        return cls(baseline_version=config.baseline_version, timeout=config.compiler_load_timeout)

    @property
    def installed_versions(self) -> list[Version]:
        return get_installed_solc_versions()

    def get_fallback(self, tag: str) -> CompilerInstance:
        """
        The installed compiler to use when ``tag`` could not be loaded.

        Raises:
            :class:`~solgas.exceptions.SolcInstallError`: When no compiler
              is installed at all.
        """
        installed = self.installed_versions
        if self.baseline_version in installed:
            return CompilerInstance(self.baseline_version)

        elif installed:
            version = max(installed)
            logger.warning(
                f"Baseline compiler '{self.baseline_version}' is not installed. "
                f"Using '{version}'."
            )
            return CompilerInstance(version)

        raise SolcInstallError(tag)

    def load(self, tag: str, timeout: Optional[float] = None) -> CompilerInstance:
        timeout = self.timeout if timeout is None else timeout
        version = strip_commit_hash(tag)
        if version in self.installed_versions:
            return CompilerInstance(version)

        logger.info(f"Loading Solidity compiler '{tag}'.")

        # Only the first outcome is honored. The install thread is a daemon so
        # a hung download neither blocks this call nor interpreter exit.
        result: Future = Future()

        def install():
            try:
                result.set_result(self.installer(version))
            except Exception as err:
                result.set_exception(err)

        threading.Thread(target=install, name=f"solc-install-{version}", daemon=True).start()
        try:
            solc_binary = result.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(
                f"Loading Solidity compiler '{tag}' timed out after {timeout}s. "
                "Using fallback compiler."
            )
            return self.get_fallback(tag)
        except Exception as err:
            logger.warning(
                f"Loading Solidity compiler '{tag}' failed: {err}. Using fallback compiler."
            )
            return self.get_fallback(tag)

        return CompilerInstance(version, solc_binary=solc_binary)


def compile_sources(
    instance: CompilerInstance, request: CompileRequest
) -> tuple[CompileOutput, float]:
    """
    Compile the request using the given compiler instance.

    Returns:
        tuple[:class:`~solgas._models.CompileOutput`, float]: The output
        and the wall-clock compile time in milliseconds.

    Raises:
        :class:`~solgas.exceptions.SolcCompileError`: When any diagnostic is fatal.
    """
    keys = "\n\t".join(sorted(request.sources)) or "No input."
    logger.info(f"Compiling using Solidity compiler '{instance.version}'.\nInput:\n\t{keys}")
    input_json = request.get_standard_input_json()

    start = time.perf_counter()
    try:
        output = CompileOutput.from_solc(instance.compile(input_json))
    except SolcError as err:
        if not err.error_dict:
            raise CompilerInvocationError(f"{err}") from err

        output = CompileOutput(errors=[Diagnostic.model_validate(e) for e in err.error_dict])

    elapsed_ms = round((time.perf_counter() - start) * 1000, 3)
    if output.fatal_errors:
        raise SolcCompileError(output.errors)

    elif warnings := output.warnings:
        logger.warning(f"Compiled with {len(warnings)} warning(s).")

    return output, elapsed_ms
