"""
The request boundary. Validates request payloads, runs the
compile-and-estimate pipeline and maps failures to status codes
and error payloads. Transport (HTTP routing, middleware) lives
outside of this package.
"""

from typing import Any, Optional

from ape.logging import logger
from pydantic import ValidationError

from solgas._models import (
    CompileAndEstimateRequest,
    CompileRequest,
    EstimateGasRequest,
    EstimationMode,
    GasEstimationResult,
)
from solgas.compiler import CompilerLoader, SolgasConfig, compile_sources, select_version_tag
from solgas.exceptions import (
    GasEstimationError,
    ImportResolutionError,
    InputError,
    SolcCompileError,
    SolcInstallError,
)
from solgas.gas import Estimator, GasEstimationEngine, Web3GasEstimator, estimate_transaction_gas
from solgas.imports import ImportResolver

Response = tuple[int, dict[str, Any]]


def select_endpoint(chain: Optional[str], endpoints: dict[str, Optional[str]]) -> Optional[str]:
    """
    Only ``"ethereum"`` selects the Ethereum endpoint. Every other chain
    (including none) uses Monad.
    """
    return endpoints.get("ethereum") if chain == "ethereum" else endpoints.get("monad")


def run_pipeline(
    sources: dict[str, str],
    mode: EstimationMode,
    endpoint: Optional[str],
    config: SolgasConfig,
    resolver: ImportResolver,
    loader: CompilerLoader,
    engine: GasEstimationEngine,
) -> tuple[list[GasEstimationResult], float]:
    resolved = resolver.resolve(sources)
    tag = select_version_tag(
        resolved, version_map=config.version_map, default=config.baseline_version
    )
    instance = loader.load(tag)
    request = CompileRequest(
        sources=resolved,
        optimize=config.optimize,
        optimization_runs=config.optimization_runs,
        evm_version=config.evm_version,
    )
    output, compile_time_ms = compile_sources(instance, request)
    results = engine.estimate(output, mode=mode, endpoint=endpoint, compile_time_ms=compile_time_ms)
    return results, compile_time_ms


def compile_and_estimate(
    payload: Any,
    config: Optional[SolgasConfig] = None,
    resolver: Optional[ImportResolver] = None,
    loader: Optional[CompilerLoader] = None,
    engine: Optional[GasEstimationEngine] = None,
) -> Response:
    """
    Compile Solidity source(s) and estimate the deployment gas of each contract.

    Args:
        payload (Any): ``{"sourceCode": str}`` or ``{"sources": {filename: {"content": str}}}``,
          plus optional ``chain`` and ``mode``.
        config (Optional[:class:`~solgas.compiler.SolgasConfig`]): Pipeline configuration.
        resolver (Optional[:class:`~solgas.imports.ImportResolver`]): Override import resolution.
        loader (Optional[:class:`~solgas.compiler.CompilerLoader`]): Override compiler loading.
        engine (Optional[:class:`~solgas.gas.GasEstimationEngine`]): Override gas estimation.

    Returns:
        tuple[int, dict]: The status code and the response body.
    """
    config = config or SolgasConfig()
    try:
        request = CompileAndEstimateRequest.model_validate(payload)
        sources = request.get_sources()
        results, compile_time_ms = run_pipeline(
            sources,
            request.mode,
            select_endpoint(request.chain, config.rpc_endpoints()),
            config,
            resolver or ImportResolver.from_config(config),
            loader or CompilerLoader.from_config(config),
            engine or GasEstimationEngine.from_config(config),
        )

    except ValidationError as err:
        return 400, {"error": _format_validation_error(err)}

    except (InputError, ImportResolutionError) as err:
        return 400, {"error": f"{err}"}

    except SolcCompileError as err:
        return 400, {
            "error": "Compilation failed",
            "details": [d.to_json_dict() for d in err.diagnostics],
        }

    except SolcInstallError as err:
        logger.error(f"No usable Solidity compiler: {err}")
        return 500, {"error": f"{err}"}

    except Exception as err:
        logger.error(f"Compile and estimate failed: {err!r}")
        return 500, {"error": f"{err}" or type(err).__name__}

    return 200, {
        "results": [r.to_json_dict() for r in results],
        "compileTimeMs": compile_time_ms,
    }


def estimate_gas(
    payload: Any,
    config: Optional[SolgasConfig] = None,
    estimator: Optional[Estimator] = None,
) -> Response:
    """
    Estimate gas for an arbitrary transaction ``{to, data, from?, chain?}``.
    """
    config = config or SolgasConfig()
    try:
        request = EstimateGasRequest.model_validate(payload)
        to, data = request.validate_transaction()
        gas = estimate_transaction_gas(
            select_endpoint(request.chain, config.rpc_endpoints()),
            to,
            data,
            from_=request.from_,
            estimator=estimator or Web3GasEstimator(timeout=config.rpc_timeout),
        )

    except ValidationError as err:
        return 400, {"error": _format_validation_error(err)}

    except InputError as err:
        return 400, {"error": f"{err}"}

    except GasEstimationError as err:
        return 500, {"error": f"{err}"}

    return 200, {"gasUsed": f"{gas}"}


def _format_validation_error(err: ValidationError) -> str:
    messages = []
    for error in err.errors():
        location = ".".join(f"{x}" for x in error.get("loc", ()))
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])

    return f"Invalid request: {'; '.join(messages)}"
