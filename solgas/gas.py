import os
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from ape.logging import logger
from eth_utils import add_0x_prefix, is_address, to_checksum_address
from web3 import HTTPProvider, Web3

from solgas._models import (
    CompileOutput,
    ContractOutput,
    EstimationMethod,
    EstimationMetrics,
    EstimationMode,
    GasEstimationResult,
)
from solgas._utils import parse_gas_value
from solgas.exceptions import GasEstimationError, InputError

DEFAULT_MAX_RPC_WORKERS = 4
DEFAULT_RPC_TIMEOUT = 30.0

Estimator = Callable[[str, dict], int]


def _creation_field(name: str) -> Callable[[Any], Any]:
    def extract(creation: Any) -> Any:
        return creation.get(name) if isinstance(creation, dict) else None

    return extract


# Compatibility shims. The shape of ``evm.gasEstimates.creation`` differs
# between compiler releases, so known locations are probed in priority order.
CREATION_COST_EXTRACTORS: tuple[tuple[str, Callable[[Any], Any]], ...] = (
    ("codeDepositCost", _creation_field("codeDepositCost")),
    ("codeDeposit", _creation_field("codeDeposit")),
    ("totalCost", _creation_field("totalCost")),
    ("creation", _creation_field("creation")),
    ("<value>", lambda creation: creation),
)


def get_compiler_estimate(gas_estimates: dict) -> Optional[int]:
    """
    The compiler-reported deployment cost, if any location
    holds a non-negative integer.
    """
    if (creation := gas_estimates.get("creation")) is None:
        return None

    for _, extract in CREATION_COST_EXTRACTORS:
        if (value := parse_gas_value(extract(creation))) is not None:
            return value

    return None


def build_transaction(
    data: str, to: Optional[str] = None, from_: Optional[str] = None, value: int = 0
) -> dict:
    transaction: dict[str, Any] = {"data": add_0x_prefix(data), "value": value}
    for key, address in (("to", to), ("from", from_)):
        if not address:
            continue
        elif not is_address(address):
            raise InputError(f"Invalid '{key}' address '{address}'.")

        transaction[key] = to_checksum_address(address)

    return transaction


def get_gas_per_second(gas: Optional[int], compile_time_ms: float) -> Optional[str]:
    if gas is None or compile_time_ms <= 0:
        return None

    return f"{gas / (compile_time_ms / 1000):.2f}"


class Web3GasEstimator:
    """
    Estimates gas using a node's ``eth_estimateGas`` RPC.
    """

    def __init__(self, timeout: float = DEFAULT_RPC_TIMEOUT):
        self.timeout = timeout

    def __call__(self, endpoint: str, transaction: dict) -> int:
        web3 = Web3(HTTPProvider(endpoint, request_kwargs={"timeout": self.timeout}))
        return web3.eth.estimate_gas(transaction)  # type: ignore[arg-type]


def estimate_transaction_gas(
    endpoint: Optional[str],
    to: Optional[str],
    data: str,
    from_: Optional[str] = None,
    estimator: Optional[Estimator] = None,
) -> int:
    if not endpoint:
        raise GasEstimationError("Gas estimation failed: no RPC endpoint configured.")

    transaction = build_transaction(data, to=to, from_=from_)
    estimator = estimator or Web3GasEstimator()
    try:
        return int(estimator(endpoint, transaction))
    except Exception as err:
        logger.error(f"Gas estimation failed: {err}")
        raise GasEstimationError(f"Gas estimation failed: {err}") from err


class GasEstimationEngine:
    """
    Produces a deployment gas figure for every compiled contract.

    In ``fast`` mode, the compiler's own estimate is used when it has one.
    Otherwise, the creation bytecode is sent to the node's gas-estimation RPC.
    A failed estimate only affects its own contract (``gasUsed`` is ``None``).
    """

    def __init__(
        self,
        estimator: Optional[Estimator] = None,
        max_workers: int = DEFAULT_MAX_RPC_WORKERS,
        parallelism: Optional[int] = None,
    ):
        self.estimator = estimator or Web3GasEstimator()
        self.max_workers = max_workers
        self.parallelism = parallelism or os.cpu_count() or 1

    @classmethod
    def from_config(cls, config) -> "GasEstimationEngine":
        return cls(
            estimator=Web3GasEstimator(timeout=config.rpc_timeout),
            max_workers=config.max_rpc_workers,
        )

    def estimate(
        self,
        output: CompileOutput,
        mode: EstimationMode = EstimationMode.FAST,
        endpoint: Optional[str] = None,
        compile_time_ms: float = 0,
    ) -> list[GasEstimationResult]:
        mode = EstimationMode(mode)
        contracts = list(output.iter_contracts())
        if not contracts:
            return []

        def estimate_one(item: tuple[str, str, ContractOutput]):
            return self.estimate_contract(*item, mode=mode, endpoint=endpoint)

        # NOTE: `map()` keeps the compiler's contract ordering.
        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="gas-estimate"
        ) as executor:
            estimates = list(executor.map(estimate_one, contracts))

        return [
            self._create_result(filename, name, contract, gas, method, compile_time_ms)
            for (filename, name, contract), (gas, method) in zip(contracts, estimates)
        ]

    def estimate_contract(
        self,
        filename: str,
        contract_name: str,
        contract: ContractOutput,
        mode: EstimationMode = EstimationMode.FAST,
        endpoint: Optional[str] = None,
    ) -> tuple[Optional[int], EstimationMethod]:
        if not contract.bytecode:
            # Interfaces and abstract contracts are never deployed.
            return None, EstimationMethod.NONE

        elif mode is EstimationMode.FAST and (
            gas := get_compiler_estimate(contract.gas_estimates)
        ) is not None:
            return gas, EstimationMethod.COMPILER

        elif "__$" in contract.bytecode:
            logger.warning(
                f"Unable to estimate {contract_name} ({filename}) - missing libraries."
            )
            return None, EstimationMethod.NONE

        elif not endpoint:
            logger.warning(
                f"No RPC endpoint configured. Unable to estimate {contract_name} ({filename})."
            )
            return None, EstimationMethod.NONE

        transaction = build_transaction(contract.bytecode)
        try:
            gas = int(self.estimator(endpoint, transaction))
        except Exception as err:
            logger.warning(f"RPC estimateGas failed for {contract_name} ({filename}): {err}")
            return None, EstimationMethod.NONE

        return gas, EstimationMethod.RPC

    def _create_result(
        self,
        filename: str,
        contract_name: str,
        contract: ContractOutput,
        gas: Optional[int],
        method: EstimationMethod,
        compile_time_ms: float,
    ) -> GasEstimationResult:
        return GasEstimationResult(
            name=f"{contract_name} ({filename})",
            contract_name=contract_name,
            filename=filename,
            abi=contract.abi,
            bytecode=add_0x_prefix(contract.bytecode) if contract.bytecode else None,
            gas_used=None if gas is None else f"{gas}",
            estimation_method=method,
            metrics=EstimationMetrics(
                compile_time_ms=compile_time_ms,
                parallelism=self.parallelism,
                gas_per_second=get_gas_per_second(gas, compile_time_ms),
                using_compiler_estimate=method is EstimationMethod.COMPILER,
            ),
        )
