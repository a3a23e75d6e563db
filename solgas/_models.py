from collections.abc import Iterator
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from solgas._utils import (
    OUTPUT_SELECTION,
    ImportKind,
    classify_import,
    get_relative_import_key,
    load_dict,
    split_package_import,
)
from solgas.exceptions import InputError

DEFAULT_OPTIMIZATION_RUNS = 200
DEFAULT_SOURCE_ID = "Contract.sol"


class SolgasModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class EstimationMode(str, Enum):
    FAST = "fast"
    RPC = "rpc"


class EstimationMethod(str, Enum):
    COMPILER = "compiler"
    RPC = "rpc"
    NONE = "none"


class ImportReference(SolgasModel):
    """
    A single import statement: the file it appears in and the path it imports.
    """

    model_config = ConfigDict(frozen=True)

    source_id: str
    import_path: str

    @property
    def kind(self) -> ImportKind:
        return classify_import(self.import_path)

    @property
    def expected_key(self) -> str:
        """
        The key the import is stored under in a resolved source set.
        """
        if self.kind is ImportKind.RELATIVE:
            return get_relative_import_key(self.import_path, self.source_id)

        return self.import_path

    @property
    def package_name(self) -> str:
        return split_package_import(self.import_path)[0]

    @property
    def package_path(self) -> str:
        return split_package_import(self.import_path)[1]

    def __repr__(self) -> str:
        return f"<ImportReference {self.import_path} from {self.source_id}>"


class CompileRequest(SolgasModel):
    model_config = ConfigDict(frozen=True)

    sources: dict[str, str]
    optimize: bool = False
    optimization_runs: int = DEFAULT_OPTIMIZATION_RUNS
    evm_version: Optional[str] = None
    output_selection: list[str] = OUTPUT_SELECTION

    def get_standard_input_json(self) -> dict:
        settings: dict[str, Any] = {
            "optimizer": {"enabled": self.optimize, "runs": self.optimization_runs},
            "outputSelection": {"*": {"*": list(self.output_selection)}},
        }
        if evm_version := self.evm_version:
            settings["evmVersion"] = evm_version

        return {
            "language": "Solidity",
            "sources": {k: {"content": v} for k, v in self.sources.items()},
            "settings": settings,
        }


class Diagnostic(SolgasModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    severity: str = "error"
    type: Optional[str] = None
    component: Optional[str] = None
    message: str = ""
    formatted_message: Optional[str] = Field(default=None, alias="formattedMessage")
    source_location: Optional[dict] = Field(default=None, alias="sourceLocation")

    @property
    def is_fatal(self) -> bool:
        return self.severity == "error"

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class ContractOutput(SolgasModel):
    abi: list = []
    bytecode: str = ""
    """
    The creation bytecode, as reported by the compiler (no ``0x`` prefix).
    """

    deployed_bytecode: str = ""
    gas_estimates: dict = {}
    metadata: dict = {}

    @classmethod
    def from_solc(cls, data: dict) -> "ContractOutput":
        evm = data.get("evm") or {}
        metadata = data.get("metadata")
        return cls(
            abi=data.get("abi") or [],
            bytecode=(evm.get("bytecode") or {}).get("object") or "",
            deployed_bytecode=(evm.get("deployedBytecode") or {}).get("object") or "",
            gas_estimates=evm.get("gasEstimates") or {},
            metadata=load_dict(metadata) if metadata else {},
        )


class CompileOutput(SolgasModel):
    errors: list[Diagnostic] = []
    contracts: dict[str, dict[str, ContractOutput]] = {}

    @classmethod
    def from_solc(cls, output: dict) -> "CompileOutput":
        return cls(
            errors=[Diagnostic.model_validate(e) for e in output.get("errors") or []],
            contracts={
                source_id: {
                    name: ContractOutput.from_solc(contract_data)
                    for name, contract_data in (contracts_out or {}).items()
                }
                for source_id, contracts_out in (output.get("contracts") or {}).items()
            },
        )

    @property
    def fatal_errors(self) -> list[Diagnostic]:
        return [e for e in self.errors if e.is_fatal]

    @property
    def warnings(self) -> list[Diagnostic]:
        return [e for e in self.errors if not e.is_fatal]

    def iter_contracts(self) -> Iterator[tuple[str, str, ContractOutput]]:
        for filename, contracts_out in self.contracts.items():
            for contract_name, contract in contracts_out.items():
                yield filename, contract_name, contract


class EstimationMetrics(SolgasModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    compile_time_ms: float = Field(alias="compileTimeMs")
    parallelism: int
    gas_per_second: Optional[str] = Field(default=None, alias="gasPerSecond")
    using_compiler_estimate: bool = Field(default=False, alias="usingCompilerEstimate")


class GasEstimationResult(SolgasModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    contract_name: str = Field(alias="contractName")
    filename: str
    abi: list = []
    bytecode: Optional[str] = None
    gas_used: Optional[str] = Field(default=None, alias="gasUsed")
    """
    Deployment gas as a decimal string. ``None`` means it could not be estimated.
    """

    estimation_method: EstimationMethod = Field(
        default=EstimationMethod.NONE, alias="estimationMethod"
    )
    metrics: EstimationMetrics


class SourceContent(SolgasModel):
    content: str


class CompileAndEstimateRequest(SolgasModel):
    source_code: Optional[str] = Field(default=None, alias="sourceCode")
    sources: Optional[dict[str, SourceContent]] = None
    chain: str = "monad"
    mode: EstimationMode = EstimationMode.FAST

    def get_sources(self) -> dict[str, str]:
        if self.source_code and self.sources:
            raise InputError("Provide either 'sourceCode' or 'sources', not both.")
        elif self.sources:
            return {k: v.content for k, v in self.sources.items()}
        elif self.source_code:
            return {DEFAULT_SOURCE_ID: self.source_code}

        raise InputError("Missing Solidity source code or sources map.")


class EstimateGasRequest(SolgasModel):
    to: Optional[str] = None
    data: Optional[str] = None
    from_: Optional[str] = Field(default=None, alias="from")
    chain: str = "monad"

    def validate_transaction(self) -> tuple[str, str]:
        if not self.to or not self.data:
            raise InputError("Missing 'to' or 'data'.")

        return self.to, self.data
