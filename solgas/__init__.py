from typing import Any


def __getattr__(name: str) -> Any:
    if name == "SolgasConfig":
        from .compiler import SolgasConfig

        return SolgasConfig

    elif name == "CompilerLoader":
        from .compiler import CompilerLoader

        return CompilerLoader

    elif name == "ImportResolver":
        from .imports import ImportResolver

        return ImportResolver

    elif name == "GasEstimationEngine":
        from .gas import GasEstimationEngine

        return GasEstimationEngine

    elif name == "compile_and_estimate":
        from .service import compile_and_estimate

        return compile_and_estimate

    elif name == "estimate_gas":
        from .service import estimate_gas

        return estimate_gas

    else:
        raise AttributeError(name)


__all__ = [
    "CompilerLoader",
    "GasEstimationEngine",
    "ImportResolver",
    "SolgasConfig",
    "compile_and_estimate",
    "estimate_gas",
]
