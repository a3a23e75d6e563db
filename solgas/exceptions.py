from typing import TYPE_CHECKING, Optional

from ape.exceptions import ApeException, CompilerError
from ape.logging import LogLevel, logger

if TYPE_CHECKING:
    from solgas._models import Diagnostic


class InputError(ApeException, ValueError):
    """
    Raised when a request is missing required fields or is malformed.
    """


class ImportResolutionError(CompilerError):
    """
    Raised when an import statement cannot be satisfied.
    """

    def __init__(self, message: str, import_path: str, source_id: str):
        self.import_path = import_path
        self.source_id = source_id
        super().__init__(message)


class MissingRelativeImportError(ImportResolutionError):
    def __init__(self, import_path: str, source_id: str, expected_key: str):
        self.expected_key = expected_key
        super().__init__(
            f"Missing relative import file: '{import_path}' referenced from '{source_id}'. "
            f"Provide it in 'sources' as filename '{expected_key}'.",
            import_path,
            source_id,
        )


class ImportFetchError(ImportResolutionError):
    def __init__(
        self,
        import_path: str,
        source_id: str,
        reason: str,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(
            f"Failed to resolve import '{import_path}' from '{source_id}': {reason}",
            import_path,
            source_id,
        )


class ImportResolutionLimitError(ImportResolutionError):
    """
    Raised when resolution does not converge within the pass limit,
    typically an import cycle or an endless chain of remote imports.
    """

    def __init__(self, import_path: str, source_id: str, max_passes: int):
        self.max_passes = max_passes
        super().__init__(
            f"Import resolution exceeded max iterations ({max_passes}). "
            f"Last import added: '{import_path}' (from '{source_id}').",
            import_path,
            source_id,
        )


class SolcCompileError(CompilerError):
    """
    Raised when the compiler reports at least one fatal diagnostic.
    """

    def __init__(self, diagnostics: list["Diagnostic"]):
        self.diagnostics = diagnostics
        super().__init__("Compilation failed")

    @property
    def fatal(self) -> list["Diagnostic"]:
        return [d for d in self.diagnostics if d.is_fatal]

    def __str__(self) -> str:
        if logger.level <= LogLevel.DEBUG:
            lines = [d.formatted_message or d.message for d in self.diagnostics]
        else:
            lines = [d.message for d in self.fatal]

        return "\n".join(["Compilation failed", *lines])


class CompilerInvocationError(CompilerError):
    """
    Raised when the compiler binary itself fails (no diagnostics produced).
    """


class SolcInstallError(CompilerError):
    def __init__(self, version: str):
        super().__init__(
            f"Unable to install Solidity compiler '{version}'. "
            "Check your Internet connection or install it manually using `solgas install`."
        )


class GasEstimationError(ApeException):
    """
    Raised when a node rejects a gas-estimation request.
    """
