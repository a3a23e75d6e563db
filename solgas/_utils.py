import json
import posixpath
import re
from collections.abc import Iterator
from enum import Enum
from typing import Optional, Union
from urllib.parse import urljoin

from packaging.version import Version

OUTPUT_SELECTION = [
    "abi",
    "evm.bytecode",
    "evm.deployedBytecode",
    "evm.gasEstimates",
    "metadata",
]

DEFAULT_VERSION_MAP = {
    "0.8": "v0.8.20+commit.a1b79de6",
    "0.7": "v0.7.6+commit.7338295f",
    "0.6": "v0.6.12+commit.27d51765",
    "0.5": "v0.5.17+commit.d19bba13",
    "0.4": "v0.4.26+commit.4563c3fc",
}
BASELINE_VERSION_TAG = DEFAULT_VERSION_MAP["0.8"]

DEFAULT_PACKAGE_MIRRORS = [
    "https://unpkg.com/{package}@latest/{path}",
    "https://unpkg.com/{package}/{path}",
    "https://raw.githubusercontent.com/{package}/master/{path}",
]

# Matches string literals (group 1) so comment markers inside them, like in URLs, are kept.
COMMENT_PATTERN = re.compile(
    r"(\"(?:\\.|[^\"\\\n])*\"|'(?:\\.|[^'\\\n])*')|//[^\n]*|/\*.*?\*/", re.DOTALL
)

# Handles `import "x";`, `import "x" as Y;`, `import {A} from "x";` and `import * as Y from "x";`.
IMPORT_PATTERN = re.compile(r"\bimport\s+(?:[^;\"']*?\bfrom\s+)?[\"']([^\"']+)[\"']")
PRAGMA_PATTERN = re.compile(r"pragma\s+solidity\s+([^;]+);")
SHORT_VERSION_PATTERN = re.compile(r"(\d+)\.(\d+)")
REMOTE_IMPORT_PATTERN = re.compile(r"^https?://", re.IGNORECASE)
GAS_VALUE_PATTERN = re.compile(r"[0-9]+")


class Extension(Enum):
    SOL = ".sol"


class ImportKind(Enum):
    REMOTE = "remote"
    RELATIVE = "relative"
    PACKAGE = "package"


def remove_comments(source_code: str) -> str:
    return COMMENT_PATTERN.sub(lambda m: m.group(1) or "", source_code)


def get_import_paths(source_code: str) -> list[str]:
    """
    Extract the import paths from Solidity source code, in order of appearance.
    Duplicate imports are only reported once.
    """
    result: list[str] = []
    for match in IMPORT_PATTERN.finditer(remove_comments(source_code)):
        import_path = match.group(1).strip()
        if import_path and import_path not in result:
            result.append(import_path)

    return result


def classify_import(import_path: str) -> ImportKind:
    if REMOTE_IMPORT_PATTERN.match(import_path):
        return ImportKind.REMOTE
    elif import_path.startswith("./") or import_path.startswith("../"):
        return ImportKind.RELATIVE

    return ImportKind.PACKAGE


def get_relative_import_key(import_path: str, source_id: str) -> str:
    """
    The source ID a relative import refers to, e.g. ``./B.sol`` imported
    from ``contracts/A.sol`` is ``contracts/B.sol``.
    """
    if REMOTE_IMPORT_PATTERN.match(source_id):
        return urljoin(source_id, import_path)

    base_dir = posixpath.dirname(source_id)
    return posixpath.normpath(posixpath.join(base_dir, import_path))


def split_package_import(import_path: str) -> tuple[str, str]:
    """
    ``@openzeppelin/contracts/token/ERC20/ERC20.sol``
    => ``("@openzeppelin/contracts", "token/ERC20/ERC20.sol")``.
    """
    parts = import_path.split("/")
    size = 2 if import_path.startswith("@") else 1
    return "/".join(parts[:size]), "/".join(parts[size:])


def get_pragma_str(source_code: str) -> Optional[str]:
    if not (match := PRAGMA_PATTERN.search(remove_comments(source_code))):
        return None

    return match.group(1).strip()


def get_short_version(pragma_str: str) -> Optional[str]:
    """
    ``^0.8.0`` => ``0.8`` and ``>=0.6.0 <0.8.0`` => ``0.6``.
    """
    if not (match := SHORT_VERSION_PATTERN.search(pragma_str)):
        return None

    return f"{match.group(1)}.{match.group(2)}"


def iter_short_versions(sources: dict[str, str]) -> Iterator[tuple[str, str]]:
    for source_id, content in sources.items():
        if not (pragma := get_pragma_str(content)):
            continue

        if short := get_short_version(pragma):
            yield source_id, short


def load_dict(data: Union[str, dict]) -> dict:
    return data if isinstance(data, dict) else json.loads(data)


def strip_commit_hash(version: Union[str, Version]) -> Version:
    """
    Version('0.8.21+commit.d9974bed') => Version('0.8.21')> the simple way.
    """
    return Version(f"{str(version).split('+')[0].strip()}")


def parse_gas_value(value) -> Optional[int]:
    """
    Parse a compiler-reported gas figure. Returns ``None`` for anything that
    is not a non-negative integer, such as ``"infinite"``.
    """
    if isinstance(value, bool):
        return None
    elif isinstance(value, int):
        return value if value >= 0 else None
    elif isinstance(value, str) and GAS_VALUE_PATTERN.fullmatch(value.strip()):
        return int(value.strip())

    return None
