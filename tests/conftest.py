import json
import threading
from typing import Optional

import pytest
import requests
from click.testing import CliRunner
from packaging.version import Version
from requests.exceptions import HTTPError

from solgas.compiler import CompilerInstance, SolgasConfig

BYTECODE = "6080604052348015600f57600080fd5b50603f80601d6000396000f3fe"
DEPLOYED_BYTECODE = "6080604052600080fdfea2646970667358221220"


class FakeFetcher:
    """
    Serves source text by URL. Unknown URLs respond with a 404.
    """

    def __init__(self, responses: Optional[dict[str, str]] = None):
        self.responses = responses or {}
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def __call__(self, url: str) -> str:
        with self._lock:
            self.calls.append(url)

        if url in self.responses:
            return self.responses[url]

        response = requests.Response()
        response.status_code = 404
        response.url = url
        raise HTTPError(f"404 Client Error: Not Found for url: {url}", response=response)


class FakeCompilerInstance(CompilerInstance):
    def __init__(self, output: Optional[dict] = None, error: Optional[Exception] = None):
        super().__init__(Version("0.8.20"))
        self.output = output or {}
        self.error = error
        self.inputs: list[dict] = []

    def compile(self, input_json: dict) -> dict:
        self.inputs.append(input_json)
        if self.error:
            raise self.error

        return self.output


class FakeLoader:
    def __init__(self, instance: CompilerInstance):
        self.instance = instance
        self.tags: list[str] = []

    def load(self, tag: str, timeout: Optional[float] = None) -> CompilerInstance:
        self.tags.append(tag)
        return self.instance


def make_contract(
    bytecode: str = BYTECODE, creation: Optional[object] = None, abi: Optional[list] = None
) -> dict:
    evm: dict = {
        "bytecode": {"object": bytecode},
        "deployedBytecode": {"object": DEPLOYED_BYTECODE if bytecode else ""},
    }
    if creation is not None:
        evm["gasEstimates"] = {"creation": creation}

    return {
        "abi": abi or [],
        "evm": evm,
        "metadata": json.dumps({"language": "Solidity"}) if bytecode else "",
    }


def make_error(severity: str = "error", message: str = "Expected ';' but got '}'") -> dict:
    return {
        "severity": severity,
        "type": "ParserError" if severity == "error" else "Warning",
        "component": "general",
        "message": message,
        "formattedMessage": f"{severity}: {message}\n --> Contract.sol:1:1:",
        "sourceLocation": {"file": "Contract.sol", "start": 0, "end": 1},
    }


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def config():
    return SolgasConfig(
        monad_rpc_url="http://monad.test",
        ethereum_rpc_url="http://ethereum.test",
        compiler_load_timeout=1,
    )


@pytest.fixture
def fake_no_installs(mocker):
    """
    Tricks the tests into thinking there are no installed versions.
    """
    patch = mocker.patch("solgas.compiler.get_installed_solc_versions")
    patch.return_value = []
    return patch


@pytest.fixture
def only_baseline_installed(mocker):
    patch = mocker.patch("solgas.compiler.get_installed_solc_versions")
    patch.return_value = [Version("0.8.20")]
    return patch


@pytest.fixture
def estimator(mocker):
    """
    A mock node RPC that estimates 50,000 gas for every transaction.
    """
    return mocker.MagicMock(return_value=50_000)


@pytest.fixture
def cli_runner():
    return CliRunner()
