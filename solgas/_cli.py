import json
import os
import sys
from pathlib import Path

import click
from ape.logging import LogLevel, logger
from requests.exceptions import RequestException
from solcx import install_solc
from solcx.exceptions import SolcInstallationError

from solgas._models import EstimationMode
from solgas._utils import BASELINE_VERSION_TAG, Extension, strip_commit_hash
from solgas.compiler import DEFAULT_COMPILER_LOAD_TIMEOUT, SolgasConfig
from solgas.exceptions import SolcInstallError
from solgas.service import compile_and_estimate, estimate_gas


def verbosity_option(f):
    def set_level(ctx, param, value):
        logger.set_level(value)

    return click.option(
        "-v",
        "--verbosity",
        type=click.Choice([lvl.name for lvl in LogLevel], case_sensitive=False),
        default="INFO",
        callback=set_level,
        expose_value=False,
        is_eager=True,
        help="One of ERROR, WARNING, SUCCESS, INFO, or DEBUG",
    )(f)


def rpc_options(f):
    f = click.option("--ethereum-rpc", envvar="ETHEREUM_RPC_URL", help="Ethereum RPC URL.")(f)
    f = click.option("--monad-rpc", envvar="MONAD_RPC_URL", help="Monad RPC URL.")(f)
    return click.option(
        "--chain",
        type=click.Choice(["monad", "ethereum"]),
        default="monad",
        help="The chain to estimate against.",
    )(f)


def _echo_response(status: int, body: dict):
    click.echo(json.dumps(body, indent=2))
    if status != 200:
        sys.exit(1)


def _get_source_id(path: Path, base_path: Path) -> str:
    return Path(os.path.relpath(path.resolve(), base_path.resolve())).as_posix()


@click.group()
def cli():
    """
    Compile Solidity and estimate deployment gas
    """


@cli.command(short_help="Compile sources and estimate deployment gas")
@click.argument(
    "paths",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--base-path",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=".",
    help="Source IDs are relative to this folder.",
)
@click.option(
    "--mode",
    type=click.Choice([m.value for m in EstimationMode]),
    default=EstimationMode.FAST.value,
    help="'fast' prefers compiler estimates. 'rpc' always asks the node.",
)
@click.option(
    "--timeout",
    type=float,
    default=DEFAULT_COMPILER_LOAD_TIMEOUT,
    help="Seconds to wait for a version-matched compiler.",
)
@click.option("--optimize", is_flag=True, help="Compile with optimization.")
@rpc_options
@verbosity_option
def compile(paths, base_path, mode, timeout, optimize, chain, monad_rpc, ethereum_rpc):
    for path in paths:
        if path.suffix != Extension.SOL.value:
            raise click.BadParameter(
                f"Unable to compile '{path.name}' using Solidity compiler.", param_hint="PATHS"
            )

    config = SolgasConfig(
        compiler_load_timeout=timeout,
        optimize=optimize,
        monad_rpc_url=monad_rpc,
        ethereum_rpc_url=ethereum_rpc,
    )
    sources = {_get_source_id(p, base_path): {"content": p.read_text()} for p in paths}
    payload = {"sources": sources, "chain": chain, "mode": mode}
    _echo_response(*compile_and_estimate(payload, config=config))


@cli.command(short_help="Estimate gas for a transaction")
@click.option("--to", "to_address", required=True, help="Recipient address.")
@click.option("--data", required=True, help="Hex call data.")
@click.option("--from", "from_address", help="Sender address.")
@rpc_options
@verbosity_option
def estimate(to_address, data, from_address, chain, monad_rpc, ethereum_rpc):
    config = SolgasConfig(monad_rpc_url=monad_rpc, ethereum_rpc_url=ethereum_rpc)
    payload = {"to": to_address, "data": data, "from": from_address, "chain": chain}
    _echo_response(*estimate_gas(payload, config=config))


@cli.command(short_help="Install a Solidity compiler")
@click.argument("version_tag", default=BASELINE_VERSION_TAG)
@verbosity_option
def install(version_tag):
    """
    Install a Solidity compiler, such as the baseline compiler
    used when a version-matched compiler is not available in time.
    """
    version = strip_commit_hash(version_tag)
    try:
        install_solc(version, show_progress=True)
    except (SolcInstallationError, RequestException) as err:
        raise click.ClickException(f"{SolcInstallError(version_tag)}") from err

    logger.success(f"Solidity compiler '{version}' installed.")
