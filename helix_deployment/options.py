from pathlib import Path

import click

from helix_deployment.constants import ARTIFACTS_DIR_ENVVAR
from helix_deployment.types import ChecksumAddress, MinInt, NetworkId

network_option = click.option(
    "--network",
    "-n",
    help="Network name or chain id (e.g. testnetBSC or 97).",
    type=NetworkId(),
    required=True,
)

autosign_option = click.option(
    "--autosign",
    help="Sign and submit every step without asking.",
    is_flag=True,
    default=False,
)

timeout_option = click.option(
    "--timeout",
    "-t",
    help="Seconds to wait for each confirmation (default: network setting).",
    type=MinInt(1),
    required=False,
)

set_option = click.option(
    "--set",
    "overrides",
    help="Override a deployment constant, NAME=VALUE. May be repeated.",
    multiple=True,
)

registry_option = click.option(
    "--registry",
    "-r",
    help="Record deployed addresses in this registry file.",
    type=click.Path(dir_okay=False, path_type=Path),
    required=False,
)

artifacts_option = click.option(
    "--artifacts",
    help="Hardhat artifacts directory.",
    type=click.Path(file_okay=False, path_type=Path),
    envvar=ARTIFACTS_DIR_ENVVAR,
    required=False,
)

lp_token_option = click.option(
    "--lp-token",
    "-l",
    help="Address of the LP token to register.",
    type=ChecksumAddress(),
    required=True,
)

alloc_point_option = click.option(
    "--alloc-point",
    "-a",
    help="Allocation points of the new pool.",
    type=MinInt(0),
    required=True,
)

bridger_option = click.option(
    "--bridger",
    "-b",
    help="Address to add as bridger.",
    type=ChecksumAddress(),
    required=True,
)
