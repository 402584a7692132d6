#!/usr/bin/python3

import functools
from pathlib import Path
from typing import Optional, Tuple

import click
import requests
from dotenv import load_dotenv

from helix_deployment.accounts import LocalSigner
from helix_deployment.artifacts import ArtifactStore
from helix_deployment.chain import Web3Client
from helix_deployment.confirm import _continue, confirm_step
from helix_deployment.constants import ARTIFACTS_DIR, RECIPES_DIR
from helix_deployment.exceptions import DeploymentConfigError, DeploymentError
from helix_deployment.networks import NetworkRegistry, ResolvedNetwork
from helix_deployment.options import (
    alloc_point_option,
    artifacts_option,
    autosign_option,
    bridger_option,
    lp_token_option,
    network_option,
    registry_option,
    set_option,
    timeout_option,
)
from helix_deployment.params import is_unset
from helix_deployment.recipe import Recipe
from helix_deployment.registry import read_registry, registry_from_run
from helix_deployment.runner import RecipeRunner, RunResult, StepState
from helix_deployment.types import ChecksumAddress
from helix_deployment.utils import parse_overrides
from helix_deployment.verify import ExplorerClient, verify_contracts

EXIT_COMPLETED = 0
EXIT_ABORTED = 1
EXIT_PREFLIGHT = 2

STATE_COLORS = {
    StepState.CONFIRMED: "green",
    StepState.FAILED: "red",
    StepState.SUBMITTED: "yellow",
    StepState.PENDING: "white",
}


def recipe_options(func):
    """Options shared by every command that runs a recipe."""

    @network_option
    @autosign_option
    @timeout_option
    @set_option
    @registry_option
    @artifacts_option
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return func(*args, **kwargs)

    return wrapper


def _print_run_info(resolved: ResolvedNetwork, signer, recipe: Recipe, artifacts: Path) -> None:
    network = resolved.network
    click.echo(
        "\n".join(
            [
                f"Recipe: {recipe.name} ({len(recipe)} steps)",
                f"Account: {signer.address}",
                f"Network: {network.name}",
                f"Chain ID: {network.chain_id}",
                f"Gas Price: {network.gas_price if network.gas_price is not None else 'node'}",
                f"Gas Limit: {network.gas_limit if network.gas_limit is not None else 'estimate'}",
                f"Artifacts: {artifacts}",
            ]
        )
    )


def _display_result(result: RunResult) -> None:
    color = "green" if result.ok else "red"
    click.secho(
        f"\n{result.recipe}: {result.state.value} on chain id {result.chain_id}", fg=color
    )
    for outcome in result.outcomes:
        nonce = "-" if outcome.nonce is None else outcome.nonce
        click.secho(
            f"    {outcome.index + 1}. {outcome.name} [{outcome.state.value}] nonce={nonce}",
            fg=STATE_COLORS[outcome.state],
        )
        if outcome.address:
            click.echo(f"        address: {outcome.address}")
        if outcome.receipt is not None:
            click.echo(f"        tx: {outcome.receipt.tx_hash} (block {outcome.receipt.block_number})")
        if outcome.error is not None:
            click.secho(f"        {outcome.error_kind}: {outcome.error}", fg="red")
    if result.cancelled:
        click.secho("Run cancelled before submitting the next step.", fg="yellow")
    click.echo(f"Next nonce for {result.account}: {result.next_nonce}")


def execute_recipe(
    recipe: Recipe,
    network,
    autosign: bool,
    timeout: Optional[int],
    overrides: Tuple[str, ...],
    registry: Optional[Path],
    artifacts: Optional[Path],
    extra_constants: Optional[dict] = None,
) -> int:
    """Runs a recipe end to end and returns the process exit code."""
    try:
        constants = parse_overrides(overrides)
        constants.update(extra_constants or dict())
        resolved = NetworkRegistry.from_yaml().resolve(network, overrides=constants)
        client = Web3Client.from_endpoint(resolved.network.endpoint)
        signer = LocalSigner.from_environment()
        artifacts = artifacts or ARTIFACTS_DIR
        runner = RecipeRunner(
            network=resolved,
            client=client,
            signer=signer,
            artifacts=ArtifactStore(artifacts),
            confirm=None if autosign else confirm_step,
            default_timeout=timeout,
        )
        _print_run_info(resolved, signer, recipe, artifacts)
        if autosign:
            click.secho("WARNING: Autosign is enabled. Transactions will be signed automatically.", fg="yellow")
        elif not _continue():
            return EXIT_ABORTED
        result = runner.run(recipe)
    except (DeploymentError, ValueError, requests.RequestException) as e:
        click.secho(f"{type(e).__name__}: {e}", fg="red", err=True)
        return EXIT_PREFLIGHT

    _display_result(result)
    if registry is not None:
        registry_from_run(result, output_filepath=registry)
    return EXIT_COMPLETED if result.ok else EXIT_ABORTED


@click.group()
@click.pass_context
def cli(ctx):
    """Helix contract deployment CLI"""
    load_dotenv(override=True)
    ctx.ensure_object(dict)


@cli.command(name="deploy-master-chef")
@recipe_options
def deploy_master_chef(network, autosign, timeout, overrides, registry, artifacts):
    """Deploy MasterChef and make it a HelixToken minter."""
    recipe = Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")
    exit_code = execute_recipe(recipe, network, autosign, timeout, overrides, registry, artifacts)
    raise SystemExit(exit_code)


@cli.command(name="add-lp-pool")
@recipe_options
@lp_token_option
@alloc_point_option
@click.option("--with-update/--no-with-update", default=True, help="Update all pools first.")
def add_lp_pool(
    network, autosign, timeout, overrides, registry, artifacts, lp_token, alloc_point, with_update
):
    """Register an LP token as a MasterChef pool."""
    recipe = Recipe.from_yaml(RECIPES_DIR / "add_lp_pool.yml")
    extra = {"LP_TOKEN": lp_token, "MASTERCHEF_LP_ALLOC_POINT": alloc_point, "WITH_UPDATE": with_update}
    exit_code = execute_recipe(
        recipe, network, autosign, timeout, overrides, registry, artifacts, extra_constants=extra
    )
    raise SystemExit(exit_code)


@cli.command(name="deploy-token-tools")
@recipe_options
def deploy_token_tools(network, autosign, timeout, overrides, registry, artifacts):
    """Deploy the TokenTools contract."""
    recipe = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    exit_code = execute_recipe(recipe, network, autosign, timeout, overrides, registry, artifacts)
    raise SystemExit(exit_code)


@cli.command(name="deploy-aura-nft-bridge")
@recipe_options
def deploy_aura_nft_bridge(network, autosign, timeout, overrides, registry, artifacts):
    """Deploy AuraNFTBridge and wire it to AuraNFT."""
    recipe = Recipe.from_yaml(RECIPES_DIR / "aura_nft_bridge.yml")
    exit_code = execute_recipe(recipe, network, autosign, timeout, overrides, registry, artifacts)
    raise SystemExit(exit_code)


@cli.command(name="add-bridger")
@recipe_options
@click.option("--bridge", help="AuraNFTBridge address.", type=ChecksumAddress(), required=True)
@bridger_option
def add_bridger(network, autosign, timeout, overrides, registry, artifacts, bridge, bridger):
    """Add a bridger to an AuraNFTBridge."""
    recipe = Recipe.from_yaml(RECIPES_DIR / "add_bridger.yml")
    extra = {"BRIDGE": bridge, "BRIDGER": bridger}
    exit_code = execute_recipe(
        recipe, network, autosign, timeout, overrides, registry, artifacts, extra_constants=extra
    )
    raise SystemExit(exit_code)


@cli.command(name="run")
@click.argument("recipe_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@recipe_options
def run_recipe(recipe_file, network, autosign, timeout, overrides, registry, artifacts):
    """Run any recipe file."""
    try:
        recipe = Recipe.from_yaml(recipe_file)
    except DeploymentError as e:
        click.secho(f"{type(e).__name__}: {e}", fg="red", err=True)
        raise SystemExit(EXIT_PREFLIGHT)
    exit_code = execute_recipe(recipe, network, autosign, timeout, overrides, registry, artifacts)
    raise SystemExit(exit_code)


@cli.command(name="list-contracts")
@click.option("--network", "-n", help="Only this network (name or chain id).", required=False)
def list_contracts(network):
    """List the deployed contracts of every network, or of one."""
    registry = NetworkRegistry.from_yaml()
    try:
        networks = [registry.get_network(network)] if network else registry.networks
    except DeploymentError as e:
        click.secho(str(e), fg="red", err=True)
        raise SystemExit(EXIT_PREFLIGHT)

    for config in networks:
        click.secho(f"\n{config.name} (chain id {config.chain_id})", fg="green")
        addresses = registry.addresses.resolve(config.chain_id)
        deployed = [(name, address) for name, address in addresses.items() if not is_unset(address)]
        if not deployed:
            click.secho("        (no deployments)", fg="yellow")
        for index, (name, address) in enumerate(sorted(deployed), start=1):
            click.secho(f"        {index}. {name} {address}", fg="cyan")


@cli.command(name="verify")
@network_option
@click.option(
    "--registry-filepath",
    "-f",
    help="Registry written by a deployment run.",
    type=click.Path(dir_okay=False, exists=True, path_type=Path),
    required=True,
)
@click.option(
    "--contract-name",
    "-c",
    "contract_names",
    help="Deployment to verify (default: every deployment of the network). May be repeated.",
    multiple=True,
)
@artifacts_option
def verify(network, registry_filepath, contract_names, artifacts):
    """Verify deployed contract sources on the network's block explorer."""
    try:
        config = NetworkRegistry.from_yaml().get_network(network)
        entries = [e for e in read_registry(registry_filepath) if e.chain_id == config.chain_id]
        if contract_names:
            unknown = set(contract_names) - {e.name for e in entries}
            if unknown:
                raise DeploymentConfigError(
                    f"No deployment of {', '.join(sorted(unknown))} on chain id {config.chain_id} "
                    f"in {registry_filepath}"
                )
            entries = [e for e in entries if e.name in contract_names]
        explorer = ExplorerClient.from_network(config)
    except DeploymentError as e:
        click.secho(f"{type(e).__name__}: {e}", fg="red", err=True)
        raise SystemExit(EXIT_PREFLIGHT)

    if not entries:
        click.secho(f"No deployments on chain id {config.chain_id} in {registry_filepath}", fg="yellow")
        raise SystemExit(EXIT_COMPLETED)

    errors = verify_contracts(
        entries, explorer, ArtifactStore(artifacts or ARTIFACTS_DIR), explorer_url=config.explorer_url
    )
    failed = [name for name, error in errors.items() if error is not None]
    if failed:
        click.secho(f"Verification failed for {', '.join(failed)}", fg="red")
        raise SystemExit(EXIT_ABORTED)
    click.secho(f"Verified {len(errors)} contract(s)", fg="green")


if __name__ == "__main__":
    cli()
