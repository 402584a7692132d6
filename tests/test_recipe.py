import pytest

from helix_deployment.constants import RECIPES_DIR
from helix_deployment.exceptions import (
    CyclicOrUnorderedDependency,
    DeploymentConfigError,
    UnresolvedDependency,
)
from helix_deployment.params import Constant, ContractAddress, DeployerAccount, StepOutput
from helix_deployment.recipe import DeployUnit, Recipe, WireCall
from helix_deployment.runner import RunResult, RunState, StepOutcome, StepState
from tests.fakes import DEPLOYER, DEVELOPER, HELIX_TOKEN, REFERRAL_REGISTER


def _recipe(*steps):
    return Recipe.from_config({"recipe": {"name": "test"}, "steps": list(steps)})


@pytest.mark.parametrize("filename", sorted(p.name for p in RECIPES_DIR.glob("*.yml")))
def test_shipped_recipes_load(filename):
    recipe = Recipe.from_yaml(RECIPES_DIR / filename)
    assert recipe.name
    assert len(recipe) > 0


def test_master_chef_recipe():
    recipe = Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")
    deploy, wire = recipe.steps

    assert isinstance(deploy, DeployUnit)
    assert deploy.contract == "MasterChef"
    assert deploy.arg_names[0] == "_HelixToken"
    assert deploy.constructor_args[0] == ContractAddress("helixToken")
    assert deploy.constructor_args[1] == Constant("MASTERCHEF_DEVELOPER")

    assert isinstance(wire, WireCall)
    assert wire.target == ContractAddress("helixToken")
    assert wire.args == (StepOutput("masterChef"),)
    assert wire.gas_limit == 3000000
    assert not wire.idempotent

    assert recipe.constants == [
        "MASTERCHEF_DEVELOPER",
        "MASTERCHEF_HELIX_TOKEN_REWARD_PER_BLOCK",
        "MASTERCHEF_START_BLOCK",
        "MASTERCHEF_STAKING_PERCENT",
        "MASTERCHEF_DEV_PERCENT",
    ]


def test_reference_to_later_step():
    with pytest.raises(CyclicOrUnorderedDependency):
        _recipe(
            {"minter": {"call": "$helixToken", "method": "addMinter(address)", "args": ["$chef"]}},
            {"chef": {"deploy": "MasterChef"}},
        )


def test_self_reference():
    with pytest.raises(CyclicOrUnorderedDependency):
        _recipe({"chef": {"deploy": "MasterChef", "constructor": ["$chef"]}})


def test_reference_to_a_call():
    with pytest.raises(DeploymentConfigError, match="produces no address"):
        _recipe(
            {"tools": {"deploy": "TokenTools"}},
            {"wire": {"call": "$tools", "method": "init()"}},
            {"again": {"call": "$wire", "method": "init()"}},
        )


def test_duplicate_step_names():
    with pytest.raises(DeploymentConfigError, match="Duplicate"):
        _recipe({"tools": {"deploy": "TokenTools"}}, {"tools": {"deploy": "TokenTools"}})


@pytest.mark.parametrize("name", ["deployer", "TOOLS", ""])
def test_reserved_step_names(name):
    with pytest.raises(DeploymentConfigError):
        _recipe({name: {"deploy": "TokenTools"}})


@pytest.mark.parametrize(
    "step",
    [
        {"tools": {}},
        {"tools": {"deploy": "TokenTools", "call": "$helixToken"}},
        {"tools": {"call": "$helixToken"}},
        {"tools": {"call": "$helixToken", "method": "a()", "args": "$deployer"}},
        {"tools": {"call": "not-an-address", "method": "a()"}},
        {"tools": {"deploy": "TokenTools", "constructor": "$deployer"}},
        ["tools"],
    ],
)
def test_malformed_steps(step):
    with pytest.raises(DeploymentConfigError):
        _recipe(step)


def test_missing_name_or_steps():
    with pytest.raises(DeploymentConfigError):
        Recipe.from_config({"steps": [{"tools": {"deploy": "TokenTools"}}]})
    with pytest.raises(DeploymentConfigError):
        Recipe.from_config({"recipe": {"name": "empty"}, "steps": []})


def test_literal_target_is_checksummed():
    recipe = _recipe({"wire": {"call": HELIX_TOKEN.lower(), "method": "addMinter(address)", "args": ["$deployer"]}})
    assert recipe.steps[0].target == HELIX_TOKEN
    assert recipe.steps[0].args == (DeployerAccount(),)


def test_bind(testnet):
    recipe = Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")
    deploy, wire = recipe.bind(testnet, deployer=DEPLOYER)

    assert deploy.target is None
    assert deploy.args == (HELIX_TOKEN, DEVELOPER, 40 * 10**18, 100, 900000, 100000, REFERRAL_REGISTER)
    assert wire.target == HELIX_TOKEN
    assert wire.args == (StepOutput("masterChef"),)
    assert wire.resolve({"masterChef": DEPLOYER}) == (HELIX_TOKEN, [DEPLOYER])


def test_bind_unresolved(network_registry):
    recipe = Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")
    with pytest.raises(UnresolvedDependency):
        recipe.bind(network_registry.resolve("mainnetBSC"), deployer=DEPLOYER)


def _result(recipe, *outcomes):
    return RunResult(
        recipe=recipe.name,
        chain_id=97,
        account=DEPLOYER,
        state=RunState.ABORTED,
        outcomes=tuple(outcomes),
        start_nonce=0,
        next_nonce=len(outcomes),
    )


def test_resume_of_another_recipe():
    recipe = Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")
    other = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    with pytest.raises(ValueError):
        recipe.resume(_result(other))


def test_resume_of_completed_run():
    recipe = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    outcome = StepOutcome(
        index=0, name="tokenTools", kind="deploy", contract="TokenTools",
        state=StepState.CONFIRMED, nonce=0, address=DEVELOPER,
    )
    assert len(recipe.resume(_result(recipe, outcome))) == 0
