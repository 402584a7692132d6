import json
import threading

import pytest
import requests
from eth_abi import decode
from eth_utils import decode_hex

from helix_deployment.constants import RECIPES_DIR
from helix_deployment.exceptions import (
    ChainMismatch,
    ConcurrentRunError,
    ConfirmationError,
    ConfirmationTimeout,
    InvalidConstantInvariant,
    SubmissionError,
    UnresolvedDependency,
    UnsafeRetry,
)
from helix_deployment.nonces import run_lock
from helix_deployment.recipe import Recipe
from helix_deployment.runner import RecipeRunner, RunState, StepState
from helix_deployment.transactions import MethodSignature, encode_call
from tests.fakes import (
    AURA_NFT,
    DEPLOYER,
    DEVELOPER,
    HELIX_TOKEN,
    MASTER_CHEF,
    REFERRAL_REGISTER,
    START_NONCE,
    FakeChain,
)

ADD_MINTER = MethodSignature(name="addMinter", types=("address",))


@pytest.fixture()
def master_chef_recipe():
    return Recipe.from_yaml(RECIPES_DIR / "master_chef.yml")


@pytest.fixture()
def aura_recipe():
    return Recipe.from_yaml(RECIPES_DIR / "aura_nft_bridge.yml")


@pytest.fixture()
def runner(testnet, chain, signer, artifacts):
    return RecipeRunner(network=testnet, client=chain, signer=signer, artifacts=artifacts, silent=True)


def test_master_chef_deployment(runner, chain, master_chef_recipe):
    result = runner.run(master_chef_recipe)

    assert result.ok
    assert result.state is RunState.COMPLETED
    assert result.chain_id == 97
    assert result.account == DEPLOYER
    assert [o.state for o in result.outcomes] == [StepState.CONFIRMED, StepState.CONFIRMED]
    assert [o.nonce for o in result.outcomes] == [START_NONCE, START_NONCE + 1]
    assert chain.nonces_used == [START_NONCE, START_NONCE + 1]
    assert result.start_nonce == START_NONCE
    assert result.next_nonce == START_NONCE + 2

    # constructor arguments come from the tables of chain 97
    deployment = chain.transactions[0]
    assert "to" not in deployment
    assert deployment["data"].startswith(MASTER_CHEF.bytecode)
    encoded = decode_hex(deployment["data"][len(MASTER_CHEF.bytecode):])
    args = decode(
        ["address", "address", "uint256", "uint256", "uint256", "uint256", "address"], encoded
    )
    assert args[0].lower() == HELIX_TOKEN.lower()
    assert args[1].lower() == DEVELOPER.lower()
    assert args[2] == 40 * 10**18
    assert args[3] == 100
    assert args[4] == 900000
    assert args[5] == 100000
    assert args[6].lower() == REFERRAL_REGISTER.lower()
    assert result.outcomes[0].constructor_args == "0x" + encoded.hex()

    # the wiring call receives the address produced by the deployment
    master_chef = result.outcomes[0].address
    assert master_chef
    assert result.addresses == {"masterChef": master_chef}
    wiring = chain.transactions[1]
    assert wiring["to"] == HELIX_TOKEN
    assert wiring["data"] == encode_call(ADD_MINTER, [master_chef])
    assert wiring["gas"] == 3000000
    assert result.outcomes[1].args == (master_chef,)
    assert result.outcomes[1].constructor_args is None


def test_network_gas_settings(runner, chain, master_chef_recipe):
    runner.run(master_chef_recipe)
    deployment = chain.transactions[0]
    assert deployment["gasPrice"] == 20 * 10**9
    assert deployment["gas"] == 2_100_000
    assert deployment["chainId"] == 97


def test_gas_from_node_when_not_configured(network_registry, chain, signer, artifacts):
    chain = FakeChain(chain_id=56)
    mainnet = network_registry.resolve(56, overrides={"MASTERCHEF_DEVELOPER": DEVELOPER})
    runner = RecipeRunner(mainnet, chain, signer, artifacts, silent=True)
    result = runner.run(Recipe.from_yaml(RECIPES_DIR / "token_tools.yml"))
    assert result.ok
    assert chain.transactions[0]["gasPrice"] == chain.gas_price
    assert chain.transactions[0]["gas"] == 500_000


def test_invariant_violation_submits_nothing(network_registry, chain, signer, artifacts, master_chef_recipe):
    testnet = network_registry.resolve(97, overrides={"MASTERCHEF_DEV_PERCENT": 200000})
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)
    with pytest.raises(InvalidConstantInvariant):
        runner.run(master_chef_recipe)
    assert chain.transactions == []
    assert chain.nonce_queries == 0


def test_unset_constant_submits_nothing(network_registry, chain, signer, artifacts, master_chef_recipe):
    chain = FakeChain(chain_id=56)
    mainnet = network_registry.resolve("mainnetBSC")
    runner = RecipeRunner(mainnet, chain, signer, artifacts, silent=True)
    with pytest.raises(UnresolvedDependency):
        runner.run(master_chef_recipe)
    assert chain.transactions == []


def test_unset_contract_address_submits_nothing(network_registry, chain, signer, artifacts):
    recipe = Recipe.from_yaml(RECIPES_DIR / "add_lp_pool.yml")
    testnet = network_registry.resolve(97, overrides={"LP_TOKEN": AURA_NFT, "WITH_UPDATE": True})
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)
    with pytest.raises(UnresolvedDependency, match="masterChef"):
        runner.run(recipe)
    assert chain.transactions == []


def test_chain_mismatch(testnet, signer, artifacts, master_chef_recipe):
    chain = FakeChain(chain_id=56)
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)
    with pytest.raises(ChainMismatch):
        runner.run(master_chef_recipe)
    assert chain.transactions == []


def test_revert_aborts_run(runner, chain, master_chef_recipe):
    chain.reverts[START_NONCE + 1] = "HelixToken: caller is not the owner"
    result = runner.run(master_chef_recipe)

    assert not result.ok
    assert result.state is RunState.ABORTED
    deployed, wiring = result.outcomes
    assert deployed.confirmed
    assert deployed.address
    assert wiring.state is StepState.FAILED
    assert isinstance(wiring.error, ConfirmationError)
    assert wiring.error_kind == "ConfirmationError"
    assert wiring.reason == "HelixToken: caller is not the owner"
    assert wiring.error.nonce == START_NONCE + 1
    assert result.failed == wiring
    # nothing is rolled back
    assert result.addresses == {"masterChef": deployed.address}
    assert result.next_nonce == START_NONCE + 2


def test_out_of_gas(runner, chain, master_chef_recipe):
    chain.reverts[START_NONCE + 1] = None
    result = runner.run(master_chef_recipe)
    assert result.outcomes[1].reason == "out of gas"


def test_first_failure_leaves_later_steps_pending(runner, chain, aura_recipe):
    chain.rejects[START_NONCE] = "insufficient funds for gas * price + value"
    result = runner.run(aura_recipe)

    assert result.state is RunState.ABORTED
    first, second, third = result.outcomes
    assert first.state is StepState.FAILED
    assert isinstance(first.error, SubmissionError)
    assert first.nonce == START_NONCE
    assert second.state is StepState.PENDING
    assert third.state is StepState.PENDING
    assert second.nonce is None
    assert result.pending == (second, third)
    assert chain.transactions == []
    # the nonce counts as consumed even though the node rejected it
    assert result.next_nonce == START_NONCE + 1


def test_every_step_of_a_run_gets_the_next_nonce(runner, chain, aura_recipe):
    result = runner.run(aura_recipe)
    assert result.ok
    assert [o.nonce for o in result.outcomes] == [START_NONCE, START_NONCE + 1, START_NONCE + 2]
    assert chain.nonce_queries == 1 + 3  # one cursor init, one check per submission

    bridge = result.outcomes[0].address
    assert chain.transactions[1]["to"] == bridge
    assert chain.transactions[1]["data"] == encode_call(
        MethodSignature("addBridger", ("address",)), [DEPLOYER]
    )
    assert chain.transactions[2]["to"] == AURA_NFT
    assert chain.transactions[2]["data"] == encode_call(ADD_MINTER, [bridge])


def test_consecutive_runs_continue_the_nonce_sequence(runner, chain):
    recipe = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    first = runner.run(recipe)
    second = runner.run(recipe)
    assert first.outcomes[0].nonce == START_NONCE
    assert second.outcomes[0].nonce == START_NONCE + 1
    assert first.outcomes[0].address != second.outcomes[0].address


def test_confirmation_timeout(runner, chain, master_chef_recipe):
    chain.stalls.add(START_NONCE + 1)
    result = runner.run(master_chef_recipe)

    wiring = result.outcomes[1]
    assert result.state is RunState.ABORTED
    assert wiring.state is StepState.FAILED
    assert isinstance(wiring.error, ConfirmationTimeout)
    assert wiring.error.nonce == START_NONCE + 1
    assert wiring.error.tx_hash
    assert result.next_nonce == START_NONCE + 2


def test_step_timeout_overrides_default(testnet, chain, signer, artifacts):
    recipe = Recipe.from_config(
        {
            "recipe": {"name": "slow"},
            "steps": [{"tokenTools": {"deploy": "TokenTools", "timeout": 7}}],
        }
    )
    chain.stalls.add(START_NONCE)
    runner = RecipeRunner(testnet, chain, signer, artifacts, default_timeout=3, silent=True)
    result = runner.run(recipe)
    assert "after 7 seconds" in str(result.outcomes[0].error)


def test_resume_after_timeout_requires_force(runner, chain, master_chef_recipe):
    chain.stalls.add(START_NONCE + 1)
    result = runner.run(master_chef_recipe)

    with pytest.raises(UnsafeRetry):
        master_chef_recipe.resume(result)

    narrowed = master_chef_recipe.resume(result, force=True)
    assert [step.name for step in narrowed] == ["masterChefMinter"]
    assert narrowed.steps[0].args == (result.outcomes[0].address,)

    resumed = runner.run(narrowed)
    assert resumed.ok
    assert resumed.outcomes[0].nonce == START_NONCE + 2
    assert chain.transactions[-1]["data"] == encode_call(ADD_MINTER, [result.outcomes[0].address])


def test_resume_after_revert(runner, chain, aura_recipe):
    chain.reverts[START_NONCE + 2] = "AuraNFT: caller is not the owner"
    result = runner.run(aura_recipe)
    narrowed = aura_recipe.resume(result)
    assert [step.name for step in narrowed] == ["bridgeMinter"]


def test_confirm_callback_cancels(testnet, chain, signer, artifacts, master_chef_recipe):
    seen = list()

    def confirm(step, target, args):
        seen.append((step.name, target, args))
        return step.name != "masterChefMinter"

    runner = RecipeRunner(testnet, chain, signer, artifacts, confirm=confirm, silent=True)
    result = runner.run(master_chef_recipe)

    assert result.cancelled
    assert result.state is RunState.ABORTED
    assert result.outcomes[0].confirmed
    assert result.outcomes[1].state is StepState.PENDING
    assert len(chain.transactions) == 1
    assert seen[1] == ("masterChefMinter", HELIX_TOKEN, [result.outcomes[0].address])
    assert result.next_nonce == START_NONCE + 1


def test_cancel_before_next_submission(testnet, chain, signer, artifacts, master_chef_recipe):
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)

    def confirm(step, target, args):
        runner.cancel()  # arrives while the first step is being submitted
        return True

    runner.confirm = confirm
    result = runner.run(master_chef_recipe)
    assert result.cancelled
    assert result.outcomes[0].confirmed
    assert result.outcomes[1].state is StepState.PENDING


def test_concurrent_runs_are_rejected(runner, signer, master_chef_recipe):
    with run_lock(97, signer.address):
        with pytest.raises(ConcurrentRunError):
            runner.run(master_chef_recipe)


def test_concurrent_run_from_another_thread(runner, chain, signer):
    recipe = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    errors = list()

    def other_run():
        try:
            runner.run(recipe)
        except ConcurrentRunError as e:
            errors.append(e)

    with run_lock(97, signer.address):
        thread = threading.Thread(target=other_run)
        thread.start()
        thread.join()

    assert len(errors) == 1
    assert chain.transactions == []
    # the lock is released afterwards
    assert runner.run(recipe).ok


class DroppingChain(FakeChain):
    """Loses the connection to the endpoint while submitting one nonce."""

    def __init__(self, drop_nonce: int, **kwargs):
        super().__init__(**kwargs)
        self.drop_nonce = drop_nonce

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        if json.loads(raw_transaction)["nonce"] == self.drop_nonce:
            raise requests.exceptions.ConnectionError("Connection aborted.")
        return super().send_raw_transaction(raw_transaction)


def test_unexpected_error_after_submission_is_recorded(testnet, signer, artifacts, master_chef_recipe):
    chain = DroppingChain(drop_nonce=START_NONCE + 1)
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)
    result = runner.run(master_chef_recipe)

    assert result.state is RunState.ABORTED
    deployed, wiring = result.outcomes
    assert deployed.confirmed
    assert wiring.state is StepState.FAILED
    assert wiring.error.nonce == START_NONCE + 1
    assert wiring.error_kind == "TransactionError"
    assert isinstance(wiring.error.__cause__, requests.exceptions.ConnectionError)
    assert result.next_nonce == START_NONCE + 2

    # the wiring call may or may not have reached the node
    with pytest.raises(UnsafeRetry):
        master_chef_recipe.resume(result)


def test_encoding_failure_leaves_the_nonce_unused(network_registry, chain, signer, artifacts, master_chef_recipe):
    testnet = network_registry.resolve(97, overrides={"MASTERCHEF_START_BLOCK": "soon"})
    runner = RecipeRunner(testnet, chain, signer, artifacts, silent=True)
    result = runner.run(master_chef_recipe)

    deployment, wiring = result.outcomes
    assert deployment.state is StepState.FAILED
    assert isinstance(deployment.error, SubmissionError)
    assert deployment.nonce is None
    assert wiring.state is StepState.PENDING
    assert chain.transactions == []
    assert result.next_nonce == START_NONCE

    runner = RecipeRunner(network_registry.resolve(97), chain, signer, artifacts, silent=True)
    result = runner.run(master_chef_recipe)
    assert result.ok
    assert result.outcomes[0].nonce == START_NONCE


def test_gas_estimation_failure_leaves_the_nonce_unused(network_registry, signer, artifacts):
    class Unestimable(FakeChain):
        def estimate_gas(self, transaction):
            raise SubmissionError("execution reverted: TokenTools: paused")

    chain = Unestimable(chain_id=56)
    mainnet = network_registry.resolve(56, overrides={"MASTERCHEF_DEVELOPER": DEVELOPER})
    runner = RecipeRunner(mainnet, chain, signer, artifacts, silent=True)
    result = runner.run(Recipe.from_yaml(RECIPES_DIR / "token_tools.yml"))
    assert result.outcomes[0].state is StepState.FAILED
    assert result.outcomes[0].nonce is None
    assert result.next_nonce == START_NONCE
    assert signer.signed == []


def test_runner_is_reusable_after_cancel(runner, chain):
    recipe = Recipe.from_yaml(RECIPES_DIR / "token_tools.yml")
    runner.cancel()
    cancelled = runner.run(recipe)
    assert cancelled.cancelled
    assert chain.transactions == []

    result = runner.run(recipe)
    assert result.ok
    assert not result.cancelled
    assert result.outcomes[0].nonce == START_NONCE
