import threading
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from helix_deployment.accounts import Signer
from helix_deployment.artifacts import ArtifactStore, ContractArtifact
from helix_deployment.chain import ChainClient, Receipt
from helix_deployment.exceptions import ChainMismatch, SubmissionError, TransactionError
from helix_deployment.networks import ResolvedNetwork
from helix_deployment.nonces import NonceSequencer, run_lock
from helix_deployment.recipe import BoundStep, DeploymentStep, DeployUnit, Recipe
from helix_deployment.transactions import Deployer, MethodSignature, resolve_method


class StepState(Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class RunState(Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


class StepOutcome(NamedTuple):
    index: int
    name: str
    kind: str
    contract: Optional[str]
    state: StepState = StepState.PENDING
    nonce: Optional[int] = None
    target: Optional[str] = None
    args: Tuple[Any, ...] = tuple()
    address: Optional[str] = None
    receipt: Optional[Receipt] = None
    error: Optional[TransactionError] = None
    constructor_args: Optional[str] = None  # hex, deployments only

    @property
    def confirmed(self) -> bool:
        return self.state is StepState.CONFIRMED

    @property
    def error_kind(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    @property
    def reason(self) -> Optional[str]:
        return getattr(self.error, "reason", None)


class RunResult(NamedTuple):
    """Outcome of every step of one run, in recipe order. Never changes once returned."""

    recipe: str
    chain_id: int
    account: str
    state: RunState
    outcomes: Tuple[StepOutcome, ...]
    start_nonce: int
    next_nonce: int
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.state is RunState.COMPLETED

    @property
    def failed(self) -> Optional[StepOutcome]:
        for outcome in self.outcomes:
            if outcome.state is StepState.FAILED:
                return outcome
        return None

    @property
    def addresses(self) -> Dict[str, str]:
        """Step name -> address of every unit this run deployed."""
        return {o.name: o.address for o in self.outcomes if o.confirmed and o.address}

    @property
    def pending(self) -> Tuple[StepOutcome, ...]:
        return tuple(o for o in self.outcomes if o.state is StepState.PENDING)


ConfirmCallback = Callable[[DeploymentStep, Optional[str], List[Any]], bool]


class _PlannedStep(NamedTuple):
    bound: BoundStep
    artifact: Optional[ContractArtifact]
    method: Optional[MethodSignature]


class RecipeRunner:
    """
    Executes a recipe against one network with one signer, strictly in order.

    Only one run may use a given (network, account) at a time; `run` takes
    the lock and raises ConcurrentRunError if another run holds it.
    Failures found by `prepare` raise. Once steps are under way every
    failure is reported in the RunResult, and nothing is retried or
    rolled back.
    """

    def __init__(
        self,
        network: ResolvedNetwork,
        client: ChainClient,
        signer: Signer,
        artifacts: ArtifactStore,
        confirm: Optional[ConfirmCallback] = None,
        default_timeout: Optional[float] = None,
        lock_timeout: float = 0,
        silent: bool = False,
    ):
        self.network = network
        self.client = client
        self.signer = signer
        self.artifacts = artifacts
        self.confirm = confirm
        self.default_timeout = default_timeout
        self.lock_timeout = lock_timeout
        self.deployer = Deployer(client=client, signer=signer, network=network.network, silent=silent)
        self._cancelled = threading.Event()

    def cancel(self) -> None:
        """Stops the run before its next submission; an in-flight step still gets confirmed."""
        self._cancelled.set()

    def prepare(self, recipe: Recipe) -> Tuple[_PlannedStep, ...]:
        """Every check that can fail without touching the chain."""
        if self.client.chain_id != self.network.chain_id:
            raise ChainMismatch(
                f"Endpoint reports chain id {self.client.chain_id}, "
                f"but network '{self.network.network.name}' is chain id {self.network.chain_id}"
            )
        self.network.constants.validate()
        bound_steps = recipe.bind(self.network, deployer=self.signer.address)

        planned = list()
        for bound in bound_steps:
            step = bound.step
            if isinstance(step, DeployUnit):
                planned.append(_PlannedStep(bound, self.artifacts.get(step.contract), None))
            else:
                artifact = self.artifacts.get(step.contract) if step.contract else None
                method = resolve_method(step.method, len(step.args), artifact)
                planned.append(_PlannedStep(bound, artifact, method))
        return tuple(planned)

    def _timeout(self, step: DeploymentStep) -> Optional[float]:
        return step.timeout or self.default_timeout

    def _build(self, planned: _PlannedStep, target, args) -> Dict[str, Any]:
        step = planned.bound.step
        if isinstance(step, DeployUnit):
            return self.deployer.build_deployment(planned.artifact, args, gas_limit=step.gas_limit)
        return self.deployer.build_call(
            target, planned.method, args, gas_limit=step.gas_limit, contract_name=step.contract or ""
        )

    def _submit(
        self, planned: _PlannedStep, transaction: Dict[str, Any], nonce: int
    ) -> Tuple[Optional[str], Receipt]:
        step = planned.bound.step
        receipt = self.deployer.submit(transaction, nonce, timeout=self._timeout(step))
        if isinstance(step, DeployUnit):
            return self.deployer.deployed_address(planned.artifact, receipt, nonce), receipt
        return None, receipt

    def run(self, recipe: Recipe) -> RunResult:
        plan = self.prepare(recipe)
        account = self.signer.address
        chain_id = self.network.chain_id

        with run_lock(chain_id, account, timeout=self.lock_timeout):
            cursor = NonceSequencer(self.client).init(chain_id, account)
            outcomes = [
                StepOutcome(
                    index=p.bound.index,
                    name=p.bound.step.name,
                    kind=p.bound.step.kind,
                    contract=p.bound.step.contract,
                )
                for p in plan
            ]
            outputs: Dict[str, str] = dict()
            cancelled = False

            try:
                for planned in plan:
                    index, step = planned.bound.index, planned.bound.step
                    if self._cancelled.is_set():
                        cancelled = True
                        break

                    target, args = planned.bound.resolve(outputs)
                    if self.confirm is not None and not self.confirm(step, target, args):
                        cancelled = True
                        break

                    outcomes[index] = outcomes[index]._replace(target=target, args=tuple(args))
                    try:
                        transaction = self._build(planned, target, args)
                    except Exception as e:
                        # nothing was signed, the nonce stays free
                        error = _as_transaction_error(e, nonce=None)
                        outcomes[index] = outcomes[index]._replace(state=StepState.FAILED, error=error)
                        break

                    nonce = cursor.next()
                    constructor_args = None
                    if isinstance(step, DeployUnit):
                        constructor_args = "0x" + transaction["data"][len(planned.artifact.bytecode) :]
                    outcomes[index] = outcomes[index]._replace(
                        state=StepState.SUBMITTED, nonce=nonce, constructor_args=constructor_args
                    )
                    try:
                        address, receipt = self._submit(planned, transaction, nonce)
                    except Exception as e:
                        error = _as_transaction_error(e, nonce=nonce)
                        outcomes[index] = outcomes[index]._replace(state=StepState.FAILED, error=error)
                        break

                    if address is not None:
                        outputs[step.name] = address
                    outcomes[index] = outcomes[index]._replace(
                        state=StepState.CONFIRMED, address=address, receipt=receipt
                    )
            finally:
                self._cancelled.clear()

        completed = all(o.confirmed for o in outcomes)
        return RunResult(
            recipe=recipe.name,
            chain_id=chain_id,
            account=account,
            state=RunState.COMPLETED if completed else RunState.ABORTED,
            outcomes=tuple(outcomes),
            start_nonce=cursor.start,
            next_nonce=cursor.peek,
            cancelled=cancelled,
        )


def _as_transaction_error(error: Exception, nonce: Optional[int]) -> TransactionError:
    """
    Folds a failure raised mid-run into the transaction error taxonomy.

    Anything other than a TransactionError raised once a nonce is taken has
    an unknown outcome, so it is recorded as a plain TransactionError.
    """
    if isinstance(error, TransactionError):
        return error
    message = f"{type(error).__name__}: {error}"
    if nonce is None:
        wrapped = SubmissionError(message, reason=str(error))
    else:
        wrapped = TransactionError(message, nonce=nonce, reason=str(error))
    wrapped.__cause__ = error
    return wrapped
