"""
Recipes: ordered, dependency-checked sequences of deployments and wiring calls.

A step may refer to the address produced by an earlier step with
`$stepName`. Every such reference must point backwards; anything else is
rejected when the recipe is built, long before a transaction is signed.
"""

import typing
from pathlib import Path
from typing import Any, Iterator, List, NamedTuple, Optional, Tuple, Union

from eth_utils import is_hex_address, to_checksum_address

from helix_deployment.exceptions import (
    ConfirmationError,
    CyclicOrUnorderedDependency,
    DeploymentConfigError,
    SubmissionError,
    UnsafeRetry,
)
from helix_deployment.params import (
    BindingContext,
    Constant,
    DeployerAccount,
    StepOutput,
    Variable,
    bind_param,
    iter_variables,
    process_raw_value,
    substitute_param,
)
from helix_deployment.utils import _load_yaml

if typing.TYPE_CHECKING:
    from helix_deployment.networks import ResolvedNetwork
    from helix_deployment.runner import RunResult

DEPLOY_KEY = "deploy"
CALL_KEY = "call"
CONSTRUCTOR_KEY = "constructor"


class DeployUnit(NamedTuple):
    """Creates one contract instance; its address becomes `$name` for later steps."""

    name: str
    contract: str
    constructor_args: Tuple[Any, ...] = tuple()
    arg_names: Tuple[str, ...] = tuple()
    gas_limit: Optional[int] = None
    timeout: Optional[float] = None
    idempotent: bool = False

    kind = DEPLOY_KEY
    produces_address = True

    @property
    def arguments(self) -> Tuple[Any, ...]:
        return self.constructor_args

    def with_arguments(self, arguments) -> "DeployUnit":
        return self._replace(constructor_args=tuple(arguments))

    def variables(self) -> Iterator[Variable]:
        return iter_variables(list(self.constructor_args))

    def describe(self) -> str:
        return f"deploy {self.contract}"


class WireCall(NamedTuple):
    """A state-changing call on a contract that already exists."""

    name: str
    target: Any
    method: str
    args: Tuple[Any, ...] = tuple()
    contract: Optional[str] = None  # ABI source when `method` is a bare name
    gas_limit: Optional[int] = None
    timeout: Optional[float] = None
    idempotent: bool = False

    kind = CALL_KEY
    produces_address = False

    @property
    def arguments(self) -> Tuple[Any, ...]:
        return self.args

    def with_arguments(self, arguments) -> "WireCall":
        return self._replace(args=tuple(arguments))

    def variables(self) -> Iterator[Variable]:
        return iter_variables([self.target, *self.args])

    def describe(self) -> str:
        return f"{self.target!r}.{self.method}"


DeploymentStep = Union[DeployUnit, WireCall]


class BoundStep(NamedTuple):
    """A step whose table lookups are done; only prior-step outputs remain open."""

    index: int
    step: DeploymentStep
    target: Any
    args: Tuple[Any, ...]

    def resolve(self, outputs: typing.Mapping[str, str]) -> Tuple[Any, List[Any]]:
        return substitute_param(self.target, outputs), substitute_param(list(self.args), outputs)


def _process_step(step: DeploymentStep, step_names: List[str]) -> DeploymentStep:
    arguments = [process_raw_value(a, step_names) for a in step.arguments]
    step = step.with_arguments(arguments)
    if isinstance(step, WireCall):
        target = process_raw_value(step.target, step_names)
        if not isinstance(target, Variable):
            if not is_hex_address(target):
                raise DeploymentConfigError(f"Step '{step.name}' has an invalid target '{target}'")
            target = to_checksum_address(target)
        step = step._replace(target=target)
    return step


def _validate_order(steps: Tuple[DeploymentStep, ...]) -> None:
    produced = dict()
    for step in steps:
        for variable in step.variables():
            if not isinstance(variable, StepOutput):
                continue
            if variable.step_name not in produced:
                raise CyclicOrUnorderedDependency(
                    f"Step '{step.name}' refers to '${variable.step_name}', "
                    f"which does not come before it"
                )
            if not produced[variable.step_name]:
                raise DeploymentConfigError(
                    f"Step '{step.name}' refers to '${variable.step_name}', "
                    f"which produces no address"
                )
        produced[step.name] = step.produces_address


class Recipe:
    """An immutable, dependency-ordered list of steps for one operational goal."""

    def __init__(self, name: str, steps: typing.Iterable[DeploymentStep], description: str = ""):
        self.name = name
        self.description = description
        steps = tuple(steps)

        step_names = [step.name for step in steps]
        for step_name in step_names:
            if not step_name or step_name.isupper() or DeployerAccount.is_deployer(step_name):
                raise DeploymentConfigError(f"'{step_name}' cannot be used as a step name")
        duplicates = {n for n in step_names if step_names.count(n) > 1}
        if duplicates:
            raise DeploymentConfigError(f"Duplicate step names {sorted(duplicates)}")

        self._steps = tuple(_process_step(step, step_names) for step in steps)
        _validate_order(self._steps)

    @property
    def steps(self) -> Tuple[DeploymentStep, ...]:
        return self._steps

    def __iter__(self):
        return iter(self._steps)

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self):
        return f"Recipe({self.name!r}, {len(self)} steps)"

    @property
    def constants(self) -> List[str]:
        """Names of the constants this recipe consumes."""
        names = list()
        for step in self._steps:
            for variable in step.variables():
                if isinstance(variable, Constant) and variable.constant_name not in names:
                    names.append(variable.constant_name)
        return names

    @classmethod
    def from_config(cls, config: typing.Dict) -> "Recipe":
        recipe_info = config.get("recipe") or dict()
        name = recipe_info.get("name")
        if not name:
            raise DeploymentConfigError("Recipe is missing 'recipe.name'.")
        raw_steps = config.get("steps")
        if not raw_steps:
            raise DeploymentConfigError(f"Recipe '{name}' has no 'steps'.")
        steps = [_step_from_config(step_info) for step_info in raw_steps]
        return cls(name=name, steps=steps, description=recipe_info.get("description", ""))

    @classmethod
    def from_yaml(cls, filepath: Path) -> "Recipe":
        return cls.from_config(_load_yaml(filepath))

    def bind(self, network: "ResolvedNetwork", deployer: str) -> Tuple[BoundStep, ...]:
        """
        Resolves constants, table addresses and $deployer for one network.
        Raises UnresolvedDependency before anything is submitted.
        """
        context = BindingContext(
            addresses=network.addresses, constants=network.constants, deployer=deployer
        )
        bound = list()
        for index, step in enumerate(self._steps):
            target = bind_param(step.target, context) if isinstance(step, WireCall) else None
            args = tuple(bind_param(list(step.arguments), context))
            bound.append(BoundStep(index=index, step=step, target=target, args=args))
        return tuple(bound)

    def resume(self, result: "RunResult", force: bool = False) -> "Recipe":
        """
        Narrows the recipe to what an aborted run left undone. Outputs of the
        confirmed steps are carried in as literal addresses.
        """
        if result.recipe != self.name:
            raise ValueError(f"Result belongs to recipe '{result.recipe}', not '{self.name}'")

        outputs = result.addresses
        confirmed = {o.name for o in result.outcomes if o.confirmed}
        remaining = [step for step in self._steps if step.name not in confirmed]
        if not remaining:
            return Recipe(name=self.name, steps=[], description=self.description)

        # a timeout, or a failure after the nonce was taken that is neither a
        # rejection nor a revert, leaves the transaction possibly included
        failed = result.failed
        outcome_unknown = (
            failed is not None
            and failed.nonce is not None
            and not isinstance(failed.error, (SubmissionError, ConfirmationError))
        )
        if outcome_unknown:
            step = self._steps[failed.index]
            if not step.idempotent and not force:
                raise UnsafeRetry(
                    f"Step '{step.name}' failed with nonce {failed.nonce} and may still "
                    f"be included; it is not declared idempotent. Check it on-chain and "
                    f"resume with force, or narrow the recipe by hand."
                )

        def carry(value: Any) -> Any:
            if isinstance(value, StepOutput) and value.step_name in confirmed:
                return outputs[value.step_name]
            if isinstance(value, list):
                return [carry(v) for v in value]
            return value

        narrowed = list()
        for step in remaining:
            step = step.with_arguments([carry(a) for a in step.arguments])
            if isinstance(step, WireCall):
                step = step._replace(target=carry(step.target))
            narrowed.append(step)
        return Recipe(name=self.name, steps=narrowed, description=self.description)


def _constructor_args(raw: Any) -> Tuple[Tuple[Any, ...], Tuple[str, ...]]:
    if raw is None:
        return tuple(), tuple()
    if isinstance(raw, dict):
        return tuple(raw.values()), tuple(raw.keys())
    if isinstance(raw, list):
        return tuple(raw), tuple()
    raise DeploymentConfigError("Constructor parameters must be a mapping or a list.")


def _step_from_config(step_info: Any) -> DeploymentStep:
    if not isinstance(step_info, dict) or len(step_info) != 1:
        raise DeploymentConfigError("Malformed recipe step; expected '- stepName: {...}'.")

    name = list(step_info.keys())[0]  # only one entry
    data = step_info[name] or dict()
    common = dict(
        gas_limit=data.get("gas_limit"),
        timeout=data.get("timeout"),
        idempotent=bool(data.get("idempotent", False)),
    )

    if DEPLOY_KEY in data and CALL_KEY in data:
        raise DeploymentConfigError(f"Step '{name}' cannot both deploy and call.")
    if DEPLOY_KEY in data:
        args, arg_names = _constructor_args(data.get(CONSTRUCTOR_KEY))
        return DeployUnit(
            name=name,
            contract=data[DEPLOY_KEY],
            constructor_args=args,
            arg_names=arg_names,
            **common,
        )
    if CALL_KEY in data:
        if "method" not in data:
            raise DeploymentConfigError(f"Step '{name}' is missing 'method'.")
        args = data.get("args") or list()
        if not isinstance(args, list):
            raise DeploymentConfigError(f"Step '{name}' args must be a list.")
        return WireCall(
            name=name,
            target=data[CALL_KEY],
            method=data["method"],
            args=tuple(args),
            contract=data.get("contract"),
            **common,
        )
    raise DeploymentConfigError(f"Step '{name}' must either '{DEPLOY_KEY}' or '{CALL_KEY}'.")
