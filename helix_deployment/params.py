import typing
from abc import ABC, abstractmethod
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Tuple

from helix_deployment.exceptions import (
    DeploymentConfigError,
    InvalidConstantInvariant,
    UnresolvedDependency,
)
from helix_deployment.utils import coerce_value

ChainId = int


class _Unset:
    """Marks a (name, network) pair with no value; distinct from 0 and the zero address."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "UNSET"

    def __reduce__(self):
        return "UNSET"


UNSET = _Unset()


def is_unset(value: Any) -> bool:
    return value is UNSET


def _table_value(value: Any) -> Any:
    if value is None or value == "":
        return UNSET
    return coerce_value(value)


def _chain_keyed(name: str, entries: Any) -> Dict[ChainId, Any]:
    if not isinstance(entries, dict):
        raise DeploymentConfigError(f"Malformed table entry for '{name}': expected chain id map.")
    try:
        chain_ids = [int(chain_id) for chain_id in entries]
    except (TypeError, ValueError):
        raise DeploymentConfigError(f"Malformed chain id in table entry for '{name}'.")
    return {chain_id: _table_value(value) for chain_id, value in zip(chain_ids, entries.values())}


#
# Constants
#


class SumInvariant(NamedTuple):
    """Sibling constants whose values must add up to a fixed total."""

    constants: Tuple[str, ...]
    total: int

    def check(self, values: typing.Mapping[str, Any]) -> None:
        members = [values.get(name, UNSET) for name in self.constants]
        if any(is_unset(member) for member in members):
            return  # consumers of the unset member fail on their own
        for name, member in zip(self.constants, members):
            if isinstance(member, bool) or not isinstance(member, int):
                raise InvalidConstantInvariant(
                    f"{name} must be an integer to add up to {self.total}, got {member!r}"
                )
        actual = sum(members)
        if actual != self.total:
            pretty = " + ".join(f"{n}({v})" for n, v in zip(self.constants, members))
            raise InvalidConstantInvariant(f"{pretty} = {actual}, expected {self.total}")


class ResolvedConstants(Mapping):
    """Read-only view of every constant for a single network."""

    def __init__(
        self,
        chain_id: ChainId,
        values: typing.Mapping[str, Any],
        invariants: Tuple[SumInvariant, ...] = tuple(),
    ):
        self.chain_id = chain_id
        self._values = MappingProxyType(dict(values))
        self.invariants = invariants

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self):
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def get(self, name: str, default: Any = UNSET) -> Any:
        return self._values.get(name, default)

    def validate(self) -> None:
        for invariant in self.invariants:
            invariant.check(self._values)

    def __repr__(self) -> str:
        return f"ResolvedConstants(chain_id={self.chain_id}, {dict(self._values)})"


class ConstantTable:
    """Constant name -> chain id -> value, plus the invariants tying constants together."""

    def __init__(
        self,
        values: typing.Mapping[str, typing.Mapping[ChainId, Any]],
        invariants: Iterable[SumInvariant] = tuple(),
    ):
        self._values = {name: MappingProxyType(dict(v)) for name, v in values.items()}
        self.invariants = tuple(invariants)
        for invariant in self.invariants:
            unknown = [name for name in invariant.constants if name not in self._values]
            if unknown:
                raise DeploymentConfigError(f"Invariant refers to unknown constants {unknown}")

    @classmethod
    def from_config(cls, config: typing.Dict) -> "ConstantTable":
        config = config or dict()
        values = {
            name: _chain_keyed(name, entries)
            for name, entries in (config.get("constants") or dict()).items()
        }
        invariants = list()
        for entry in config.get("invariants") or list():
            try:
                invariants.append(
                    SumInvariant(constants=tuple(entry["constants"]), total=int(entry["total"]))
                )
            except (KeyError, TypeError, ValueError):
                raise DeploymentConfigError(f"Malformed invariant {entry}")
        return cls(values=values, invariants=invariants)

    @property
    def names(self) -> List[str]:
        return sorted(self._values)

    def resolve(
        self, chain_id: ChainId, overrides: Optional[typing.Mapping[str, Any]] = None
    ) -> ResolvedConstants:
        resolved = {name: values.get(chain_id, UNSET) for name, values in self._values.items()}
        for name, value in (overrides or dict()).items():
            resolved[name] = _table_value(value)
        return ResolvedConstants(chain_id=chain_id, values=resolved, invariants=self.invariants)


#
# Variables
#


class BindingContext(NamedTuple):
    """Everything a non-step variable may be resolved against."""

    addresses: typing.Mapping[str, Any]
    constants: typing.Mapping[str, Any]
    deployer: str


class Variable(ABC):
    VARIABLE_PREFIX = "$"

    @abstractmethod
    def bind(self, context: BindingContext) -> Any:
        """Resolves the variable before the run, or returns itself if it needs run outputs."""
        raise NotImplementedError

    @classmethod
    def is_variable(cls, param: Any) -> bool:
        """Returns True if the param is a variable."""
        result = isinstance(param, str) and param.startswith(cls.VARIABLE_PREFIX)
        return result

    def __eq__(self, other):
        return type(self) is type(other) and vars(self) == vars(other)

    def __hash__(self):
        return hash((type(self), tuple(sorted(vars(self).items()))))


class DeployerAccount(Variable):
    DEPLOYER_INDICATOR = "deployer"

    @classmethod
    def is_deployer(cls, value: str) -> bool:
        """Returns True if the variable is a special deployer variable."""
        return value == cls.DEPLOYER_INDICATOR

    def bind(self, context: BindingContext) -> Any:
        return context.deployer

    def __repr__(self):
        return "$deployer"


class Constant(Variable):
    def __init__(self, constant_name: str):
        self.constant_name = constant_name

    @classmethod
    def is_constant(cls, value: str) -> bool:
        """Returns True if the variable is a deployment constant."""
        return value.isupper()

    def bind(self, context: BindingContext) -> Any:
        value = context.constants.get(self.constant_name, UNSET)
        if is_unset(value):
            raise UnresolvedDependency(f"Constant '{self.constant_name}' is not set")
        return value

    def __repr__(self):
        return f"${self.constant_name}"


class ContractAddress(Variable):
    """An already deployed contract, looked up in the address table."""

    def __init__(self, contract_name: str):
        self.contract_name = contract_name

    def bind(self, context: BindingContext) -> Any:
        address = context.addresses.get(self.contract_name, UNSET)
        if is_unset(address):
            raise UnresolvedDependency(f"Contract '{self.contract_name}' is not deployed")
        return address

    def __repr__(self):
        return f"${self.contract_name}"


class StepOutput(Variable):
    """The address produced by an earlier step of the same recipe."""

    def __init__(self, step_name: str):
        self.step_name = step_name

    def bind(self, context: BindingContext) -> Any:
        return self

    def resolve(self, outputs: typing.Mapping[str, Any]) -> Any:
        try:
            return outputs[self.step_name]
        except KeyError:
            raise UnresolvedDependency(f"Step '{self.step_name}' has produced no address")

    def __repr__(self):
        return f"${self.step_name}"


def _variable_from_value(variable: str, step_names: Iterable[str]) -> Variable:
    variable = variable[len(Variable.VARIABLE_PREFIX) :]
    if not variable:
        raise DeploymentConfigError("Empty variable name")
    if DeployerAccount.is_deployer(variable):
        return DeployerAccount()
    elif Constant.is_constant(variable):
        return Constant(variable)
    elif variable in step_names:
        return StepOutput(variable)
    else:
        return ContractAddress(variable)


def process_raw_value(value: Any, step_names: Iterable[str]) -> Any:
    """Turns '$name' strings (also nested in lists) into variables."""
    if isinstance(value, (list, tuple)):
        return [process_raw_value(v, step_names) for v in value]

    if Variable.is_variable(value):
        return _variable_from_value(value, step_names)

    return coerce_value(value)


def iter_variables(value: Any) -> Iterable[Variable]:
    if isinstance(value, (list, tuple)):
        for v in value:
            yield from iter_variables(v)
    elif isinstance(value, Variable):
        yield value


def bind_param(value: Any, context: BindingContext) -> Any:
    if isinstance(value, (list, tuple)):
        return [bind_param(v, context) for v in value]

    if isinstance(value, Variable):
        return value.bind(context)

    return value  # literally a value


def substitute_param(value: Any, outputs: typing.Mapping[str, Any]) -> Any:
    if isinstance(value, (list, tuple)):
        return [substitute_param(v, outputs) for v in value]

    if isinstance(value, StepOutput):
        return value.resolve(outputs)

    return value
