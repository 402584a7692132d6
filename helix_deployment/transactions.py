import typing
from typing import Any, Dict, List, Optional, Sequence, Tuple

from eth_abi import encode
from eth_utils import decode_hex, function_signature_to_4byte_selector, to_hex
from eth_utils.abi import collapse_if_tuple

from helix_deployment.accounts import Signer
from helix_deployment.artifacts import ContractArtifact
from helix_deployment.chain import ChainClient, Receipt
from helix_deployment.constants import DEFAULT_CONFIRMATION_TIMEOUT
from helix_deployment.exceptions import (
    ConfirmationError,
    DeploymentConfigError,
    SubmissionError,
    TransactionError,
)
from helix_deployment.networks import NetworkConfig
from helix_deployment.utils import shorten, split_signature


class MethodSignature(typing.NamedTuple):
    name: str
    types: Tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.types)})"

    def __str__(self):
        return self.signature


def resolve_method(method: str, arity: int, artifact: Optional[ContractArtifact] = None) -> MethodSignature:
    """
    Finds the function to call. A full signature such as 'addMinter(address)'
    needs no ABI; a bare name picks the overload whose arity matches.
    """
    if "(" in method:
        name, types = split_signature(method)
    else:
        if artifact is None:
            raise DeploymentConfigError(
                f"Method '{method}' needs a full signature or a contract type to look it up"
            )
        candidates = [abi for abi in artifact.functions(method) if len(abi.get("inputs", [])) == arity]
        if len(candidates) != 1:
            raise DeploymentConfigError(
                f"Could not find a unique ABI for {artifact.name}.{method} with {arity} arg(s)"
            )
        name = method
        types = tuple(collapse_if_tuple(i) for i in candidates[0]["inputs"])

    if len(types) != arity:
        raise DeploymentConfigError(f"{name} takes {len(types)} arg(s), got {arity}")
    return MethodSignature(name=name, types=types)


def _normalize_arg(abi_type: str, value: Any) -> Any:
    """Hex strings are accepted for bytes arguments."""
    if isinstance(value, list):
        inner = abi_type[: abi_type.rfind("[")] if abi_type.endswith("]") else abi_type
        return [_normalize_arg(inner, v) for v in value]
    if abi_type.startswith("bytes") and isinstance(value, str):
        return decode_hex(value)
    return value


def encode_arguments(types: Sequence[str], args: Sequence[Any]) -> bytes:
    try:
        normalized = [_normalize_arg(t, a) for t, a in zip(types, args)]
        return encode(list(types), normalized)
    except Exception as e:  # eth-abi raises a zoo of encoding errors
        raise SubmissionError(f"Cannot encode arguments {list(args)} as {list(types)}: {e}", reason=str(e))


def encode_deployment(artifact: ContractArtifact, args: Sequence[Any]) -> str:
    types = [collapse_if_tuple(i) for i in artifact.constructor_inputs]
    if len(types) != len(args):
        raise SubmissionError(
            f"Constructor parameters length mismatch - "
            f"{artifact.name} ABI requires {len(types)}, Got {len(args)}."
        )
    return artifact.bytecode + encode_arguments(types, args).hex()


def encode_call(method: MethodSignature, args: Sequence[Any]) -> str:
    selector = function_signature_to_4byte_selector(method.signature)
    return to_hex(selector + encode_arguments(method.types, args))


def _pretty_args(args: Sequence[Any], names: Optional[Sequence[str]] = None) -> str:
    if not args:
        return "with no arguments"
    names = names or [f"arg{i}" for i in range(len(args))]
    pretty = "\n\t".join(f"{k}={v}" for k, v in zip(names, args))
    return f"with arguments:\n\t{pretty}"


class Transactor:
    """
    Represents a signer plus explicitly sequenced, confirmed transaction execution.

    Transactions are built first (encoding, gas) and only then handed a
    nonce by the caller; the transactor never picks one itself. A
    transaction that was submitted keeps its nonce whatever the outcome.
    """

    def __init__(
        self,
        client: ChainClient,
        signer: Signer,
        network: NetworkConfig,
        silent: bool = False,
    ):
        self.client = client
        self.signer = signer
        self.network = network
        self.silent = silent

    def _print(self, *args) -> None:
        if not self.silent:
            print(*args)

    def _transaction(self, data: str, gas_limit: Optional[int], to: Optional[str] = None) -> Dict[str, Any]:
        gas_price = self.network.gas_price
        if gas_price is None:
            gas_price = self.client.gas_price
        transaction = {
            "from": self.signer.address,
            "chainId": self.network.chain_id,
            "gasPrice": gas_price,
            "value": 0,
            "data": data,
        }
        if to is not None:
            transaction["to"] = to
        gas = gas_limit or self.network.gas_limit
        if gas is None:
            gas = self.client.estimate_gas(transaction)
        transaction["gas"] = gas
        return transaction

    def build_call(
        self,
        target: str,
        method: MethodSignature,
        args: Sequence[Any],
        gas_limit: Optional[int] = None,
        contract_name: str = "",
    ) -> Dict[str, Any]:
        """Encodes and prices a call; raises SubmissionError before any nonce is involved."""
        label = contract_name or "Contract"
        self._print(f"\nTransacting {label}[{shorten(target)}].{method.name} {_pretty_args(args)}")
        data = encode_call(method, args)
        return self._transaction(data, gas_limit, to=target)

    def submit(self, transaction: Dict[str, Any], nonce: int, timeout: Optional[float] = None) -> Receipt:
        """Signs, submits and waits. Every TransactionError leaving here carries the nonce."""
        transaction = dict(transaction, nonce=nonce)
        if timeout is None:
            timeout = self.network.confirmation_timeout or DEFAULT_CONFIRMATION_TIMEOUT
        try:
            try:
                raw_transaction = self.signer.sign_transaction(transaction)
            except (ValueError, TypeError) as e:
                raise SubmissionError(f"Cannot sign transaction: {e}", reason=str(e))
            tx_hash = self.client.send_raw_transaction(raw_transaction)
            self._print(f"(i) Submitted {tx_hash} with nonce {nonce}, waiting up to {timeout}s...")
            receipt = self.client.wait_for_receipt(tx_hash, timeout=timeout)
        except TransactionError as e:
            e.nonce = nonce
            raise

        if not receipt.succeeded:
            reason = self.client.get_revert_reason(transaction, receipt.block_number)
            if reason is None and receipt.gas_used >= transaction["gas"]:
                reason = "out of gas"
            raise ConfirmationError(
                f"Transaction {receipt.tx_hash} reverted in block {receipt.block_number}"
                + (f": {reason}" if reason else ""),
                nonce=nonce,
                tx_hash=receipt.tx_hash,
                reason=reason,
            )

        self._print(f"(i) Confirmed {receipt.tx_hash} in block {receipt.block_number}")
        return receipt

    def transact(
        self,
        target: str,
        method: MethodSignature,
        args: Sequence[Any],
        nonce: int,
        gas_limit: Optional[int] = None,
        timeout: Optional[float] = None,
        contract_name: str = "",
    ) -> Receipt:
        transaction = self.build_call(target, method, args, gas_limit=gas_limit, contract_name=contract_name)
        return self.submit(transaction, nonce, timeout)


class Deployer(Transactor):
    """A Transactor that also creates contract instances."""

    def build_deployment(
        self, artifact: ContractArtifact, args: Sequence[Any], gas_limit: Optional[int] = None
    ) -> Dict[str, Any]:
        names: List[str] = [i.get("name") or f"arg{n}" for n, i in enumerate(artifact.constructor_inputs)]
        self._print(f"\nDeploying {artifact.name} {_pretty_args(args, names)}")
        data = encode_deployment(artifact, args)
        return self._transaction(data, gas_limit)

    def deployed_address(self, artifact: ContractArtifact, receipt: Receipt, nonce: int) -> str:
        if not receipt.contract_address:
            raise ConfirmationError(
                f"Receipt {receipt.tx_hash} holds no contract address",
                nonce=nonce,
                tx_hash=receipt.tx_hash,
            )
        self._print(f"(i) {artifact.name} deployed to {receipt.contract_address}")
        return receipt.contract_address

    def deploy(
        self,
        artifact: ContractArtifact,
        args: Sequence[Any],
        nonce: int,
        gas_limit: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> Tuple[str, Receipt]:
        transaction = self.build_deployment(artifact, args, gas_limit=gas_limit)
        receipt = self.submit(transaction, nonce, timeout)
        return self.deployed_address(artifact, receipt, nonce), receipt
