import typing
from abc import ABC, abstractmethod
from typing import Any, NamedTuple, Optional

import requests
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from helix_deployment.constants import RECEIPT_POLL_LATENCY
from helix_deployment.exceptions import ConfirmationTimeout, SubmissionError


class Receipt(NamedTuple):
    """The parts of a transaction receipt the orchestration cares about."""

    tx_hash: str
    status: int
    block_number: int
    gas_used: int
    contract_address: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class ChainClient(ABC):
    """
    The network seen by the deployers: nonce queries, raw submission and
    blocking confirmation. Connection management belongs to implementations.
    """

    @property
    @abstractmethod
    def chain_id(self) -> int:
        raise NotImplementedError

    @property
    @abstractmethod
    def gas_price(self) -> int:
        raise NotImplementedError

    @abstractmethod
    def get_transaction_count(self, address: str) -> int:
        """Returns the next nonce of an account, pending transactions included."""
        raise NotImplementedError

    @abstractmethod
    def estimate_gas(self, transaction: typing.Dict[str, Any]) -> int:
        raise NotImplementedError

    @abstractmethod
    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        """Submits a signed transaction; raises SubmissionError if the node rejects it."""
        raise NotImplementedError

    @abstractmethod
    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        """Blocks until inclusion; raises ConfirmationTimeout once the bound is exceeded."""
        raise NotImplementedError

    @abstractmethod
    def get_revert_reason(self, transaction: typing.Dict[str, Any], block_number: int) -> Optional[str]:
        raise NotImplementedError


def _receipt_from_web3(receipt) -> Receipt:
    contract_address = receipt.get("contractAddress")
    return Receipt(
        tx_hash=Web3.to_hex(receipt["transactionHash"]),
        status=int(receipt["status"]),
        block_number=int(receipt["blockNumber"]),
        gas_used=int(receipt["gasUsed"]),
        contract_address=Web3.to_checksum_address(contract_address) if contract_address else None,
    )


class Web3Client(ChainClient):
    """ChainClient over a web3.py connection."""

    def __init__(self, w3: Web3, poll_latency: float = RECEIPT_POLL_LATENCY):
        self.w3 = w3
        self.poll_latency = poll_latency

    @classmethod
    def from_endpoint(cls, endpoint: str, **kwargs) -> "Web3Client":
        if not endpoint:
            raise ValueError("No RPC endpoint configured for this network.")
        return cls(Web3(Web3.HTTPProvider(endpoint)), **kwargs)

    @property
    def chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    @property
    def gas_price(self) -> int:
        return int(self.w3.eth.gas_price)

    def get_transaction_count(self, address: str) -> int:
        return int(self.w3.eth.get_transaction_count(address, "pending"))

    def estimate_gas(self, transaction: typing.Dict[str, Any]) -> int:
        try:
            return int(self.w3.eth.estimate_gas(transaction))
        except (ValueError, Web3Exception, OSError) as e:
            raise SubmissionError(f"Gas estimation failed: {e}", reason=str(e))

    def send_raw_transaction(self, raw_transaction: bytes) -> str:
        raw_transaction = HexBytes(raw_transaction)
        try:
            tx_hash = self.w3.eth.send_raw_transaction(raw_transaction)
        except requests.ConnectionError as e:
            raise SubmissionError(f"Endpoint unreachable: {e}", reason=str(e))
        except requests.Timeout as e:
            # the node may have taken it before the response was lost
            tx_hash = Web3.to_hex(Web3.keccak(raw_transaction))
            raise ConfirmationTimeout(
                f"No response while submitting {tx_hash}, outcome unknown: {e}",
                tx_hash=tx_hash,
                reason=str(e),
            )
        except (ValueError, Web3Exception, OSError) as e:
            raise SubmissionError(f"Transaction rejected: {e}", reason=str(e))
        return Web3.to_hex(tx_hash)

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> Receipt:
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                HexBytes(tx_hash), timeout=timeout, poll_latency=self.poll_latency
            )
        except TimeExhausted:
            raise ConfirmationTimeout(
                f"Transaction {tx_hash} not confirmed after {timeout} seconds", tx_hash=tx_hash
            )
        except OSError as e:
            raise ConfirmationTimeout(
                f"Lost the endpoint while waiting for {tx_hash}, outcome unknown: {e}",
                tx_hash=tx_hash,
                reason=str(e),
            )
        return _receipt_from_web3(receipt)

    def get_revert_reason(self, transaction: typing.Dict[str, Any], block_number: int) -> Optional[str]:
        """Replays a reverted transaction as a call to recover the revert message."""
        call = {k: transaction[k] for k in ("from", "to", "data", "value", "gas") if k in transaction}
        try:
            self.w3.eth.call(call, block_identifier=block_number)
        except ContractLogicError as e:
            return str(e)
        except (ValueError, TransactionNotFound, Web3Exception, OSError):
            return None
        return None
