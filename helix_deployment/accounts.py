import os
import typing
from abc import ABC, abstractmethod
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount

from helix_deployment.constants import MNEMONIC_ENVVAR, PRIVATE_KEY_ENVVAR


class Signer(ABC):
    """Opaque signing capability; the orchestration never sees key material."""

    @property
    @abstractmethod
    def address(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def sign_transaction(self, transaction: typing.Dict[str, Any]) -> bytes:
        """Returns the raw signed transaction."""
        raise NotImplementedError


class LocalSigner(Signer):
    def __init__(self, account: LocalAccount):
        self._account = account

    @property
    def address(self) -> str:
        return self._account.address

    def sign_transaction(self, transaction: typing.Dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    @classmethod
    def from_key(cls, private_key: str) -> "LocalSigner":
        return cls(Account.from_key(private_key))

    @classmethod
    def from_mnemonic(cls, mnemonic: str, index: int = 0) -> "LocalSigner":
        Account.enable_unaudited_hdwallet_features()
        account = Account.from_mnemonic(mnemonic, account_path=f"m/44'/60'/0'/0/{index}")
        return cls(account)

    @classmethod
    def from_environment(cls, account_index: int = 0) -> "LocalSigner":
        """A mnemonic wins over a private key."""
        mnemonic = os.environ.get(MNEMONIC_ENVVAR)
        if mnemonic:
            return cls.from_mnemonic(mnemonic, index=account_index)
        private_key = os.environ.get(PRIVATE_KEY_ENVVAR)
        if private_key:
            return cls.from_key(private_key)
        raise ValueError(
            f"There are missing environment variables. "
            f"Please set {MNEMONIC_ENVVAR} or {PRIVATE_KEY_ENVVAR}."
        )
