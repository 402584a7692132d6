"""
Nonce sequencing for a single run.

A cursor is initialised once from the network and then advanced locally,
once per submitted transaction whether or not it later confirms. A cursor
has exactly one writer: two runs against the same network and account
would hand out the same nonces, so runs take `run_lock` first.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Tuple

from eth_utils import to_checksum_address

from helix_deployment.chain import ChainClient
from helix_deployment.exceptions import ConcurrentRunError

_RUN_LOCKS: Dict[Tuple[int, str], threading.Lock] = dict()
_RUN_LOCKS_GUARD = threading.Lock()


def _lock_for(chain_id: int, account: str) -> threading.Lock:
    key = (chain_id, to_checksum_address(account))
    with _RUN_LOCKS_GUARD:
        return _RUN_LOCKS.setdefault(key, threading.Lock())


@contextmanager
def run_lock(chain_id: int, account: str, timeout: float = 0) -> Iterator[None]:
    """Exclusive run on (network, account) within this process."""
    lock = _lock_for(chain_id, account)
    acquired = lock.acquire(timeout=timeout) if timeout > 0 else lock.acquire(blocking=False)
    if not acquired:
        raise ConcurrentRunError(
            f"Another run is already using account {account} on chain id {chain_id}"
        )
    try:
        yield
    finally:
        lock.release()


class NonceCursor:
    def __init__(self, chain_id: int, account: str, start: int):
        self.chain_id = chain_id
        self.account = account
        self.start = start
        self._next = start
        self._issued: List[int] = list()

    def next(self) -> int:
        nonce = self._next
        self._next += 1
        self._issued.append(nonce)
        return nonce

    @property
    def peek(self) -> int:
        """The nonce the next submission would use."""
        return self._next

    @property
    def issued(self) -> Tuple[int, ...]:
        return tuple(self._issued)

    def __repr__(self):
        return f"NonceCursor(chain_id={self.chain_id}, account={self.account}, next={self._next})"


class NonceSequencer:
    def __init__(self, client: ChainClient):
        self.client = client

    def init(self, chain_id: int, account: str) -> NonceCursor:
        start = self.client.get_transaction_count(account)
        return NonceCursor(chain_id=chain_id, account=account, start=start)
