from typing import Optional


class DeploymentError(Exception):
    """Base class for every failure raised by the orchestration core."""


class DeploymentConfigError(DeploymentError, ValueError):
    """Raised when tables, recipes or artifacts cannot be used as given."""


class UnknownNetwork(DeploymentConfigError):
    pass


class UnresolvedDependency(DeploymentConfigError):
    pass


class InvalidConstantInvariant(DeploymentConfigError):
    pass


class CyclicOrUnorderedDependency(DeploymentConfigError):
    pass


class ChainMismatch(DeploymentConfigError):
    """The connected endpoint reports a chain id other than the selected network's."""


class ArtifactNotFound(DeploymentConfigError):
    pass


class AddressConflict(DeploymentConfigError):
    """A deployed address would replace a different, non-empty address."""


class UnsafeRetry(DeploymentConfigError):
    """A step with an unknown on-chain outcome is not declared safe to retry."""


class ConcurrentRunError(DeploymentError):
    """Another run already holds the nonce cursor of this network and account."""


class TransactionError(DeploymentError):
    """A submitted transaction did not confirm successfully."""

    def __init__(
        self,
        message: str,
        nonce: Optional[int] = None,
        tx_hash: Optional[str] = None,
        reason: Optional[str] = None,
    ):
        super().__init__(message)
        self.nonce = nonce
        self.tx_hash = tx_hash
        self.reason = reason


class SubmissionError(TransactionError):
    """The network rejected the transaction before inclusion."""


class ConfirmationError(TransactionError):
    """The transaction was included but reverted."""


class ConfirmationTimeout(TransactionError):
    """No receipt within the configured bound; the outcome is unknown."""


class VerificationError(DeploymentError):
    """A block explorer refused or failed to verify a deployed contract's source."""
