"""
Source verification of deployed contracts on etherscan-compatible block
explorers (etherscan.io, bscscan.com).

The compiler input comes from hardhat's build-info, the address and the
constructor arguments from a deployment registry.
"""

import json
import time
from typing import Any, Dict, List, Optional

import requests

from helix_deployment.artifacts import ArtifactStore
from helix_deployment.constants import (
    EXPLORER_REQUEST_TIMEOUT,
    VERIFICATION_ATTEMPTS,
    VERIFICATION_POLL_INTERVAL,
)
from helix_deployment.exceptions import DeploymentConfigError, DeploymentError, VerificationError
from helix_deployment.networks import NetworkConfig
from helix_deployment.registry import RegistryEntry

STANDARD_JSON_INPUT = "solidity-standard-json-input"

# explorer status messages
ALREADY_VERIFIED = "already verified"
PENDING = "pending in queue"
VERIFIED = "pass - verified"


class ExplorerClient:
    """A thin client for the contract verification endpoints of an etherscan-style API."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        session: Optional[requests.Session] = None,
        poll_interval: float = VERIFICATION_POLL_INTERVAL,
        attempts: int = VERIFICATION_ATTEMPTS,
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.session = session or requests.Session()
        self.poll_interval = poll_interval
        self.attempts = attempts

    @classmethod
    def from_network(cls, network: NetworkConfig, **kwargs) -> "ExplorerClient":
        if not network.explorer_api_url:
            raise DeploymentConfigError(f"No explorer API configured for network '{network.name}'.")
        if not network.explorer_api_key:
            raise DeploymentConfigError(f"No explorer API key set for network '{network.name}'.")
        return cls(network.explorer_api_url, network.explorer_api_key, **kwargs)

    def _request(self, post: bool = False, **params) -> Dict[str, Any]:
        params = dict(params, apikey=self.api_key)
        try:
            if post:
                response = self.session.post(self.api_url, data=params, timeout=EXPLORER_REQUEST_TIMEOUT)
            else:
                response = self.session.get(self.api_url, params=params, timeout=EXPLORER_REQUEST_TIMEOUT)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise VerificationError(f"Explorer request to {self.api_url} failed: {e}")

    def submit(
        self,
        address: str,
        contract_name: str,
        compiler_version: str,
        source: Dict[str, Any],
        constructor_args: str,
    ) -> Optional[str]:
        """Returns the job id of the verification, or None if the source is verified already."""
        if constructor_args.startswith("0x"):
            constructor_args = constructor_args[2:]
        data = self._request(
            post=True,
            module="contract",
            action="verifysourcecode",
            contractaddress=address,
            sourceCode=json.dumps(source),
            codeformat=STANDARD_JSON_INPUT,
            contractname=contract_name,
            compilerversion=f"v{compiler_version}",
            # sic, the API spells it this way
            constructorArguements=constructor_args,
        )
        result = str(data.get("result", ""))
        if str(data.get("status")) == "1":
            return result
        if ALREADY_VERIFIED in result.lower():
            return None
        raise VerificationError(f"Explorer refused to verify {address}: {result}")

    def status(self, guid: str) -> str:
        data = self._request(module="contract", action="checkverifystatus", guid=guid)
        return str(data.get("result", ""))

    def wait(self, guid: str) -> str:
        for _ in range(self.attempts):
            status = self.status(guid)
            if VERIFIED in status.lower() or ALREADY_VERIFIED in status.lower():
                return status
            if PENDING not in status.lower():
                raise VerificationError(status)
            time.sleep(self.poll_interval)
        raise VerificationError(f"Verification {guid} still pending after {self.attempts} checks")


def _qualified_name(contract: str, source_name: Optional[str], build_input: Dict[str, Any]) -> str:
    if source_name:
        return f"{source_name}:{contract}"
    # older artifacts lack sourceName; look the kind up among the compiled sources
    for path in build_input.get("sources", dict()):
        if path.endswith(f"/{contract}.sol") or path == f"{contract}.sol":
            return f"{path}:{contract}"
    raise DeploymentConfigError(f"Cannot find the source file of '{contract}' in its build info")


def verify_contract(
    entry: RegistryEntry,
    explorer: ExplorerClient,
    artifacts: ArtifactStore,
) -> str:
    """Submits one deployment for verification and waits for the explorer's verdict."""
    artifact = artifacts.get(entry.contract)
    build_info = artifacts.build_info(entry.contract)
    guid = explorer.submit(
        address=entry.address,
        contract_name=_qualified_name(entry.contract, artifact.source_name, build_info.input),
        compiler_version=build_info.compiler_version,
        source=build_info.input,
        constructor_args=entry.constructor_args,
    )
    if guid is None:
        return "Already Verified"
    return explorer.wait(guid)


def verify_contracts(
    entries: List[RegistryEntry],
    explorer: ExplorerClient,
    artifacts: ArtifactStore,
    explorer_url: Optional[str] = None,
) -> Dict[str, Optional[DeploymentError]]:
    """
    Verifies every entry in turn, carrying on past failures.
    Returns the error of each entry by name, None for the verified ones.
    """
    errors: Dict[str, Optional[DeploymentError]] = dict()
    for entry in entries:
        print(f"(i) Verifying {entry.name} ({entry.contract}) at {entry.address}...")
        try:
            status = verify_contract(entry, explorer, artifacts)
        except DeploymentError as e:
            print(f"(!) {entry.name}: {e}")
            errors[entry.name] = e
            continue
        errors[entry.name] = None
        print(f"(i) {entry.name}: {status}")
        if explorer_url:
            print(f"\t{explorer_url.rstrip('/')}/address/{entry.address}#code")
    return errors
