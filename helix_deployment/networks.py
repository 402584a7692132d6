import typing
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Union

from helix_deployment.constants import (
    CONSTANTS_FILEPATH,
    CONTRACTS_FILEPATH,
    DEFAULT_CONFIRMATION_TIMEOUT,
    NETWORKS_FILEPATH,
)
from helix_deployment.exceptions import DeploymentConfigError, UnknownNetwork
from helix_deployment.params import UNSET, ChainId, ConstantTable, ResolvedConstants
from helix_deployment.registry import AddressTable
from helix_deployment.utils import _load_yaml, expand_environment

NetworkIdentifier = Union[int, str]


class NetworkConfig(NamedTuple):
    name: str
    chain_id: ChainId
    endpoint: str
    gas_price: Optional[int] = None  # None: ask the node
    gas_limit: Optional[int] = None
    confirmation_timeout: float = DEFAULT_CONFIRMATION_TIMEOUT
    explorer_url: Optional[str] = None
    explorer_api_url: Optional[str] = None  # etherscan-compatible API
    explorer_api_key: Optional[str] = None


class ResolvedNetwork(NamedTuple):
    """Everything a recipe needs to know about one network, frozen for the run."""

    network: NetworkConfig
    addresses: typing.Mapping[str, Any]
    constants: ResolvedConstants

    @property
    def chain_id(self) -> ChainId:
        return self.network.chain_id

    def address(self, name: str) -> Any:
        return self.addresses.get(name, UNSET)

    def constant(self, name: str) -> Any:
        return self.constants.get(name, UNSET)


def _network_from_config(name: str, data: Dict) -> NetworkConfig:
    if not isinstance(data, dict):
        raise DeploymentConfigError(f"Malformed network config for '{name}'.")
    try:
        chain_id = int(data["chain_id"])
    except (KeyError, TypeError, ValueError):
        raise DeploymentConfigError(f"chain_id is not set for network '{name}'.")

    def optional_int(key: str) -> Optional[int]:
        value = data.get(key)
        return None if value is None else int(value)

    return NetworkConfig(
        name=name,
        chain_id=chain_id,
        endpoint=expand_environment(str(data.get("url", ""))),
        gas_price=optional_int("gas_price"),
        gas_limit=optional_int("gas_limit"),
        confirmation_timeout=float(data.get("confirmation_timeout", DEFAULT_CONFIRMATION_TIMEOUT)),
        explorer_url=data.get("explorer_url"),
        explorer_api_url=data.get("explorer_api_url"),
        explorer_api_key=expand_environment(str(data.get("explorer_api_key", ""))) or None,
    )


class NetworkRegistry:
    """
    Maps a network identifier to its parameters and deployment tables.

    Resolution is pure: the registry never talks to the network, and
    resolving the same identifier twice yields equal values.
    """

    def __init__(
        self,
        networks: List[NetworkConfig],
        addresses: AddressTable,
        constants: ConstantTable,
    ):
        self._networks = {network.name: network for network in networks}
        if len(self._networks) != len(networks):
            raise DeploymentConfigError("Duplicate network names.")
        chain_ids = [network.chain_id for network in networks]
        if len(set(chain_ids)) != len(chain_ids):
            raise DeploymentConfigError("Duplicate chain ids across networks.")
        self.addresses = addresses
        self.constants = constants

    @classmethod
    def from_config(cls, networks: Dict, contracts: Dict, constants: Dict) -> "NetworkRegistry":
        networks = (networks or dict()).get("networks", networks) or dict()
        return cls(
            networks=[_network_from_config(name, data) for name, data in networks.items()],
            addresses=AddressTable.from_config(contracts),
            constants=ConstantTable.from_config(constants),
        )

    @classmethod
    def from_yaml(
        cls,
        networks_filepath: Path = NETWORKS_FILEPATH,
        contracts_filepath: Path = CONTRACTS_FILEPATH,
        constants_filepath: Path = CONSTANTS_FILEPATH,
    ) -> "NetworkRegistry":
        return cls.from_config(
            networks=_load_yaml(networks_filepath),
            contracts=_load_yaml(contracts_filepath),
            constants=_load_yaml(constants_filepath),
        )

    @property
    def networks(self) -> List[NetworkConfig]:
        return list(self._networks.values())

    def get_network(self, network_id: NetworkIdentifier) -> NetworkConfig:
        if isinstance(network_id, str) and network_id in self._networks:
            return self._networks[network_id]
        try:
            chain_id = int(network_id)
        except (TypeError, ValueError):
            raise UnknownNetwork(f"No network registered as '{network_id}'")
        for network in self._networks.values():
            if network.chain_id == chain_id:
                return network
        raise UnknownNetwork(f"No network registered with chain id {chain_id}")

    def resolve(
        self,
        network_id: NetworkIdentifier,
        overrides: Optional[typing.Mapping[str, Any]] = None,
    ) -> ResolvedNetwork:
        network = self.get_network(network_id)
        return ResolvedNetwork(
            network=network,
            addresses=self.addresses.resolve(network.chain_id),
            constants=self.constants.resolve(network.chain_id, overrides=overrides),
        )
