import json
import typing
from collections import defaultdict
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, NamedTuple

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from helix_deployment.exceptions import AddressConflict, DeploymentConfigError
from helix_deployment.params import UNSET, ChainId, _chain_keyed, is_unset
from helix_deployment.utils import _load_json

if typing.TYPE_CHECKING:
    from helix_deployment.runner import RunResult

ContractName = str


STANDARD_REGISTRY_JSON_FORMAT = {"indent": 4, "separators": (",", ": ")}


class AddressTable:
    """
    Logical contract name -> chain id -> deployed address.

    The table is never changed in place. Adding deployments produces a new
    table, and replacing a non-empty address has to be asked for explicitly.
    """

    def __init__(self, addresses: typing.Mapping[ContractName, typing.Mapping[ChainId, str]]):
        self._addresses = {name: MappingProxyType(dict(v)) for name, v in addresses.items()}

    @classmethod
    def from_config(cls, config: typing.Dict) -> "AddressTable":
        config = config or dict()
        contracts = config.get("contracts", config)
        return cls({name: _chain_keyed(name, entries) for name, entries in contracts.items()})

    @property
    def names(self) -> List[ContractName]:
        return sorted(self._addresses)

    def get(self, name: ContractName, chain_id: ChainId):
        return self._addresses.get(name, dict()).get(chain_id, UNSET)

    def resolve(self, chain_id: ChainId) -> typing.Mapping[ContractName, typing.Any]:
        """Returns the read-only name -> address view of one network."""
        return MappingProxyType(
            {name: addresses.get(chain_id, UNSET) for name, addresses in self._addresses.items()}
        )

    def with_entries(self, entries: Iterable["RegistryEntry"], replace: bool = False) -> "AddressTable":
        addresses = {name: dict(v) for name, v in self._addresses.items()}
        for entry in entries:
            current = addresses.setdefault(entry.name, dict()).get(entry.chain_id, UNSET)
            conflict = not is_unset(current) and current != entry.address
            if conflict and not replace:
                raise AddressConflict(
                    f"{entry.name} on chain id {entry.chain_id} is already at {current}; "
                    f"refusing to replace it with {entry.address}"
                )
            addresses[entry.name][entry.chain_id] = entry.address
        return AddressTable(addresses)


class RegistryEntry(NamedTuple):
    """Represents a single deployment recorded in a registry file."""

    chain_id: ChainId
    name: ContractName
    contract: str
    address: ChecksumAddress
    tx_hash: str
    block_number: int
    deployer: str
    constructor_args: str = "0x"


def _get_entries(result: "RunResult") -> List[RegistryEntry]:
    """Returns an entry for every unit deployed by a run."""
    entries = list()
    for outcome in result.outcomes:
        if not outcome.address:
            continue
        receipt = outcome.receipt
        entry = RegistryEntry(
            chain_id=result.chain_id,
            name=outcome.name,
            contract=outcome.contract,
            address=to_checksum_address(outcome.address),
            tx_hash=receipt.tx_hash,
            block_number=receipt.block_number,
            deployer=result.account,
            constructor_args=outcome.constructor_args or "0x",
        )
        entries.append(entry)
    return entries


def read_registry(filepath: Path) -> List[RegistryEntry]:
    data = _load_json(filepath)
    registry_entries = list()
    try:
        for chain_id, entries in data.items():
            for contract_name, artifacts in entries.items():
                registry_entry = RegistryEntry(
                    chain_id=int(chain_id),
                    name=contract_name,
                    contract=artifacts.get("contract", contract_name),
                    address=artifacts["address"],
                    tx_hash=artifacts["tx_hash"],
                    block_number=artifacts["block_number"],
                    deployer=artifacts["deployer"],
                    constructor_args=artifacts.get("constructor_args", "0x"),
                )
                registry_entries.append(registry_entry)
    except (AttributeError, KeyError, ValueError) as e:
        raise DeploymentConfigError(f"Malformed registry at {filepath}: {e}")
    return registry_entries


def write_registry(entries: List[RegistryEntry], filepath: Path, silent: bool = False) -> Path:
    """Writes a chain id keyed deployment registry to a file."""

    if not entries:
        if not silent:
            print("No entries provided.")
        return filepath

    # Sort registry entries to enforce common order
    entries = sorted(entries, key=lambda entry: (str(entry.chain_id), entry.name))

    data: Dict[str, Dict] = defaultdict(dict)
    for entry in entries:
        data[str(entry.chain_id)][entry.name] = {
            "address": entry.address,
            "contract": entry.contract,
            "tx_hash": entry.tx_hash,
            "block_number": int(entry.block_number),
            "deployer": entry.deployer,
            "constructor_args": entry.constructor_args,
        }

    # Create the parent directory if it does not exist
    filepath.parent.mkdir(parents=True, exist_ok=True)

    # If the file already exists, attempt to merge the data, if not create a new file
    if filepath.exists():
        if not silent:
            print(f"Updating existing registry at {filepath}.")
        existing_data = _load_json(filepath)

        if any(chain_id in existing_data for chain_id in data):
            filepath = filepath.with_suffix(".unmerged.json")
            if not silent:
                print(
                    "Cannot merge registries with overlapping chain IDs.\n"
                    f"Writing to {filepath} to avoid overwriting existing data."
                )
        else:
            existing_data.update(data)
            data = existing_data
    elif not silent:
        print(f"Creating new registry at {filepath}.")

    with open(filepath, "w") as file:
        json.dump(data, file, **STANDARD_REGISTRY_JSON_FORMAT)

    return filepath


def registry_from_run(result: "RunResult", output_filepath: Path, silent: bool = False) -> Path:
    """Records the units deployed by a run. This is the only way results reach disk."""
    entries = _get_entries(result)
    output_filepath = write_registry(entries=entries, filepath=output_filepath, silent=silent)
    if entries and not silent:
        print(f"(i) Registry written to {output_filepath}!")
    return output_filepath
