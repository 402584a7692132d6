import json
import os
import re
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, Tuple

import yaml
from eth_utils import is_hex_address, to_checksum_address
from web3 import Web3

from helix_deployment.exceptions import DeploymentConfigError

WEI_AMOUNT = re.compile(r"^\s*([0-9][0-9_]*(?:\.[0-9]+)?)\s+([a-zA-Z]+)\s*$")
SCIENTIFIC = re.compile(r"^\s*[0-9]+(?:\.[0-9]+)?[eE]\+?[0-9]+\s*$")
ENV_REFERENCE = re.compile(r"\$\{([A-Z0-9_]+)\}")
BOOLEANS = {"true": True, "false": False}


def _load_yaml(filepath: Path) -> dict:
    """Loads a YAML file."""
    with open(filepath, "r") as file:
        return yaml.safe_load(file)


def _load_json(filepath: Path) -> dict:
    """Loads a JSON file."""
    with open(filepath, "r") as file:
        return json.load(file)


def expand_environment(value: str) -> str:
    """Replaces ${VAR} references with values from the environment (empty if unset)."""
    return ENV_REFERENCE.sub(lambda match: os.environ.get(match.group(1), ""), value)


def coerce_value(value: Any) -> Any:
    """
    Normalizes a single table value.

    Addresses are checksummed, amounts such as "40 ether" or "5 gwei" are
    converted to integer wei and numeric strings, scientific notation
    included ("40e18"), become integers. Anything else is returned untouched.
    """
    if isinstance(value, bool) or not isinstance(value, str):
        return value

    if is_hex_address(value):
        return to_checksum_address(value)

    match = WEI_AMOUNT.match(value)
    if match:
        amount, unit = match.groups()
        return Web3.to_wei(amount.replace("_", ""), unit.lower())

    if SCIENTIFIC.match(value):
        number = Decimal(value.strip())
        if number != number.to_integral_value():
            raise DeploymentConfigError(f"'{value}' is not a whole number")
        return int(number)

    stripped = value.replace("_", "")
    if stripped.isdigit():
        return int(stripped)

    return value


def parse_overrides(assignments: Iterable[str]) -> Dict[str, Any]:
    """Parses NAME=VALUE pairs given on the command line."""
    overrides = dict()
    for assignment in assignments:
        name, separator, value = assignment.partition("=")
        if not separator or not name.strip():
            raise ValueError(f"Malformed override '{assignment}', expected NAME=VALUE")
        value = value.strip()
        if value.lower() in BOOLEANS:
            overrides[name.strip()] = BOOLEANS[value.lower()]
        else:
            overrides[name.strip()] = coerce_value(value)
    return overrides


def shorten(address: str) -> str:
    return f"{address[:10]}" if address else address


def split_signature(signature: str) -> Tuple[str, Tuple[str, ...]]:
    """Splits 'add(uint256,address,bool)' into its name and argument types."""
    name, _, rest = signature.partition("(")
    if not rest.endswith(")"):
        raise ValueError(f"Malformed function signature '{signature}'")
    arguments = rest[:-1].strip()
    types = tuple(t.strip() for t in arguments.split(",")) if arguments else tuple()
    return name.strip(), types
