from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional

from helix_deployment.exceptions import ArtifactNotFound, DeploymentConfigError
from helix_deployment.utils import _load_json


class ContractArtifact(NamedTuple):
    """Compiled contract: a deployable unit as far as orchestration is concerned."""

    name: str
    abi: List[Dict[str, Any]]
    bytecode: str
    source_name: Optional[str] = None  # e.g. contracts/farms/MasterChef.sol

    @property
    def constructor_inputs(self) -> List[Dict[str, Any]]:
        for entry in self.abi:
            if entry.get("type") == "constructor":
                return entry.get("inputs", [])
        return []

    def functions(self, name: str) -> List[Dict[str, Any]]:
        return [e for e in self.abi if e.get("type") == "function" and e.get("name") == name]


def _artifact_from_file(filepath: Path) -> ContractArtifact:
    data = _load_json(filepath)
    try:
        name = data.get("contractName", filepath.stem)
        abi = data["abi"]
    except (AttributeError, KeyError):
        raise DeploymentConfigError(f"Malformed artifact at {filepath}")
    bytecode = data.get("bytecode") or "0x"
    if isinstance(bytecode, dict):  # solc standard json output
        bytecode = bytecode.get("object", "0x")
    if not bytecode.startswith("0x"):
        bytecode = "0x" + bytecode
    return ContractArtifact(name=name, abi=abi, bytecode=bytecode, source_name=data.get("sourceName"))


class BuildInfo(NamedTuple):
    """The compiler run that produced an artifact, as hardhat records it under build-info/."""

    compiler_version: str  # solc long version, e.g. 0.8.4+commit.c7e474f2
    input: Dict[str, Any]  # solc standard json input


class ArtifactStore:
    """
    Looks up compiled artifacts by contract kind in a hardhat artifacts
    directory (artifacts/contracts/<Source>.sol/<Kind>.json).
    """

    def __init__(self, directory: Path, artifacts: Optional[Dict[str, ContractArtifact]] = None):
        self.directory = Path(directory)
        self._cache: Dict[str, ContractArtifact] = dict(artifacts or dict())

    @classmethod
    def from_artifacts(cls, *artifacts: ContractArtifact) -> "ArtifactStore":
        """An in-memory store, mostly for tests and pre-compiled bundles."""
        return cls(Path("."), artifacts={a.name: a for a in artifacts})

    def _find(self, contract: str) -> Path:
        matches = [
            path
            for path in sorted(self.directory.rglob(f"{contract}.json"))
            if not path.name.endswith(".dbg.json")
        ]
        if not matches:
            raise ArtifactNotFound(f"No artifact found for '{contract}' under {self.directory}")
        if len(matches) > 1:
            raise ArtifactNotFound(
                f"Artifact for '{contract}' is ambiguous - "
                f"expected exactly one file, got {len(matches)}"
            )
        return matches[0]

    def get(self, contract: str) -> ContractArtifact:
        if contract not in self._cache:
            self._cache[contract] = _artifact_from_file(self._find(contract))
        return self._cache[contract]

    def build_info(self, contract: str) -> BuildInfo:
        """Reads the build-info file the artifact's <Kind>.dbg.json points at."""
        artifact_path = self._find(contract)
        debug_path = artifact_path.with_name(f"{contract}.dbg.json")
        if not debug_path.exists():
            raise ArtifactNotFound(f"No debug file for '{contract}' at {debug_path}")
        try:
            build_info_path = debug_path.parent / _load_json(debug_path)["buildInfo"]
        except (KeyError, TypeError):
            raise DeploymentConfigError(f"Malformed debug file at {debug_path}")
        if not build_info_path.exists():
            raise ArtifactNotFound(f"Build info for '{contract}' is missing at {build_info_path}")

        data = _load_json(build_info_path)
        try:
            return BuildInfo(compiler_version=data["solcLongVersion"], input=data["input"])
        except (KeyError, TypeError):
            raise DeploymentConfigError(f"Malformed build info at {build_info_path}")
