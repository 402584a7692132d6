import pytest

from helix_deployment.artifacts import ArtifactStore
from helix_deployment.networks import NetworkRegistry
from tests.fakes import (
    AURA_NFT,
    AURA_NFT_ARTIFACT,
    AURA_NFT_BRIDGE,
    DEVELOPER,
    HELIX_TOKEN,
    HELIX_TOKEN_ARTIFACT,
    MASTER_CHEF,
    ONE_GWEI,
    REFERRAL_REGISTER,
    TOKEN_TOOLS,
    FakeChain,
    FakeSigner,
)


@pytest.fixture()
def chain():
    return FakeChain()


@pytest.fixture()
def signer():
    return FakeSigner()


@pytest.fixture()
def artifacts():
    return ArtifactStore.from_artifacts(
        MASTER_CHEF, HELIX_TOKEN_ARTIFACT, TOKEN_TOOLS, AURA_NFT_BRIDGE, AURA_NFT_ARTIFACT
    )


@pytest.fixture()
def networks_config():
    return {
        "networks": {
            "testnetBSC": {
                "chain_id": 97,
                "url": "http://127.0.0.1:8545",
                "gas_price": 20 * ONE_GWEI,
                "gas_limit": 2_100_000,
            },
            "mainnetBSC": {"chain_id": 56, "url": "https://bsc-dataseed1.binance.org"},
            "rinkeby": {"chain_id": 4, "url": "${RINKEBY_URL}"},
        }
    }


@pytest.fixture()
def contracts_config():
    return {
        "contracts": {
            "helixToken": {56: "", 97: HELIX_TOKEN},
            "referralRegister": {56: "", 97: REFERRAL_REGISTER},
            "masterChef": {56: "", 97: ""},
            "auraNFT": {56: "", 97: AURA_NFT},
        }
    }


@pytest.fixture()
def constants_config():
    return {
        "constants": {
            "MASTERCHEF_DEVELOPER": {56: None, 97: DEVELOPER},
            "MASTERCHEF_START_BLOCK": {56: None, 97: 100},
            "MASTERCHEF_HELIX_TOKEN_REWARD_PER_BLOCK": {56: None, 97: "40 ether"},
            "MASTERCHEF_STAKING_PERCENT": {56: None, 97: 900000},
            "MASTERCHEF_DEV_PERCENT": {56: None, 97: 100000},
            "MASTERCHEF_LP_ALLOC_POINT": {56: None, 97: 822},
        },
        "invariants": [
            {"constants": ["MASTERCHEF_STAKING_PERCENT", "MASTERCHEF_DEV_PERCENT"], "total": 1000000}
        ],
    }


@pytest.fixture()
def network_registry(networks_config, contracts_config, constants_config):
    return NetworkRegistry.from_config(
        networks=networks_config, contracts=contracts_config, constants=constants_config
    )


@pytest.fixture()
def testnet(network_registry):
    return network_registry.resolve("testnetBSC")
