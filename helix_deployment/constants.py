from pathlib import Path

import helix_deployment

#
# Filesystem
#

PACKAGE_DIR = Path(helix_deployment.__file__).parent
CONFIG_DIR = PACKAGE_DIR / "config"
RECIPES_DIR = PACKAGE_DIR / "recipes"

NETWORKS_FILEPATH = CONFIG_DIR / "networks.yml"
CONTRACTS_FILEPATH = CONFIG_DIR / "contracts.yml"
CONSTANTS_FILEPATH = CONFIG_DIR / "constants.yml"

# Hardhat layout of the contracts repository
ARTIFACTS_DIR = Path.cwd() / "artifacts"

#
# Environment
#

PRIVATE_KEY_ENVVAR = "PRIVATE_KEY"
MNEMONIC_ENVVAR = "MNEMONIC"
ARTIFACTS_DIR_ENVVAR = "HELIX_ARTIFACTS_DIR"

#
# Networks
#

ETH_MAINNET = 1
ROPSTEN = 3
RINKEBY = 4
GOERLI = 5
RSK_TESTNET = 31
BSC_MAINNET = 56
BSC_TESTNET = 97
HARDHAT = 31337

#
# Transactions
#

ZERO_ADDRESS = "0x" + "0" * 40

# seconds; web3.py's own default for wait_for_transaction_receipt
DEFAULT_CONFIRMATION_TIMEOUT = 120

RECEIPT_POLL_LATENCY = 0.5

#
# Source verification
#

EXPLORER_REQUEST_TIMEOUT = 30
VERIFICATION_POLL_INTERVAL = 5  # seconds between status checks
VERIFICATION_ATTEMPTS = 12
