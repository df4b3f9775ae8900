"""chunkloader constants and instruction tags."""

# Transport ceiling for one serialized transaction (1280 IPv6 MTU - 40 - 8).
PACKET_DATA_SIZE = 1232
PUBKEY_BYTES = 32
MAX_WRITE_OFFSET = 2**32 - 1

# Upgradeable BPF loader.
BPF_LOADER_UPGRADEABLE_ID = "BPFLoaderUpgradeab1e11111111111111111111111"
LOADER_INITIALIZE_BUFFER = 0
LOADER_WRITE = 1
LOADER_DEPLOY_WITH_MAX_DATA_LEN = 2
LOADER_SET_AUTHORITY = 4

# UpgradeableLoaderState sizes (bincode): tag u32 + Option<Pubkey> / Pubkey.
BUFFER_METADATA_SIZE = 37
PROGRAM_ACCOUNT_SIZE = 36

# Round loader (relay round proposals).
MIN_RELAYS = 3
MAX_RELAYS = 100
ROUND_LOADER_CREATE_PROPOSAL = 0
ROUND_LOADER_WRITE_PROPOSAL = 1
ROUND_LOADER_FINALIZE_PROPOSAL = 2
PROPOSAL_SEED = b"proposal"
SETTINGS_SEED = b"settings"

CLUSTER_URLS = {
    "localnet": "http://127.0.0.1:8899",
    "devnet": "https://api.devnet.solana.com",
    "testnet": "https://api.testnet.solana.com",
    "mainnet": "https://api.mainnet-beta.solana.com",
}
DEFAULT_RPC_URL = CLUSTER_URLS["localnet"]
DEFAULT_COMMITMENT = "confirmed"

DISPATCH_MODES = {"concurrent", "sequential"}
DEFAULT_DISPATCH_MODE = "concurrent"
DEFAULT_MAX_WORKERS = 8
DEFAULT_CONFIRM_TIMEOUT = 60.0
DEFAULT_POLL_INTERVAL = 0.5
# getSignatureStatuses accepts at most 256 signatures per call.
MAX_STATUS_BATCH = 256
