import os

NODE_URL = os.environ.get("CURRENT_NODE", "http://127.0.0.1:8080/")
PROVER_URL = os.environ.get("CURRENT_PROVER_NODE", NODE_URL)
TRANSFER_CONTRACT = os.environ.get("TRANSFER_CONTRACT", "01" + "00" * 31)
STAKE_CONTRACT = os.environ.get("STAKE_CONTRACT", "02" + "00" * 31)
RUSK_VERSION = os.environ.get("RUSK_VERSION", "0.7.0-rc")
HTTP_TIMEOUT = float(os.environ.get("HTTP_TIMEOUT", "120"))

NOTE_STORE_PATH = os.environ.get("NOTE_STORE_PATH", "notes.rocksdb")
WALLET_SESSION = os.environ.get("WALLET_SESSION", "default")

# Size in bytes of one leaf of the remote note tree
LEAF_SIZE = int(os.environ.get("LEAF_SIZE", "632"))

TX_POLL_INTERVAL = float(os.environ.get("TX_POLL_INTERVAL", "1"))
TX_POLL_ATTEMPTS = int(os.environ.get("TX_POLL_ATTEMPTS", "30"))

MIN_STAKE = int(os.environ.get("MIN_STAKE", "1000"))
EPOCH_BLOCKS = 2160
GAS_LIMIT = 2_900_000_000
GAS_PRICE = 1

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
