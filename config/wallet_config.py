"""
Wallet session configuration
"""

from typing import Dict, Any

from config import config


class WalletConfig:
    """Snapshot of the wallet settings.

    Values come from ``config.config`` (and therefore the environment) at
    construction time; keyword arguments override single settings, which
    is how tests and embedders give each wallet its own session.
    """

    def __init__(self, **overrides):
        # Remote endpoints
        self.NODE_URL = config.NODE_URL
        self.PROVER_URL = config.PROVER_URL
        self.TRANSFER_CONTRACT = config.TRANSFER_CONTRACT
        self.STAKE_CONTRACT = config.STAKE_CONTRACT
        self.RUSK_VERSION = config.RUSK_VERSION
        self.HTTP_TIMEOUT = config.HTTP_TIMEOUT

        # Local note cache
        self.NOTE_STORE_PATH = config.NOTE_STORE_PATH
        self.SESSION_ID = config.WALLET_SESSION
        self.LEAF_SIZE = config.LEAF_SIZE

        # Confirmation polling
        self.TX_POLL_INTERVAL = config.TX_POLL_INTERVAL
        self.TX_POLL_ATTEMPTS = config.TX_POLL_ATTEMPTS

        # Staking rules
        self.MIN_STAKE = config.MIN_STAKE
        self.EPOCH_BLOCKS = config.EPOCH_BLOCKS

        for key, value in overrides.items():
            attr = key.upper()
            if not hasattr(self, attr):
                raise ValueError(f"Unknown wallet setting: {key}")
            setattr(self, attr, value)

        if self.LEAF_SIZE <= 0:
            raise ValueError("LEAF_SIZE must be positive")
        if self.TX_POLL_ATTEMPTS <= 0:
            raise ValueError("TX_POLL_ATTEMPTS must be positive")

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            "network": {
                "node_url": self.NODE_URL,
                "prover_url": self.PROVER_URL,
                "transfer_contract": self.TRANSFER_CONTRACT,
                "stake_contract": self.STAKE_CONTRACT,
                "version": self.RUSK_VERSION,
                "timeout": self.HTTP_TIMEOUT
            },
            "store": {
                "path": self.NOTE_STORE_PATH,
                "session": self.SESSION_ID,
                "leaf_size": self.LEAF_SIZE
            },
            "confirmation": {
                "interval": self.TX_POLL_INTERVAL,
                "attempts": self.TX_POLL_ATTEMPTS
            },
            "staking": {
                "min_stake": self.MIN_STAKE,
                "epoch_blocks": self.EPOCH_BLOCKS
            }
        }
