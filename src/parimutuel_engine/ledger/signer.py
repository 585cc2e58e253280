"""
Local keypair signer.

Loads a keypair in the Solana CLI format (a JSON array of 64 byte
values) and signs proposed transactions with it.
"""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

logger = logging.getLogger(__name__)


class KeypairSigner:
    """SignerHandle backed by an in-memory keypair."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "KeypairSigner":
        """
        Load a Solana CLI keypair file.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not a 64-byte JSON array
        """
        raw = json.loads(Path(path).expanduser().read_text())
        if not isinstance(raw, list) or len(raw) != 64:
            raise ValueError(f"Keypair file {path} must hold a JSON array of 64 bytes")
        keypair = Keypair.from_bytes(bytes(raw))
        logger.info(f"Loaded keypair {keypair.pubkey()} from {path}")
        return cls(keypair)

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign_transaction(self, transaction: Transaction) -> Transaction:
        transaction.sign([self._keypair], transaction.message.recent_blockhash)
        return transaction
