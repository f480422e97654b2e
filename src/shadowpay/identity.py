"""Relayer signing identity and Solana address helpers.

The relayer signs with its OWN ed25519 keypair, never with user keys.
The keypair file uses the Solana CLI format: a JSON array of 64 integers
(32-byte seed followed by the 32-byte public key).
"""

import json
import logging
from pathlib import Path
from typing import Sequence, Union

import base58
from nacl.signing import SigningKey

from shadowpay.errors import ConfigurationError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
PUBLIC_KEY_LENGTH = 32


def is_valid_address(address: str) -> bool:
    """Check that a string is a syntactically valid Solana address.

    A valid address is base58 that decodes to exactly 32 bytes. This does
    not check that the account exists on chain.
    """
    if not isinstance(address, str) or not 32 <= len(address) <= 44:
        return False
    try:
        decoded = base58.b58decode(address)
    except ValueError:
        return False
    return len(decoded) == PUBLIC_KEY_LENGTH


class RelayerIdentity:
    """Ed25519 keypair used to sign relayer submissions."""

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key

    @classmethod
    def generate(cls) -> "RelayerIdentity":
        return cls(SigningKey.generate())

    @classmethod
    def from_secret_key(cls, secret: Union[bytes, Sequence[int]]) -> "RelayerIdentity":
        """Rebuild an identity from raw secret key material.

        Args:
            secret: 64-byte keypair (seed + public key) or 32-byte seed

        Raises:
            ValueError: If the key material is malformed or inconsistent
        """
        raw = bytes(secret)
        if len(raw) == 64:
            identity = cls(SigningKey(raw[:32]))
            if identity.public_key != raw[32:]:
                raise ValueError("Keypair public key does not match its seed")
            return identity
        if len(raw) == 32:
            return cls(SigningKey(raw))
        raise ValueError(f"Secret key must be 32 or 64 bytes, got {len(raw)}")

    @classmethod
    def from_keypair_file(cls, path: Union[str, Path]) -> "RelayerIdentity":
        """Load the relayer keypair from a Solana CLI keypair file.

        Raises:
            ConfigurationError: If the file is missing or unreadable
        """
        keypair_path = Path(path)
        try:
            secret = json.loads(keypair_path.read_text(encoding="utf-8"))
            identity = cls.from_secret_key(secret)
        except FileNotFoundError:
            raise ConfigurationError(f"Relayer keypair not found: {keypair_path}")
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid relayer keypair {keypair_path}: {e}")

        logger.info(f"Relayer identity loaded: {identity.address}")
        return identity

    @property
    def public_key(self) -> bytes:
        return self._signing_key.verify_key.encode()

    @property
    def address(self) -> str:
        """Base58 public key."""
        return base58.b58encode(self.public_key).decode()

    @property
    def secret_key(self) -> bytes:
        """64-byte keypair (seed + public key), the form copied into contexts."""
        return bytes(self._signing_key) + self.public_key

    def sign(self, message: bytes) -> bytes:
        """Return the detached ed25519 signature of ``message``."""
        return self._signing_key.sign(message).signature

    def to_keypair_json(self) -> str:
        return json.dumps(list(self.secret_key))

    def __repr__(self) -> str:
        return f"RelayerIdentity({self.address})"
