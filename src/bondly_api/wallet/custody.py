"""Custody wallet key generation and encryption at rest.

Private keys are generated with a CSPRNG, encrypted with AES-256-GCM under
the process wallet secret and stored as hex ``nonce || ciphertext || tag``.
Plaintext keys never leave this module except through ``decrypt``.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from eth_account import Account

from bondly_api.errors import DecryptError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


class CustodyEvent(str, Enum):
    GENERATED = "custody.generated"
    DECRYPT_FAILED = "custody.decrypt_failed"


def normalize_secret(secret: str) -> bytes:
    """Normalize a configured secret to an AES-256 key.

    Shorter secrets are right-padded with zero bytes, longer ones truncated.
    """
    raw = secret.encode("utf-8")
    if len(raw) >= KEY_SIZE:
        return raw[:KEY_SIZE]
    return raw + b"\x00" * (KEY_SIZE - len(raw))


@dataclass(frozen=True)
class CustodyWallet:
    """A freshly generated custody wallet."""

    address: str
    encrypted_private_key: str


class CustodyWalletManager:
    """Generates custody keypairs and encrypts/decrypts their private keys."""

    def __init__(self, secret: str) -> None:
        if not secret:
            raise ValueError("wallet secret must not be empty")
        self._aesgcm = AESGCM(normalize_secret(secret))

    def encrypt(self, private_key: bytes) -> str:
        """Encrypt a 32-byte private key; returns hex(nonce || ct || tag)."""
        if len(private_key) != KEY_SIZE:
            raise ValueError("private key must be 32 bytes")
        nonce = secrets.token_bytes(NONCE_SIZE)
        return (nonce + self._aesgcm.encrypt(nonce, private_key, None)).hex()

    def decrypt(self, ciphertext: str) -> bytes:
        """Decrypt a stored private key.

        Raises:
            DecryptError: On malformed input or authentication tag mismatch.
        """
        try:
            blob = bytes.fromhex(ciphertext.removeprefix("0x"))
        except ValueError as e:
            raise DecryptError("custody key ciphertext is not valid hex") from e
        if len(blob) < NONCE_SIZE + TAG_SIZE:
            raise DecryptError("custody key ciphertext is too short")
        nonce, body = blob[:NONCE_SIZE], blob[NONCE_SIZE:]
        try:
            return self._aesgcm.decrypt(nonce, body, None)
        except InvalidTag as e:
            logger.error(
                "Custody key failed authentication",
                extra={"event": CustodyEvent.DECRYPT_FAILED},
            )
            raise DecryptError() from e

    def generate(self) -> CustodyWallet:
        """Create a new secp256k1 keypair and return its address and encrypted key."""
        account = Account.create(secrets.token_hex(32))
        wallet = CustodyWallet(
            address=account.address,
            encrypted_private_key=self.encrypt(bytes(account.key)),
        )
        logger.info(
            "Generated custody wallet",
            extra={"event": CustodyEvent.GENERATED, "address": wallet.address},
        )
        return wallet

    def address_of(self, ciphertext: str) -> str:
        """Derive the checksummed address for a stored key."""
        return str(Account.from_key(self.decrypt(ciphertext)).address)
