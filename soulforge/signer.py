"""
SOULFORGE Signer Layer

The owner's wallet is an injected capability. The coordinator only needs its
public key and a way to ask for a signature over the transaction message;
how the wallet reaches a human (browser extension, hardware device, remote
service) is not the core's concern.

Signers raise ``UserRejected`` when the request is declined. A pending
request is an ordinary awaitable, so the caller can cancel it.

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol

from cryptography.exceptions import InvalidSignature as CryptoInvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from soulforge.errors import UserRejected
from soulforge.observability import ForgeLayer, get_logger

SIGNATURE_LENGTH = 64

logger = get_logger("signer", ForgeLayer.SIGNER)


class Signer(Protocol):
    """Protocol for external signers holding the owner key."""

    @property
    def public_key(self) -> Pubkey:
        ...

    async def request_signature(self, message: bytes) -> bytes:
        """
        Sign serialized transaction message bytes.

        Returns the 64-byte Ed25519 signature.

        Raises:
            UserRejected: the holder declined
        """
        ...


def verify_signature(public_key: Pubkey, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature over ``message``."""
    if len(signature) != SIGNATURE_LENGTH:
        return False
    try:
        Ed25519PublicKey.from_public_bytes(bytes(public_key)).verify(signature, message)
    except CryptoInvalidSignature:
        return False
    return True


class KeypairSigner:
    """
    Signer backed by an in-process keypair.

    For scripts, devnet runs and integration tests where no human is in the
    loop. The keypair is supplied by the caller; nothing is persisted.
    """

    def __init__(self, keypair: Keypair):
        self._keypair = keypair

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def request_signature(self, message: bytes) -> bytes:
        return bytes(self._keypair.sign_message(message))

    def __repr__(self) -> str:
        return f"KeypairSigner({self.public_key})"


class MockSigner:
    """
    Mock signer for testing.

    Can approve, reject, return a corrupt signature, or hold the request
    until ``release`` is set (to model a human who never answers).
    """

    def __init__(
        self,
        keypair: Optional[Keypair] = None,
        reject: bool = False,
        corrupt: bool = False,
        release: Optional[asyncio.Event] = None,
    ):
        self._keypair = keypair or Keypair()
        self.reject = reject
        self.corrupt = corrupt
        self.release = release
        self.requests: List[bytes] = []

    @property
    def public_key(self) -> Pubkey:
        return self._keypair.pubkey()

    async def request_signature(self, message: bytes) -> bytes:
        self.requests.append(message)
        if self.release is not None:
            await self.release.wait()
        if self.reject:
            logger.info("Signature request declined", owner=str(self.public_key))
            raise UserRejected("User declined the signature request")
        if self.corrupt:
            return bytes(SIGNATURE_LENGTH)
        return bytes(self._keypair.sign_message(message))
