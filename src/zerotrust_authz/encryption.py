"""Encryption collaborator contract.

The engine never encrypts anything itself; components that persist consent
or audit data hand payloads to an implementation of this protocol.
"""

from typing import Protocol, runtime_checkable


@runtime_checkable
class EncryptionService(Protocol):
    async def encrypt(self, plaintext: bytes, key_id: str | None = None) -> bytes: ...

    async def decrypt(self, ciphertext: bytes, key_id: str | None = None) -> bytes: ...
