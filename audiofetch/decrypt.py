"""Transparent AES-128-CTR decryption of audio file streams."""

from __future__ import annotations

import io
from typing import BinaryIO

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

AUDIO_AES_IV = bytes(
    [
        0x72, 0xE0, 0x67, 0xFB, 0xDD, 0xCB, 0xCF, 0x77,
        0xEB, 0xE8, 0xBC, 0x64, 0x3F, 0x63, 0x0D, 0x93,
    ]
)

_BLOCK_SIZE = 16
_COUNTER_MODULUS = 1 << 128


class AudioDecrypt:
    """Wrap a readable, optionally seekable stream and decrypt what it yields."""

    def __init__(self, key: bytes, reader: BinaryIO) -> None:
        key = bytes(key)
        if len(key) != 16:
            raise ValueError(f"audio key must be 16 bytes, got {len(key)}")
        self._key = key
        self._reader = reader
        self._position = 0
        self._decryptor = self._decryptor_at(0)

    def _decryptor_at(self, position: int):
        block, skip = divmod(position, _BLOCK_SIZE)
        counter = (int.from_bytes(AUDIO_AES_IV, "big") + block) % _COUNTER_MODULUS
        decryptor = Cipher(
            algorithms.AES(self._key), modes.CTR(counter.to_bytes(_BLOCK_SIZE, "big"))
        ).decryptor()
        decryptor.update(bytes(skip))
        return decryptor

    def read(self, size: int = -1) -> bytes:
        data = self._reader.read(size)
        if not data:
            return b""
        self._position += len(data)
        return self._decryptor.update(data)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        position = self._reader.seek(offset, whence)
        self._position = position
        self._decryptor = self._decryptor_at(position)
        return position

    def tell(self) -> int:
        return self._position