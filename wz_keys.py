"""
WZ archive decoder - keystream and version check

The string cipher XORs every character with a per-archive keystream. The
keystream is AES-256-ECB output chained from a 4-byte IV: block 0 encrypts
the IV repeated to 16 bytes, every later block encrypts the previous one.
An all-zero IV means the archive carries no string encryption.

Copyright (c) 2025 @hejhdiss(Muhammed Shafin P)
All rights reserved.
Licensed under GPLv3.
"""
from typing import Tuple, Union

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# === Key material ===
AES_USER_KEY = bytes([
    0x13, 0x00, 0x00, 0x00, 0x08, 0x00, 0x00, 0x00,
    0x06, 0x00, 0x00, 0x00, 0xB4, 0x00, 0x00, 0x00,
    0x1B, 0x00, 0x00, 0x00, 0x0F, 0x00, 0x00, 0x00,
    0x33, 0x00, 0x00, 0x00, 0x52, 0x00, 0x00, 0x00,
])

IV_GMS = bytes([0x4D, 0x23, 0xC7, 0x2B])
IV_EMS = bytes([0xB9, 0x7D, 0x63, 0xE9])  # also MSEA
IV_BMS = bytes(4)

KNOWN_IVS = {
    "gms": IV_GMS,
    "ems": IV_EMS,
    "msea": IV_EMS,
    "bms": IV_BMS,
}

KEY_CHUNK = 4096  # keystream grows in steps of this many bytes
AES_BLOCK = 16


def _grow_size(needed: int) -> int:
    return ((needed + KEY_CHUNK - 1) // KEY_CHUNK) * KEY_CHUNK


class KeyStream:
    """Byte-indexable keystream, extended on demand.

    ks[i] and ks[a:b] work for any non-negative offsets; bytes past the
    generated region are produced first.
    """

    def __init__(self, iv: bytes, aes_key: bytes = AES_USER_KEY):
        if len(iv) != 4:
            raise ValueError(f"IV must be 4 bytes, got {len(iv)}.")
        self.iv = bytes(iv)
        self._aes_key = bytes(aes_key)
        self._zero = not any(self.iv)
        self._keys = bytearray()

    @property
    def is_zero(self) -> bool:
        return self._zero

    def __len__(self):
        return len(self._keys)

    def ensure(self, size: int):
        """Make sure at least `size` keystream bytes are available."""
        if size <= len(self._keys):
            return
        target = _grow_size(size)
        if self._zero:
            self._keys.extend(bytes(target - len(self._keys)))
            return

        encryptor = Cipher(algorithms.AES(self._aes_key), modes.ECB()).encryptor()
        start = len(self._keys)
        if start == 0:
            block = bytes(self.iv[j % 4] for j in range(AES_BLOCK))
        else:
            block = bytes(self._keys[start - AES_BLOCK:start])
        out = bytearray()
        while start + len(out) < target:
            block = encryptor.update(block)
            out.extend(block)
        self._keys.extend(out)

    def __getitem__(self, index: Union[int, slice]):
        if isinstance(index, slice):
            start, stop, step = index.start or 0, index.stop, index.step
            if stop is None or start < 0 or stop < 0:
                raise IndexError("Keystream slices need explicit non-negative bounds.")
            self.ensure(stop)
            return bytes(self._keys[start:stop:step])
        if index < 0:
            raise IndexError("Keystream offsets are non-negative.")
        self.ensure(index + 1)
        return self._keys[index]

    def u16(self, offset: int) -> int:
        """Little-endian 16-bit value from bytes `offset` and `offset + 1`."""
        self.ensure(offset + 2)
        return self._keys[offset] | (self._keys[offset + 1] << 8)


# === Version check ===

def _to_i32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def get_version_hash(real_version: int) -> int:
    """Rolling hash over the decimal digits of the version (wrapping i32)."""
    version_hash = 0
    for ch in str(real_version):
        version_hash = _to_i32(32 * version_hash + ord(ch) + 1)
    return version_hash & 0xFFFFFFFF


def version_check_byte(version_hash: int) -> int:
    h = version_hash & 0xFFFFFFFF
    return 0xFF ^ ((h >> 24) & 0xFF) ^ ((h >> 16) & 0xFF) ^ ((h >> 8) & 0xFF) ^ (h & 0xFF)


def verify_version(encrypted_version: int, real_version: int) -> Tuple[bool, int]:
    """Checks an archive's encrypted version tag against a candidate version.

    Returns (True, version_hash) on a match, (False, 0) otherwise. The hash
    seeds the directory offset decryption.
    """
    version_hash = get_version_hash(real_version)
    if encrypted_version == version_check_byte(version_hash):
        return True, version_hash
    return False, 0
