"""Drive and peer key encoding.

Keys are 32-byte public keys, written either as 52-character z-base-32
(the canonical form) or as 64-character hex.
"""

from __future__ import annotations

import base64
import binascii
import hashlib

from driveprof.utils.exceptions import KeyEncodingError

KEY_LENGTH = 32

_RFC4648 = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
_ZBASE32 = "ybndrfg8ejkmcpqxot1uwisza345h769"
_TO_Z32 = str.maketrans(_RFC4648, _ZBASE32)
_FROM_Z32 = str.maketrans(_ZBASE32, _RFC4648)

_DISCOVERY_NAMESPACE = b"hypercore"


def encode_key(key: bytes) -> str:
    """Encode a key as z-base-32."""
    return base64.b32encode(key).decode("ascii").rstrip("=").translate(_TO_Z32)


def decode_key(value: str | bytes) -> bytes:
    """Decode a key from z-base-32 or hex.

    Raises:
        KeyEncodingError: If the value is neither, or is not 32 bytes long

    """
    if isinstance(value, bytes):
        key = value
    else:
        text = value.strip()
        try:
            if len(text) == KEY_LENGTH * 2:
                key = bytes.fromhex(text)
            else:
                if any(ch not in _ZBASE32 for ch in text):
                    msg = "invalid z-base-32 character"
                    raise ValueError(msg)
                padded = text.translate(_FROM_Z32) + "=" * (-len(text) % 8)
                key = base64.b32decode(padded)
        except (ValueError, binascii.Error) as e:
            msg = f"Cannot decode key {value!r}"
            raise KeyEncodingError(msg, {"error": str(e)}) from e

    if len(key) != KEY_LENGTH:
        msg = f"Key must be {KEY_LENGTH} bytes"
        raise KeyEncodingError(msg, {"length": len(key)})
    return key


def normalize_key(value: str | bytes) -> str:
    """Return the canonical z-base-32 form of a key."""
    return encode_key(decode_key(value))


def discovery_key(key: bytes) -> bytes:
    """Topic under which peers of a drive find each other.

    Derived one-way from the public key so joining the swarm does not
    reveal the key itself.
    """
    return hashlib.blake2b(_DISCOVERY_NAMESPACE, digest_size=32, key=key).digest()
