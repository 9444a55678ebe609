"""Encoding and decoding utilities."""

from typing import Union

from shadowpool.utils.hash import DIGEST_SIZE


def bytes_to_hex(data: bytes) -> str:
    """
    Convert bytes to hexadecimal string.

    Args:
        data: Bytes to convert

    Returns:
        str: Hexadecimal string with '0x' prefix
    """
    return "0x" + data.hex()


def hex_to_bytes(hex_str: str) -> bytes:
    """
    Convert hexadecimal string to bytes.

    Args:
        hex_str: Hexadecimal string (with or without '0x' prefix)

    Returns:
        bytes: Decoded bytes

    Raises:
        ValueError: If hex string is invalid
    """
    if hex_str.startswith("0x"):
        hex_str = hex_str[2:]

    if len(hex_str) % 2 != 0:
        raise ValueError("Hex string must have even number of characters")

    return bytes.fromhex(hex_str)


def ensure_digest(data: Union[bytes, str], name: str = "digest") -> bytes:
    """
    Coerce a 32-byte digest given as bytes or hex string.

    Raises:
        ValueError: If the value is not exactly 32 bytes once decoded
    """
    if isinstance(data, str):
        data = hex_to_bytes(data)
    elif not isinstance(data, bytes):
        raise TypeError(f"Expected bytes or str for {name}, got {type(data)}")

    if len(data) != DIGEST_SIZE:
        raise ValueError(f"{name} must be {DIGEST_SIZE} bytes, got {len(data)}")
    return data


def short_hex(data: bytes, length: int = 8) -> str:
    """Abbreviated hex for log lines."""
    return data.hex()[:length]
