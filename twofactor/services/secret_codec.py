"""Shared-secret generation, Base32 text form and otpauth:// provisioning URIs."""

import base64
import binascii
import secrets
from urllib.parse import quote

SECRET_BYTES = 20  # 160-bit secret, what authenticator apps expect for SHA-1

# Characters encodeURIComponent leaves alone besides the ones quote() already keeps.
_LABEL_SAFE = "!*'()"


class InvalidLabel(ValueError):
    pass


def generate_secret(length_bytes: int = SECRET_BYTES) -> bytes:
    return secrets.token_bytes(length_bytes)


def encode_base32(raw: bytes) -> str:
    """RFC 4648 Base32, uppercase, padding stripped."""
    return base64.b32encode(raw).decode("ascii").rstrip("=")


def decode_base32(text: str) -> bytes:
    """Inverse of :func:`encode_base32`.

    Accepts lower case, embedded spaces and missing padding, as typed in by
    users copying a secret by hand. Raises ``ValueError`` on anything else.
    """
    cleaned = text.replace(" ", "").upper()
    if not cleaned:
        raise ValueError("Empty Base32 secret")
    padded = cleaned + "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(padded, casefold=False)
    except binascii.Error as e:
        raise ValueError(f"Malformed Base32 secret: {e}") from e


def new_base32_secret(length_bytes: int = SECRET_BYTES) -> str:
    return encode_base32(generate_secret(length_bytes))


def build_provisioning_uri(issuer_label: str, account_label: str, base32_secret: str) -> str:
    """Build ``otpauth://totp/<issuer> (<account>)?secret=<BASE32>``.

    The whole label is percent-encoded the way JavaScript's
    ``encodeURIComponent`` does it, so browser clients build the same URI.
    """
    if account_label is None or not account_label.strip():
        raise InvalidLabel("Account label must not be empty")
    label = f"{issuer_label} ({account_label})" if issuer_label else account_label
    return f"otpauth://totp/{quote(label, safe=_LABEL_SAFE)}?secret={base32_secret}"
