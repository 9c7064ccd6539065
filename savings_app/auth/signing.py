"""
Account keys and structured-data signing.

Accounts are Ed25519 key pairs. An account's address is the last 20 bytes of
the SHA-256 of its raw public key, so a signature together with the public key
it claims recovers exactly one address. Structured messages are hashed as
``sha256(0x1901 || domain_separator || struct_hash)``, where every field is
encoded to 32 bytes according to its declared type.
"""

import hashlib
from dataclasses import dataclass
from typing import Any, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

FieldSpec = tuple[str, str]  # (name, type)

DOMAIN_FIELDS: tuple[FieldSpec, ...] = (
    ("name", "string"),
    ("version", "string"),
    ("chainId", "uint256"),
    ("verifyingContract", "address"),
)

_UINT256_MAX = 2 ** 256 - 1


def address_from_public_key(public_key: bytes) -> str:
    """Derive the 0x-prefixed account address from a raw public key."""
    return "0x" + hashlib.sha256(public_key).digest()[-20:].hex()


def normalize_address(address: str) -> str:
    """Lower-case a 0x address after checking its shape."""
    if not isinstance(address, str) or not address.startswith("0x") or len(address) != 42:
        raise ValueError(f"Invalid address: {address!r}")
    bytes.fromhex(address[2:])
    return address.lower()


class AccountKey:
    """An Ed25519 signing key with its derived account address."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        self.public_key_bytes = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.address = address_from_public_key(self.public_key_bytes)

    @classmethod
    def generate(cls) -> "AccountKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_private_hex(cls, private_hex: str) -> "AccountKey":
        cleaned = private_hex[2:] if private_hex.startswith("0x") else private_hex
        return cls(Ed25519PrivateKey.from_private_bytes(bytes.fromhex(cleaned)))

    @property
    def public_key_hex(self) -> str:
        return "0x" + self.public_key_bytes.hex()

    def private_hex(self) -> str:
        raw = self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )
        return "0x" + raw.hex()

    def sign(self, digest: bytes) -> str:
        """Sign a 32-byte digest; returns the 0x-prefixed signature."""
        return "0x" + self._private_key.sign(digest).hex()


def recover_signer(digest: bytes, signature: str, public_key: str) -> Optional[str]:
    """
    Recover the signing address of ``digest``.

    Args:
        digest: Message digest that was signed
        signature: 0x-prefixed Ed25519 signature
        public_key: 0x-prefixed raw public key carried with the signature

    Returns:
        The signer's address, or None when the signature does not verify
    """
    try:
        key_bytes = bytes.fromhex(public_key[2:] if public_key.startswith("0x") else public_key)
        sig_bytes = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        Ed25519PublicKey.from_public_bytes(key_bytes).verify(sig_bytes, digest)
    except (InvalidSignature, ValueError, AttributeError):
        return None
    return address_from_public_key(key_bytes)


def type_hash(type_name: str, fields: tuple[FieldSpec, ...]) -> bytes:
    signature = f"{type_name}({','.join(f'{ftype} {fname}' for fname, ftype in fields)})"
    return hashlib.sha256(signature.encode()).digest()


def encode_value(field_type: str, value: Any) -> bytes:
    """Encode a single field to 32 bytes."""
    if field_type == "uint256":
        if not isinstance(value, int) or isinstance(value, bool) or not 0 <= value <= _UINT256_MAX:
            raise ValueError(f"Invalid uint256: {value!r}")
        return value.to_bytes(32, "big")
    if field_type == "address":
        return bytes.fromhex(normalize_address(value)[2:]).rjust(32, b"\x00")
    if field_type == "string":
        return hashlib.sha256(str(value).encode()).digest()
    if field_type == "bytes32":
        raw = bytes.fromhex(value[2:]) if isinstance(value, str) else bytes(value)
        if len(raw) != 32:
            raise ValueError("bytes32 value must be 32 bytes")
        return raw
    raise ValueError(f"Unsupported field type: {field_type}")


def hash_struct(type_name: str, fields: tuple[FieldSpec, ...], message: dict[str, Any]) -> bytes:
    encoded = b"".join(encode_value(ftype, message[fname]) for fname, ftype in fields)
    return hashlib.sha256(type_hash(type_name, fields) + encoded).digest()


@dataclass(frozen=True)
class TypedDataDomain:
    """Domain that binds a signature to one verifying contract on one chain."""
    name: str
    version: str
    chain_id: int
    verifying_contract: str

    def separator(self) -> bytes:
        return hash_struct("EIP712Domain", DOMAIN_FIELDS, {
            "name": self.name,
            "version": self.version,
            "chainId": self.chain_id,
            "verifyingContract": self.verifying_contract,
        })


def typed_data_digest(
    domain: TypedDataDomain,
    type_name: str,
    fields: tuple[FieldSpec, ...],
    message: dict[str, Any]
) -> bytes:
    """Digest of a structured message under a domain."""
    return hashlib.sha256(
        b"\x19\x01" + domain.separator() + hash_struct(type_name, fields, message)
    ).digest()
