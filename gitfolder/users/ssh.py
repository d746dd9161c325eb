"""SSH key pairs for git remotes: generation and encryption of the private key at rest."""

import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gitfolder.config import get_settings

log = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 100_000
_TAG_BYTES = 16


@dataclass
class SSHKeyPair:
    public_key: str
    private_key: str
    fingerprint: str


def generate_ssh_key_pair(comment: Optional[str] = None) -> SSHKeyPair:
    """Generate an RSA 2048 key pair in OpenSSH format."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    public = key.public_key()
    public_openssh = public.public_bytes(
        serialization.Encoding.OpenSSH, serialization.PublicFormat.OpenSSH
    ).decode("ascii")
    if comment:
        public_openssh = f"{public_openssh} {comment}"
    private_openssh = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.OpenSSH,
        serialization.NoEncryption(),
    ).decode("ascii")
    public_pem = public.public_bytes(
        serialization.Encoding.PEM, serialization.PublicFormat.SubjectPublicKeyInfo
    )
    digest = hashlib.md5(public_pem).hexdigest()
    fingerprint = ":".join(digest[i : i + 2] for i in range(0, len(digest), 2))
    return SSHKeyPair(public_key=public_openssh, private_key=private_openssh, fingerprint=fingerprint)


def _derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=32, salt=salt, iterations=_PBKDF2_ITERATIONS
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(text: str, passphrase: str) -> str:
    """AES-256-GCM encrypt text; returns a JSON string with hex fields."""
    salt = os.urandom(32)
    iv = os.urandom(16)
    sealed = AESGCM(_derive_key(passphrase, salt)).encrypt(iv, text.encode("utf-8"), None)
    return json.dumps({
        "encrypted": sealed[:-_TAG_BYTES].hex(),
        "salt": salt.hex(),
        "iv": iv.hex(),
        "authTag": sealed[-_TAG_BYTES:].hex(),
    })


def decrypt(payload: str, passphrase: str) -> str:
    """Reverse of encrypt(). Raises ValueError on malformed or tampered data."""
    try:
        data = json.loads(payload)
        salt = bytes.fromhex(data["salt"])
        iv = bytes.fromhex(data["iv"])
        sealed = bytes.fromhex(data["encrypted"]) + bytes.fromhex(data["authTag"])
        plain = AESGCM(_derive_key(passphrase, salt)).decrypt(iv, sealed, None)
    except (KeyError, TypeError, json.JSONDecodeError, InvalidTag) as e:
        raise ValueError("Could not decrypt SSH key") from e
    return plain.decode("utf-8")


def user_key_passphrase(user_id: int, oauth_id: str) -> str:
    """Per-user encryption passphrase derived from the server secret."""
    return f"{get_settings().secret_key}-{user_id}-{oauth_id}"


def is_valid_public_key(value: str) -> bool:
    return value.startswith("ssh-rsa ") or value.startswith("ssh-ed25519 ")


def is_valid_private_key(value: str) -> bool:
    return "BEGIN" in value and "PRIVATE KEY" in value
