"""ERP credential encryption using AES-GCM.

ERP connection secrets (ECount company code, user id, API certificate key)
are stored encrypted at rest. AES-256-GCM gives authenticated encryption;
the tenant id is bound as associated data so a ciphertext copied to another
tenant's row fails to decrypt.
"""

import base64
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


def generate_encryption_key() -> str:
    """Generate a new 256-bit encryption key.

    Returns:
        Base64-encoded 32-byte key suitable for AES-256
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("utf-8")


def derive_key_from_password(password: str, salt: bytes) -> bytes:
    """Derive an encryption key from a passphrase using PBKDF2.

    Args:
        password: Operator-provided passphrase
        salt: Random salt (stored next to the encrypted data)

    Returns:
        32-byte derived key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=600000,
    )
    return kdf.derive(password.encode("utf-8"))


@dataclass
class EncryptedCredentials:
    """Encrypted credential blob with the metadata needed to decrypt it."""
    ciphertext: str  # base64, GCM tag appended
    nonce: str       # base64, 96-bit
    created_at: str
    tenant_id: str
    key_version: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ciphertext": self.ciphertext,
            "nonce": self.nonce,
            "created_at": self.created_at,
            "tenant_id": self.tenant_id,
            "key_version": self.key_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedCredentials":
        return cls(
            ciphertext=data["ciphertext"],
            nonce=data["nonce"],
            created_at=data["created_at"],
            tenant_id=data["tenant_id"],
            key_version=data.get("key_version", 1),
        )


class CredentialEncryption:
    """AES-256-GCM encryption for ERP connection credentials.

    Usage:
        enc = CredentialEncryption(os.environ["ERP_CREDENTIAL_KEY"])
        blob = enc.encrypt({"company_code": "123456", "api_cert_key": "..."}, tenant_id="t-1")
        creds = enc.decrypt(blob)
    """

    def __init__(self, encryption_key: str):
        """Initialize with base64-encoded encryption key.

        Args:
            encryption_key: Base64-encoded 32-byte key (from generate_encryption_key())

        Raises:
            ValueError: If the key is not valid base64 or not 32 bytes
        """
        try:
            key = base64.b64decode(encryption_key, validate=True)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid encryption key: {e}") from e
        if len(key) != 32:
            raise ValueError("Invalid encryption key: key must be 32 bytes (256 bits)")

        self._aesgcm = AESGCM(key)

    def encrypt(
        self,
        credentials: Dict[str, Any],
        tenant_id: str,
        key_version: int = 1,
    ) -> EncryptedCredentials:
        """Encrypt a credentials mapping for one tenant."""
        plaintext = json.dumps(credentials).encode("utf-8")
        nonce = os.urandom(12)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext, tenant_id.encode("utf-8"))

        return EncryptedCredentials(
            ciphertext=base64.b64encode(ciphertext).decode("utf-8"),
            nonce=base64.b64encode(nonce).decode("utf-8"),
            created_at=datetime.utcnow().isoformat(),
            tenant_id=tenant_id,
            key_version=key_version,
        )

    def decrypt(self, encrypted: EncryptedCredentials) -> Dict[str, Any]:
        """Decrypt a credentials blob.

        Raises:
            ValueError: If decryption fails (wrong key, tampered data, wrong tenant)
        """
        try:
            plaintext = self._aesgcm.decrypt(
                base64.b64decode(encrypted.nonce),
                base64.b64decode(encrypted.ciphertext),
                encrypted.tenant_id.encode("utf-8"),
            )
        except InvalidTag as e:
            raise ValueError("Credential decryption failed: authentication tag mismatch") from e

        return json.loads(plaintext.decode("utf-8"))

    def rotate_key(
        self,
        encrypted: EncryptedCredentials,
        new_encryption: "CredentialEncryption",
        new_key_version: int,
    ) -> EncryptedCredentials:
        """Re-encrypt a blob under a new key during key rotation."""
        return new_encryption.encrypt(
            self.decrypt(encrypted),
            tenant_id=encrypted.tenant_id,
            key_version=new_key_version,
        )
