"""Security module - encryption of ERP credentials at rest."""

from core.security.encryption import (
    CredentialEncryption,
    EncryptedCredentials,
    derive_key_from_password,
    generate_encryption_key,
)

__all__ = [
    "CredentialEncryption",
    "EncryptedCredentials",
    "derive_key_from_password",
    "generate_encryption_key",
]
