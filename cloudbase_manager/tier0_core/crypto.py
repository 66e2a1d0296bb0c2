"""
cloudbase_manager.tier0_core.crypto
────────────────────────────────────
Public-key encryption for secrets sent to the platform (third-party login
app secrets). Wraps the cryptography library so service code never touches
padding or key loading directly.

Minimal stack: cryptography
"""
from __future__ import annotations

import base64
from functools import lru_cache

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey

PLATFORM_PUBLIC_KEY_PEM = b"""-----BEGIN PUBLIC KEY-----
MIGfMA0GCSqGSIb3DQEBAQUAA4GNADCBiQKBgQC0ZLB0ZpWWFsHPnDDw++Nc2wI3
nl2uyOrIJ5FUfxt4GAmt1Faf5pgMxAnL9exEUrrUDUX8Ri1R0KyfnHQQwCvKt8T8
bgILIJe9UB8e9dvFqgqH2oA8Vqwi0YqDcvFLFJk2BJbm/0QYtZ563FumW8LEXAgu
UeHi/0OZN9vQ33jWMQIDAQAB
-----END PUBLIC KEY-----
"""


@lru_cache(maxsize=4)
def _load_public_key(pem: bytes) -> RSAPublicKey:
    key = serialization.load_pem_public_key(pem)
    if not isinstance(key, RSAPublicKey):
        raise TypeError("expected an RSA public key")
    return key


def rsa_encrypt(plaintext: str, pem: bytes = PLATFORM_PUBLIC_KEY_PEM) -> str:
    """
    Encrypt with RSA PKCS#1 v1.5 padding and return base64 text.
    Output differs on every call (random padding).
    """
    key = _load_public_key(pem)
    ciphertext = key.encrypt(plaintext.encode("utf-8"), padding.PKCS1v15())
    return base64.b64encode(ciphertext).decode("ascii")


__all__ = ["rsa_encrypt", "PLATFORM_PUBLIC_KEY_PEM"]
