"""
Compact JWE decryption for encrypted bearer tokens.

Supports the key-management algorithms identity providers use for
encrypted ID/access tokens (RSA-OAEP, RSA-OAEP-256) with AES-GCM content
encryption. The payload is expected to be a signed compact JWT.
"""

import json

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from jwt.utils import base64url_decode

from errors import Unauthorized

KEY_ALGORITHMS = {
    "RSA-OAEP": hashes.SHA1,
    "RSA-OAEP-256": hashes.SHA256,
}

CONTENT_KEY_LENGTHS = {
    "A128GCM": 16,
    "A192GCM": 24,
    "A256GCM": 32,
}


def decrypt_compact(token: str, private_key) -> str:
    """Decrypt a five-segment compact JWE and return the inner token.

    Args:
        token: ``header.encrypted_key.iv.ciphertext.tag``
        private_key: RSA private key object from ``cryptography``

    Raises:
        Unauthorized: kind ``undecryptable`` for any unsupported header or
            failed decryption
    """
    parts = token.split(".")
    if len(parts) != 5:
        raise Unauthorized("malformed", "Encrypted token must have five segments")
    protected, encrypted_key, iv, ciphertext, tag = parts

    try:
        header = json.loads(base64url_decode(protected))
        wrapped_key = base64url_decode(encrypted_key)
        iv_bytes = base64url_decode(iv)
        sealed = base64url_decode(ciphertext) + base64url_decode(tag)
    except (ValueError, TypeError):
        raise Unauthorized("malformed", "Encrypted token segments are not valid")

    if not isinstance(header, dict):
        raise Unauthorized("malformed", "Encrypted token header is not an object")

    alg = header.get("alg", "RSA-OAEP")
    enc = header.get("enc")
    if alg not in KEY_ALGORITHMS:
        raise Unauthorized("undecryptable", f"Unsupported key algorithm: {alg}")
    if enc not in CONTENT_KEY_LENGTHS:
        raise Unauthorized("undecryptable", f"Unsupported content encryption: {enc}")
    if header.get("zip"):
        raise Unauthorized("undecryptable", "Compressed tokens are not supported")

    digest = KEY_ALGORITHMS[alg]
    try:
        cek = private_key.decrypt(
            wrapped_key,
            padding.OAEP(mgf=padding.MGF1(algorithm=digest()), algorithm=digest(), label=None),
        )
    except ValueError:
        raise Unauthorized("undecryptable", "Unable to unwrap token key")

    if len(cek) != CONTENT_KEY_LENGTHS[enc]:
        raise Unauthorized("undecryptable", "Token content key has the wrong length")

    try:
        plaintext = AESGCM(cek).decrypt(iv_bytes, sealed, protected.encode("ascii"))
    except (InvalidTag, ValueError):
        raise Unauthorized("undecryptable", "Unable to decrypt token")

    return plaintext.decode("utf-8").strip()
