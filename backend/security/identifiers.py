"""
Deterministic row identifiers.

Accounts, merchants and transactions are keyed by ids computed from stable
external keys, so replaying the same upstream entity always lands on the
same row.
"""

import hashlib
import re
import uuid


def derive_id(seed: str) -> uuid.UUID:
    """Map a seed string to a version-4 shaped UUID.

    sha256 of the seed, first 16 bytes, with the version nibble set to 4
    and the RFC 4122 variant bits set.
    """
    digest = bytearray(hashlib.sha256(seed.encode("utf-8")).digest()[:16])
    digest[6] = (digest[6] & 0x0F) | 0x40
    digest[8] = (digest[8] & 0x3F) | 0x80
    return uuid.UUID(bytes=bytes(digest))


def normalize_merchant_name(name: str) -> str:
    return re.sub(r"\s+", " ", name).strip()


def account_id(item_id: str, external_account_id: str) -> uuid.UUID:
    return derive_id(f"acct:{item_id}:{external_account_id}")


def transaction_id(item_id: str, external_transaction_id: str) -> uuid.UUID:
    return derive_id(f"tx:{item_id}:{external_transaction_id}")


def merchant_id(name: str) -> uuid.UUID:
    return derive_id(f"merchant:{normalize_merchant_name(name)}")


def owner_id_for_subject(subject: str) -> uuid.UUID:
    """Tenant id for an identity-provider subject.

    UUID subjects are used as-is; anything else is derived.
    """
    try:
        return uuid.UUID(subject)
    except ValueError:
        return derive_id(f"user:{subject}")
