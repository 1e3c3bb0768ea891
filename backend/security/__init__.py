"""Credential encryption and deterministic identifiers"""

from .identifiers import (
    account_id,
    derive_id,
    merchant_id,
    normalize_merchant_name,
    owner_id_for_subject,
    transaction_id,
)
from .vault import CredentialVault, parse_data_key

__all__ = [
    "CredentialVault",
    "account_id",
    "derive_id",
    "merchant_id",
    "normalize_merchant_name",
    "owner_id_for_subject",
    "parse_data_key",
    "transaction_id",
]
