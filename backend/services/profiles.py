"""Tenant profile derived from verified token claims."""

import uuid
from dataclasses import dataclass
from typing import Optional

from auth.verifier import VerifiedClaims

FALLBACK_EMAIL_DOMAIN = "users.ledger.local"


@dataclass
class UserProfile:
    owner_id: uuid.UUID
    email: str
    full_name: Optional[str] = None

    @classmethod
    def from_claims(cls, claims: VerifiedClaims) -> "UserProfile":
        email = claims.email or f"{claims.subject}@{FALLBACK_EMAIL_DOMAIN}"
        return cls(owner_id=claims.owner_id, email=email, full_name=claims.name or email)
