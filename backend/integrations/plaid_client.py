"""
Plaid API Client

Stateless transport for the aggregator endpoints this backend uses:
transaction pages, public-token exchange and link-token creation.
No retries and no pagination state: the caller owns the loop and decides
whether a timeout is worth retrying.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

import requests

from config import PlaidConfig
from errors import AggregatorTimeoutError, ConfigurationError, UpstreamError
from logging_config import get_logger

logger = get_logger(__name__)

PLAID_API_VERSION = "2020-09-14"


@dataclass
class TransactionsPage:
    """One page of /transactions/get."""

    records: List[Dict[str, Any]]
    accounts: List[Dict[str, Any]]
    total_count: int
    request_id: Optional[str] = None


@dataclass
class ExchangeResult:
    access_token: str
    item_id: str
    request_id: Optional[str] = None


@dataclass
class LinkToken:
    link_token: str
    expiration: Optional[str] = None
    request_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


class PlaidClient:
    """Client for the Plaid REST API."""

    def __init__(self, config: PlaidConfig, session: Optional[requests.Session] = None):
        """
        Initialize Plaid API client.

        Args:
            config: Aggregator configuration (credentials, base URL, timeout)
            session: Optional requests session to reuse connections
        """
        self.config = config
        self.base_url = config.base_url
        self.timeout = config.timeout_seconds
        self.http = session or requests.Session()

    def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a JSON body with client credentials.

        Returns:
            Decoded JSON response

        Raises:
            ConfigurationError: if client credentials are missing
            AggregatorTimeoutError: if the call exceeds the configured timeout
            UpstreamError: for non-2xx responses or unreachable hosts
        """
        if not self.config.has_credentials:
            raise ConfigurationError("Plaid credentials are not configured")

        url = f"{self.base_url}{path}"
        payload = {
            "client_id": self.config.client_id,
            "secret": self.config.secret,
            **body,
        }
        headers = {
            "Content-Type": "application/json",
            "Plaid-Version": PLAID_API_VERSION,
        }

        try:
            response = self.http.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.Timeout:
            logger.warning(f"Plaid request timed out: POST {path} after {self.timeout}s")
            raise AggregatorTimeoutError(f"Plaid request timed out: {path}")
        except requests.RequestException as e:
            logger.error(f"Plaid request failed: POST {path}: {e}")
            raise UpstreamError(f"Plaid request failed: {path}", payload={"message": str(e)})

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text}

        if not response.ok:
            logger.warning(
                f"Plaid returned {response.status_code} for {path}: "
                f"{data.get('error_code') if isinstance(data, dict) else None}"
            )
            raise UpstreamError(
                f"Plaid request failed with status {response.status_code}",
                upstream_status=response.status_code,
                payload=data,
            )

        if not isinstance(data, dict):
            raise UpstreamError(
                f"Plaid returned a non-object body for {path}",
                upstream_status=response.status_code,
                payload=data,
            )
        return data

    # ========================================================================
    # TRANSACTIONS
    # ========================================================================

    def fetch_page(
        self,
        access_token: str,
        start: date,
        end: date,
        offset: int = 0,
        count: Optional[int] = None,
    ) -> TransactionsPage:
        """
        Fetch one page of transactions for an item.

        Args:
            access_token: Decrypted item access token
            start: First day of the window (inclusive)
            end: Last day of the window (inclusive)
            offset: Number of records already consumed
            count: Page size (defaults to the configured page size)

        Returns:
            TransactionsPage with records, the item's accounts and the total
        """
        data = self._post(
            "/transactions/get",
            {
                "access_token": access_token,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "options": {
                    "include_personal_finance_category": True,
                    "count": count or self.config.page_size,
                    "offset": offset,
                },
            },
        )
        total = data.get("total_transactions")
        return TransactionsPage(
            records=data.get("transactions") or [],
            accounts=data.get("accounts") or [],
            total_count=int(total) if isinstance(total, (int, float)) else 0,
            request_id=data.get("request_id"),
        )

    # ========================================================================
    # LINKING
    # ========================================================================

    def exchange_public_token(self, public_token: str) -> ExchangeResult:
        """Swap a Link public token for a long-lived access token."""
        data = self._post("/item/public_token/exchange", {"public_token": public_token})
        access_token = data.get("access_token")
        item_id = data.get("item_id")
        if not access_token or not item_id:
            raise UpstreamError(
                "Plaid exchange response missing access_token or item_id",
                upstream_status=502,
                payload={"request_id": data.get("request_id")},
            )
        return ExchangeResult(
            access_token=access_token,
            item_id=item_id,
            request_id=data.get("request_id"),
        )

    def create_link_token(self, client_user_id: str, client_name: str = "Ledger") -> LinkToken:
        """Create a Link token for the front end to open Plaid Link."""
        body: Dict[str, Any] = {
            "client_name": client_name,
            "language": "en",
            "country_codes": self.config.country_codes,
            "products": self.config.products,
            "user": {"client_user_id": client_user_id},
        }
        if self.config.redirect_uri:
            body["redirect_uri"] = self.config.redirect_uri
        if self.config.webhook_url:
            body["webhook"] = self.config.webhook_url

        data = self._post("/link/token/create", body)
        if not data.get("link_token"):
            raise UpstreamError(
                "Plaid link token response missing link_token",
                upstream_status=502,
                payload={"request_id": data.get("request_id")},
            )
        return LinkToken(
            link_token=data["link_token"],
            expiration=data.get("expiration"),
            request_id=data.get("request_id"),
            raw=data,
        )
