"""
Transaction Sync Service - Business Logic

Drives one sync invocation for a tenant: computes the window, loads and
decrypts the tenant's linked credentials, pages through the aggregator,
and writes accounts, merchants and transactions through the storage
upserter. Credentials are processed one after another on a single session.

Record-level problems (malformed records, constraint violations) are
skipped and only show up as ``upserted < fetched``. Vault, auth,
configuration and aggregator failures abort the whole invocation, and the
tenant session rolls back.
"""

import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import SyncConfig
from database import CredentialRepository, SchemaDescriptor, StorageUpserter, TransactionRow, tenant_session
from errors import RowUpsertError, ValidationError
from integrations.plaid_client import PlaidClient
from logging_config import get_logger
from security.identifiers import account_id as derive_account_id
from security.identifiers import transaction_id as derive_transaction_id
from security.vault import CredentialVault
from services.demo_data import build_demo_dataset
from services.profiles import UserProfile

logger = get_logger(__name__)

MODE_LIVE = "LIVE"
MODE_DEMO = "DEMO"
PLACEHOLDER_ACCOUNT_NAME = "Plaid Account"
PLACEHOLDER_INSTITUTION = "Plaid"
CENTS = Decimal("0.01")
# Numeric(12, 2) column bound
MAX_AMOUNT = Decimal("1e10")

_START_MONTH = re.compile(r"^(\d{4})-(\d{2})$")


def coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return False


@dataclass
class SyncOptions:
    demo_seed: bool = False
    force_full_sync: bool = False
    start_month: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "SyncOptions":
        payload = payload if isinstance(payload, dict) else {}
        start_month = payload.get("startMonth")
        if start_month is not None and not isinstance(start_month, str):
            raise ValidationError("startMonth must be a string in YYYY-MM format", code="INVALID_SYNC_REQUEST")
        return cls(
            demo_seed=coerce_bool(payload.get("demoSeed")),
            force_full_sync=coerce_bool(payload.get("forceFullSync")),
            start_month=start_month or None,
        )


@dataclass
class SyncWindow:
    start: datetime
    end: datetime

    @property
    def from_date(self) -> date:
        return self.start.date()

    @property
    def to_date(self) -> date:
        return self.end.date()


@dataclass
class SyncResult:
    window: SyncWindow
    items: int = 0
    fetched: int = 0
    upserted: int = 0
    mode: str = MODE_LIVE
    status: str = "ACCEPTED"

    def to_dict(self, trace_id: Optional[str] = None) -> Dict[str, Any]:
        body = {
            "status": self.status,
            "from": self.window.from_date.isoformat(),
            "to": self.window.to_date.isoformat(),
            "items": self.items,
            "fetched": self.fetched,
            "upserted": self.upserted,
            "traceId": trace_id,
        }
        if self.mode == MODE_DEMO:
            body["mode"] = MODE_DEMO
        return body


def compute_window(options: SyncOptions, now: datetime, config: SyncConfig) -> SyncWindow:
    """Window precedence: startMonth, then full lookback, then default lookback.

    Raises:
        ValidationError: if startMonth is not a valid past or current month
    """
    if options.start_month:
        match = _START_MONTH.match(options.start_month)
        if not match or not 1 <= int(match.group(2)) <= 12:
            raise ValidationError("startMonth must be in YYYY-MM format", code="INVALID_SYNC_REQUEST")
        start = datetime(int(match.group(1)), int(match.group(2)), 1, tzinfo=timezone.utc)
        if start > now:
            raise ValidationError("startMonth cannot be in the future", code="INVALID_SYNC_REQUEST")
        return SyncWindow(start=start, end=now)

    days = config.full_lookback_days if options.force_full_sync else config.default_lookback_days
    return SyncWindow(start=now - timedelta(days=days), end=now)


def to_local_sign(provider_amount: Decimal) -> Decimal:
    """Aggregator amounts are positive for money leaving the account.

    Locally expenses are negative and income positive, so every amount is
    negated, whatever the record's category says.
    """
    return Decimal("0") - provider_amount


def _parse_date(value) -> date:
    if not isinstance(value, str):
        raise ValueError(f"date must be a string, got {type(value).__name__}")
    return date.fromisoformat(value[:10])


def _midnight_utc(day: date) -> datetime:
    return datetime.combine(day, time(0, 0), tzinfo=timezone.utc)


def _text(value) -> Optional[str]:
    """Stripped string, or None for blanks and non-string values."""
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def account_display(account: Dict[str, Any]) -> Tuple[str, str]:
    """(name, institution) for an aggregator account."""
    name = _text(account.get("official_name")) or _text(account.get("name")) or PLACEHOLDER_ACCOUNT_NAME
    subtype = _text(account.get("subtype"))
    kind = _text(account.get("type"))
    if subtype:
        institution = f"Plaid {subtype}"
    elif kind:
        institution = f"Plaid {kind}"
    else:
        institution = PLACEHOLDER_INSTITUTION
    return name, institution


def _parse_amount(raw_amount, external_id: str) -> Decimal:
    try:
        if isinstance(raw_amount, bool) or not isinstance(raw_amount, (int, float, str, Decimal)):
            raise InvalidOperation
        amount = Decimal(str(raw_amount).strip())
        if not amount.is_finite() or abs(amount) >= MAX_AMOUNT:
            raise InvalidOperation
        return to_local_sign(amount).quantize(CENTS)
    except InvalidOperation:
        raise RowUpsertError(f"Unparseable amount: {raw_amount!r}", entity="Transaction", key=external_id)


def map_transaction(record: Dict[str, Any], item_id: str) -> Tuple[str, TransactionRow]:
    """Map an aggregator record to (external account id, TransactionRow).

    Raises:
        RowUpsertError: if the record is not an object, has no id or
            account, or its date or amount cannot be parsed
    """
    if not isinstance(record, dict):
        raise RowUpsertError(
            f"Transaction record is not an object: {type(record).__name__}", entity="Transaction"
        )
    external_id = _text(record.get("transaction_id"))
    if not external_id:
        raise RowUpsertError("Transaction record has no transaction_id", entity="Transaction")
    external_account = _text(record.get("account_id"))
    if not external_account:
        raise RowUpsertError("Transaction record has no account_id", entity="Transaction", key=external_id)

    amount = _parse_amount(record.get("amount"), external_id)

    try:
        occurred_at = _midnight_utc(_parse_date(record.get("date")))
    except ValueError:
        raise RowUpsertError(f"Unparseable date: {record.get('date')!r}", entity="Transaction", key=external_id)

    authorized_at = None
    if record.get("authorized_date"):
        try:
            authorized_at = _midnight_utc(_parse_date(record["authorized_date"]))
        except ValueError:
            authorized_at = None

    pfc = record.get("personal_finance_category")
    if not isinstance(pfc, dict):
        pfc = {}
    categories = record.get("category")
    first_category = categories[0] if isinstance(categories, list) and categories else None

    merchant_name = (
        _text(record.get("merchant_name"))
        or _text(pfc.get("primary"))
        or _text(record.get("name"))
        or "Unknown Merchant"
    )
    category = _text(first_category) or _text(pfc.get("detailed")) or "Uncategorized"
    description = _text(record.get("name")) or _text(record.get("merchant_name")) or "Plaid transaction"
    currency = (
        _text(record.get("iso_currency_code")) or _text(record.get("unofficial_currency_code")) or "USD"
    ).upper()

    row = TransactionRow(
        id=derive_transaction_id(item_id, external_id),
        account_id=derive_account_id(item_id, external_account),
        merchant_name=merchant_name,
        amount=amount,
        currency=currency[:3],
        occurred_at=occurred_at,
        authorized_at=authorized_at,
        pending=coerce_bool(record.get("pending")),
        category=category,
        description=description,
    )
    return external_account, row


class SyncOrchestrator:
    """Runs sync invocations. One instance is shared by all requests."""

    def __init__(
        self,
        session_factory,
        vault: CredentialVault,
        client: PlaidClient,
        schema: Optional[SchemaDescriptor] = None,
        config: Optional[SyncConfig] = None,
        statement_timeout_ms: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.session_factory = session_factory
        self.vault = vault
        self.client = client
        self.schema = schema or SchemaDescriptor()
        self.config = config or SyncConfig()
        self.statement_timeout_ms = statement_timeout_ms
        self.clock = clock

    def synchronize(
        self,
        owner_id: uuid.UUID,
        options: Optional[SyncOptions] = None,
        profile: Optional[UserProfile] = None,
        trace_id: Optional[str] = None,
    ) -> SyncResult:
        """
        Sync (or demo-seed) one tenant's ledger.

        Args:
            owner_id: Tenant to sync
            options: Window and mode flags
            profile: Upserted as the tenant's user row when given
            trace_id: Request trace id for logs

        Returns:
            SyncResult with window and counters
        """
        options = options or SyncOptions()
        window = compute_window(options, self.clock(), self.config)
        log_context = {"trace_id": trace_id, "owner_id": str(owner_id)}

        with tenant_session(self.session_factory, owner_id, self.statement_timeout_ms) as session:
            upserter = StorageUpserter(session, self.schema)
            if profile is not None:
                upserter.ensure_user(owner_id, profile.email, profile.full_name)

            if options.demo_seed:
                result = self._seed_demo(upserter, owner_id, window)
            else:
                result = self._sync_live(session, upserter, owner_id, window, log_context)

        logger.info(
            f"Sync {result.mode.lower()} complete: items={result.items} "
            f"fetched={result.fetched} upserted={result.upserted} "
            f"window={window.from_date}..{window.to_date}",
            extra=log_context,
        )
        return result

    # ========================================================================
    # DEMO
    # ========================================================================

    def _seed_demo(self, upserter: StorageUpserter, owner_id: uuid.UUID, window: SyncWindow) -> SyncResult:
        upserter.delete_owner_ledger(owner_id)
        dataset = build_demo_dataset(owner_id, window.end)

        for account in dataset.accounts:
            upserter.upsert_account(owner_id, account.id, account.name, account.institution)

        merchant_cache: Dict[str, uuid.UUID] = {}
        upserted = 0
        for row in dataset.transactions:
            merchant_id = upserter.upsert_merchant(merchant_cache, row.merchant_name)
            if upserter.upsert_transaction(owner_id, row, merchant_id):
                upserted += 1

        return SyncResult(
            window=window,
            items=0,
            fetched=len(dataset.transactions),
            upserted=upserted,
            mode=MODE_DEMO,
        )

    # ========================================================================
    # LIVE
    # ========================================================================

    def _sync_live(self, session, upserter, owner_id, window, log_context) -> SyncResult:
        credentials = CredentialRepository(session, self.schema).list_for_owner(owner_id)
        result = SyncResult(window=window, items=len(credentials))
        merchant_cache: Dict[str, uuid.UUID] = {}

        for credential in credentials:
            item_context = {**log_context, "item_id": credential.item_id}
            access_token = self.vault.decrypt(credential.token_blob)
            if not access_token:
                logger.warning("Skipping credential with unreadable token blob", extra=item_context)
                continue

            accounts, records = self._fetch_all(access_token, window, item_context)
            fetched, upserted = self._store_item(
                upserter, owner_id, credential.item_id, accounts, records, merchant_cache
            )
            result.fetched += fetched
            result.upserted += upserted
            logger.info(f"Item synced: fetched={fetched} upserted={upserted}", extra=item_context)

        return result

    def _fetch_all(self, access_token: str, window: SyncWindow, log_context) -> Tuple[List[dict], List[dict]]:
        """Page through /transactions/get until an empty page or the total.

        Accounts are taken from the first page.
        """
        accounts: List[dict] = []
        records: List[dict] = []
        offset = 0
        pages = 0

        while True:
            page = self.client.fetch_page(
                access_token, window.from_date, window.to_date, offset, self.client.config.page_size
            )
            if offset == 0:
                accounts = page.accounts
            batch = len(page.records)
            records.extend(page.records)
            offset += batch
            pages += 1
            total = page.total_count or offset

            if batch == 0 or offset >= total:
                break
            if pages >= self.client.config.max_pages:
                logger.warning(
                    f"Stopping pagination after {pages} pages ({offset}/{total} records)",
                    extra=log_context,
                )
                break

        return accounts, records

    def _store_item(self, upserter, owner_id, item_id, accounts, records, merchant_cache) -> Tuple[int, int]:
        known_accounts: Dict[str, uuid.UUID] = {}
        for account in accounts:
            if not isinstance(account, dict):
                continue
            external_id = _text(account.get("account_id"))
            if not external_id:
                continue
            local_id = derive_account_id(item_id, external_id)
            name, institution = account_display(account)
            upserter.upsert_account(owner_id, local_id, name, institution)
            known_accounts[external_id] = local_id

        upserted = 0
        for record in records:
            try:
                external_account, row = map_transaction(record, item_id)
            except RowUpsertError as e:
                logger.warning(f"Skipping malformed record: {e.message}", extra={"owner_id": str(owner_id), "item_id": item_id})
                continue

            if external_account not in known_accounts:
                upserter.upsert_account(owner_id, row.account_id, PLACEHOLDER_ACCOUNT_NAME, PLACEHOLDER_INSTITUTION)
                known_accounts[external_account] = row.account_id

            merchant_id = upserter.upsert_merchant(merchant_cache, row.merchant_name)
            if upserter.upsert_transaction(owner_id, row, merchant_id):
                upserted += 1

        return len(records), upserted
