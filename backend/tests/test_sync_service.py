"""Tests for the sync orchestrator.

Covers:
- Window computation and request options
- Sign normalization and record mapping
- End-to-end live sync (pagination, accounts, skipped records)
- Idempotence, failure containment and rollback
- Demo seeding
"""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import requests
import responses
from freezegun import freeze_time
from responses import matchers
from sqlalchemy import select

from config import PlaidConfig, SyncConfig
from database import CredentialRepository, tenant_session
from database.models import Account, Transaction, User
from errors import AggregatorTimeoutError, DecryptionError, RowUpsertError, ValidationError
from integrations.plaid_client import PlaidClient
from security.identifiers import account_id, transaction_id
from services.profiles import UserProfile
from services.sync_service import (
    MODE_DEMO,
    SyncOptions,
    SyncOrchestrator,
    coerce_bool,
    compute_window,
    map_transaction,
    to_local_sign,
)

from conftest import ACCESS_TOKEN, ITEM_ID, PLAID_URL, TEST_OWNER_ID  # noqa: I001

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
TRANSACTIONS_URL = f"{PLAID_URL}/transactions/get"


def page_matcher(offset, count=3):
    return matchers.json_params_matcher(
        {"options": {"include_personal_finance_category": True, "count": count, "offset": offset}},
        strict_match=False,
    )


# ============================================================================
# WINDOW
# ============================================================================


@pytest.mark.parametrize(
    "options,expected_start",
    [
        (SyncOptions(), date(2026, 2, 13)),
        (SyncOptions(force_full_sync=True), date(2025, 12, 15)),
        (SyncOptions(start_month="2026-01"), date(2026, 1, 1)),
        (SyncOptions(start_month="2026-03"), date(2026, 3, 1)),
        (SyncOptions(start_month="2025-11", force_full_sync=True), date(2025, 11, 1)),
    ],
)
def test_compute_window(options, expected_start):
    window = compute_window(options, NOW, SyncConfig())

    assert window.from_date == expected_start
    assert window.end == NOW


@pytest.mark.parametrize("start_month", ["2026-04", "2026-13", "2026-00", "26-01", "2026-1", "January"])
def test_compute_window_rejects_bad_start_month(start_month):
    with pytest.raises(ValidationError) as excinfo:
        compute_window(SyncOptions(start_month=start_month), NOW, SyncConfig())
    assert excinfo.value.code == "INVALID_SYNC_REQUEST"


def test_options_from_payload():
    options = SyncOptions.from_payload({"forceFullSync": "true", "demoSeed": 0, "startMonth": ""})

    assert options == SyncOptions(demo_seed=False, force_full_sync=True, start_month=None)
    assert SyncOptions.from_payload(None) == SyncOptions()


def test_options_reject_non_string_start_month():
    with pytest.raises(ValidationError):
        SyncOptions.from_payload({"startMonth": 202601})


# ============================================================================
# MAPPING
# ============================================================================


def test_sign_normalization():
    """Debits become negative, credits positive."""
    assert to_local_sign(Decimal("50")) == Decimal("-50")
    assert to_local_sign(Decimal("-3000")) == Decimal("3000")


def test_map_transaction(plaid_transaction):
    record = plaid_transaction("txn-1", "acc-1", 12.5, authorized_date="2026-02-27", pending=True)

    external_account, row = map_transaction(record, ITEM_ID)

    assert external_account == "acc-1"
    assert row.id == transaction_id(ITEM_ID, "txn-1")
    assert row.account_id == account_id(ITEM_ID, "acc-1")
    assert row.amount == Decimal("-12.50")
    assert row.occurred_at == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert row.authorized_at == datetime(2026, 2, 27, tzinfo=timezone.utc)
    assert row.pending is True
    assert row.merchant_name == "Corner Store"
    assert row.category == "Shops"
    assert row.description == "Purchase txn-1"
    assert row.currency == "USD"


def test_map_transaction_fallbacks(plaid_transaction):
    record = plaid_transaction(
        "txn-2",
        "acc-1",
        "-20",
        merchant_name=None,
        category=[],
        iso_currency_code=None,
        unofficial_currency_code="cad",
    )

    _, row = map_transaction(record, ITEM_ID)

    assert row.amount == Decimal("20.00")
    assert row.merchant_name == "GENERAL_MERCHANDISE"
    assert row.category == "GENERAL_MERCHANDISE_OTHER"
    assert row.currency == "CAD"
    assert row.authorized_at is None


def test_map_transaction_bare_record():
    _, row = map_transaction(
        {"transaction_id": "txn-3", "account_id": "acc-1", "amount": 1, "date": "2026-03-02"}, ITEM_ID
    )

    assert row.merchant_name == "Unknown Merchant"
    assert row.category == "Uncategorized"
    assert row.description == "Plaid transaction"
    assert row.currency == "USD"
    assert row.pending is False


@pytest.mark.parametrize(
    "overrides",
    [
        {"transaction_id": None},
        {"account_id": ""},
        {"amount": None},
        {"amount": "abc"},
        {"amount": True},
        {"amount": "NaN"},
        {"amount": "1e30"},
        {"amount": [10]},
        {"transaction_id": 42},
        {"account_id": ["acc-1"]},
        {"date": "2026-13-01"},
        {"date": None},
    ],
)
def test_malformed_records_raise(plaid_transaction, overrides):
    record = plaid_transaction("txn-1", "acc-1", 10)
    record.update(overrides)

    with pytest.raises(RowUpsertError):
        map_transaction(record, ITEM_ID)


@pytest.mark.parametrize("record", [None, "txn-1", 42, ["txn-1", "acc-1"]])
def test_non_object_records_raise(record):
    with pytest.raises(RowUpsertError):
        map_transaction(record, ITEM_ID)


def test_non_string_fields_fall_back(plaid_transaction):
    record = plaid_transaction(
        "txn-1",
        "acc-1",
        10,
        merchant_name=12345,
        name=["Purchase"],
        category=[7],
        personal_finance_category="GENERAL_MERCHANDISE",
        iso_currency_code=840,
        unofficial_currency_code=None,
    )

    _, row = map_transaction(record, ITEM_ID)

    assert row.merchant_name == "Unknown Merchant"
    assert row.category == "Uncategorized"
    assert row.description == "Plaid transaction"
    assert row.currency == "USD"


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        (False, False),
        (1, True),
        (2, True),
        (-1, True),
        (0.5, True),
        (0, False),
        (0.0, False),
        ("true", True),
        (" Yes ", True),
        ("on", True),
        ("1", True),
        ("false", False),
        ("off", False),
        ("", False),
        (None, False),
        ([1], False),
    ],
)
def test_coerce_bool(value, expected):
    assert coerce_bool(value) is expected


# ============================================================================
# LIVE SYNC
# ============================================================================


@pytest.fixture
def orchestrator(services):
    return services.sync


@pytest.fixture
def two_page_sync(mock_responses, plaid_account, plaid_transaction, transactions_page):
    """Five records over two pages, one of them malformed."""
    accounts = [plaid_account("acc-1"), plaid_account("acc-2", name="Card", official_name="Platinum Card", type_="credit", subtype="credit card")]
    first = [
        plaid_transaction("txn-1", "acc-1", 50, day="2026-01-05"),
        plaid_transaction("txn-2", "acc-1", -3000, day="2026-01-15", merchant_name="Acme Payroll"),
        plaid_transaction("txn-3", "acc-2", 12.34, day="2026-02-01"),
    ]
    second = [
        plaid_transaction("txn-4", "acc-2", "abc"),
        plaid_transaction("txn-5", "acc-2", 8, day="2026-03-10", pending=True),
    ]
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(first, accounts, 5), match=[page_matcher(0)]
    )
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(second, accounts, 5), match=[page_matcher(3)]
    )
    return mock_responses


@freeze_time("2026-03-15T12:00:00Z")
def test_live_sync_end_to_end(orchestrator, linked_credential, two_page_sync, db_session):
    result = orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(force_full_sync=True))

    assert result.window.from_date == date(2025, 12, 15)
    assert result.window.to_date == date(2026, 3, 15)
    assert (result.items, result.fetched, result.upserted) == (1, 5, 4)
    assert len(two_page_sync.calls) == 2

    request_body = two_page_sync.calls[0].request.body
    assert b'"start_date": "2025-12-15"' in request_body
    assert ACCESS_TOKEN.encode() in request_body

    accounts = {a.id: a for a in db_session.execute(select(Account)).scalars()}
    assert set(accounts) == {account_id(ITEM_ID, "acc-1"), account_id(ITEM_ID, "acc-2")}
    card = accounts[account_id(ITEM_ID, "acc-2")]
    assert (card.name, card.institution) == ("Platinum Card", "Plaid credit card")
    assert accounts[account_id(ITEM_ID, "acc-1")].name == "Everyday Checking"

    amounts = dict(db_session.execute(select(Transaction.id, Transaction.amount)).all())
    assert amounts == {
        transaction_id(ITEM_ID, "txn-1"): Decimal("-50.00"),
        transaction_id(ITEM_ID, "txn-2"): Decimal("3000.00"),
        transaction_id(ITEM_ID, "txn-3"): Decimal("-12.34"),
        transaction_id(ITEM_ID, "txn-5"): Decimal("-8.00"),
    }


@freeze_time("2026-03-15T12:00:00Z")
def test_live_sync_is_idempotent(orchestrator, linked_credential, two_page_sync, ledger_snapshot):
    options = SyncOptions(force_full_sync=True)
    orchestrator.synchronize(TEST_OWNER_ID, options)
    first = ledger_snapshot()
    orchestrator.synchronize(TEST_OWNER_ID, options)

    assert ledger_snapshot() == first


def test_no_credentials(orchestrator, owners, mock_responses):
    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert (result.items, result.fetched, result.upserted) == (0, 0, 0)
    assert len(mock_responses.calls) == 0


def test_sync_upserts_user_profile(orchestrator, db_session, mock_responses):
    profile = UserProfile(owner_id=TEST_OWNER_ID, email="owner@example.test", full_name="Test Owner")

    orchestrator.synchronize(TEST_OWNER_ID, profile=profile)

    assert db_session.get(User, TEST_OWNER_ID).full_name == "Test Owner"


def test_unversioned_blob_is_skipped(orchestrator, session_factory, owners, mock_responses):
    with tenant_session(session_factory, TEST_OWNER_ID) as session:
        CredentialRepository(session).save(TEST_OWNER_ID, "legacy-item", "plain-access-token")

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert (result.items, result.fetched) == (1, 0)
    assert len(mock_responses.calls) == 0


def test_undecryptable_blob_rolls_back(
    orchestrator, session_factory, vault, owners, mock_responses, plaid_transaction, plaid_account, transactions_page, ledger_snapshot
):
    """A vault failure aborts the invocation; earlier items are not kept."""
    with tenant_session(session_factory, TEST_OWNER_ID) as session:
        repo = CredentialRepository(session)
        repo.save(TEST_OWNER_ID, "item-a", vault.encrypt(ACCESS_TOKEN))
        repo.save(TEST_OWNER_ID, "item-b", "v1:kms:c29tZS1ibG9i")
    mock_responses.add(
        responses.POST,
        TRANSACTIONS_URL,
        json=transactions_page([plaid_transaction("txn-1", "acc-1", 10)], [plaid_account("acc-1")], 1),
    )
    before = ledger_snapshot()

    with pytest.raises(DecryptionError):
        orchestrator.synchronize(TEST_OWNER_ID)

    assert ledger_snapshot() == before


def test_timeout_rolls_back(orchestrator, linked_credential, mock_responses, ledger_snapshot):
    mock_responses.add(responses.POST, TRANSACTIONS_URL, body=requests.exceptions.ReadTimeout("slow"))
    before = ledger_snapshot()

    with pytest.raises(AggregatorTimeoutError):
        orchestrator.synchronize(TEST_OWNER_ID)

    assert ledger_snapshot() == before


def test_unknown_account_gets_placeholder(
    orchestrator, linked_credential, mock_responses, plaid_transaction, transactions_page, db_session
):
    mock_responses.add(
        responses.POST,
        TRANSACTIONS_URL,
        json=transactions_page([plaid_transaction("txn-1", "acc-x", 10)], [], 1),
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert result.upserted == 1
    placeholder = db_session.get(Account, account_id(ITEM_ID, "acc-x"))
    assert (placeholder.name, placeholder.institution) == ("Plaid Account", "Plaid")


@pytest.mark.parametrize(
    "bad_record",
    [
        None,
        {"transaction_id": "txn-bad", "account_id": "acc-1", "amount": "1e30", "date": "2026-03-01"},
        {"transaction_id": ["txn-bad"], "account_id": "acc-1", "amount": 5, "date": "2026-03-01"},
    ],
)
def test_malformed_record_is_skipped_during_sync(
    orchestrator, linked_credential, mock_responses, plaid_transaction, plaid_account, transactions_page, bad_record
):
    records = [bad_record, plaid_transaction("txn-1", "acc-1", 10)]
    mock_responses.add(
        responses.POST,
        TRANSACTIONS_URL,
        json=transactions_page(records, ["acc-1", plaid_account("acc-1")], 2),
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert (result.fetched, result.upserted) == (2, 1)


def test_non_string_fields_are_stored_with_fallbacks(
    orchestrator, linked_credential, mock_responses, plaid_transaction, plaid_account, transactions_page, db_session
):
    records = [
        plaid_transaction("txn-1", "acc-1", 10, merchant_name=12345, iso_currency_code=840),
        plaid_transaction("txn-2", "acc-1", 20),
    ]
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(records, [plaid_account("acc-1")], 2)
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert (result.fetched, result.upserted) == (2, 2)
    stored = db_session.get(Transaction, transaction_id(ITEM_ID, "txn-1"))
    assert stored.currency == "USD"


def test_pagination_without_total_stops_after_one_page(
    orchestrator, linked_credential, mock_responses, plaid_transaction, plaid_account, transactions_page
):
    records = [plaid_transaction(f"txn-{i}", "acc-1", i + 1) for i in range(3)]
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(records, [plaid_account("acc-1")], 0)
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert result.fetched == 3
    assert len(mock_responses.calls) == 1


def test_pagination_stops_on_empty_page(
    orchestrator, linked_credential, mock_responses, plaid_transaction, plaid_account, transactions_page
):
    records = [plaid_transaction(f"txn-{i}", "acc-1", i + 1) for i in range(3)]
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(records, [plaid_account("acc-1")], 10), match=[page_matcher(0)]
    )
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page([], [plaid_account("acc-1")], 10), match=[page_matcher(3)]
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert result.fetched == 3
    assert len(mock_responses.calls) == 2


def test_pagination_page_cap(
    session_factory, vault, linked_credential, mock_responses, plaid_transaction, plaid_account, transactions_page
):
    client = PlaidClient(PlaidConfig(client_id="id", secret="secret", page_size=3, max_pages=2))
    orchestrator = SyncOrchestrator(session_factory, vault, client)
    records = [plaid_transaction(f"txn-{i}", "acc-1", i + 1) for i in range(3)]
    mock_responses.add(
        responses.POST, TRANSACTIONS_URL, json=transactions_page(records, [plaid_account("acc-1")], 100)
    )

    result = orchestrator.synchronize(TEST_OWNER_ID)

    assert len(mock_responses.calls) == 2
    assert result.fetched == 6


# ============================================================================
# DEMO SEEDING
# ============================================================================


@freeze_time("2026-03-15T12:00:00Z")
def test_demo_seed(orchestrator, owners, mock_responses, db_session):
    result = orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(demo_seed=True))

    assert result.mode == MODE_DEMO
    assert result.items == 0
    assert result.fetched == result.upserted == 59
    assert result.to_dict("trace-1")["mode"] == "DEMO"
    assert len(mock_responses.calls) == 0
    assert db_session.query(Account).count() == 3


@freeze_time("2026-03-15T12:00:00Z")
def test_demo_seed_is_deterministic(orchestrator, owners, ledger_snapshot):
    orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(demo_seed=True))
    first = ledger_snapshot()
    orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(demo_seed=True))

    assert ledger_snapshot() == first


@freeze_time("2026-03-15T12:00:00Z")
def test_demo_seed_replaces_live_rows(orchestrator, linked_credential, two_page_sync, db_session):
    orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(force_full_sync=True))
    orchestrator.synchronize(TEST_OWNER_ID, SyncOptions(demo_seed=True))

    live_ids = {transaction_id(ITEM_ID, f"txn-{i}") for i in range(1, 6)}
    stored = set(db_session.execute(select(Transaction.id)).scalars())
    assert stored.isdisjoint(live_ids)
    assert len(stored) == 59


def test_live_result_has_no_mode_key(orchestrator, owners):
    body = orchestrator.synchronize(TEST_OWNER_ID).to_dict("trace-1")

    assert "mode" not in body
    assert body["status"] == "ACCEPTED"
    assert body["traceId"] == "trace-1"
