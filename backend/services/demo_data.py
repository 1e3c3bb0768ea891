"""
Synthetic demo ledger.

Builds a fixed dataset for the current month (dates up to today only) and
the three months before it. Every id is derived from the owner and the
entry's position, so reseeding within a month reproduces the same rows.
"""

import calendar
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from database.ledger import TransactionRow
from security.identifiers import derive_id

DEMO_MONTHS = 4  # current month + 3 previous

# (key, name, institution)
DEMO_ACCOUNTS = [
    ("checking", "Primary Checking", "Chase Bank"),
    ("credit", "Rewards Credit Card", "American Express"),
    ("savings", "High Yield Savings", "Ally Bank"),
]

# (day, account, merchant, amount, monthly drift, category, description)
MONTHLY_ENTRIES = [
    (1, "checking", "Acme Corp Payroll", "4200.00", "0", "Income", "Salary deposit"),
    (2, "checking", "City Apartments", "-1850.00", "0", "Housing", "Monthly rent"),
    (4, "checking", "Metro Power & Light", "-96.40", "-4.15", "Utilities", "Electric bill"),
    (6, "credit", "StreamFlix", "-15.99", "0", "Entertainment", "Streaming subscription"),
    (8, "credit", "Whole Foods", "-84.12", "-6.30", "Groceries", "Weekly groceries"),
    (10, "credit", "Blue Bottle Coffee", "-6.75", "-0.50", "Dining", "Coffee"),
    (12, "credit", "Uber", "-23.40", "-2.10", "Transport", "Ride"),
    (15, "checking", "Acme Corp Payroll", "4200.00", "0", "Income", "Salary deposit"),
    (16, "credit", "Whole Foods", "-112.58", "3.85", "Groceries", "Weekly groceries"),
    (18, "checking", "Verizon Wireless", "-70.00", "0", "Utilities", "Phone bill"),
    (19, "credit", "Shell", "-48.20", "-3.40", "Transport", "Fuel"),
    (21, "credit", "Trader Joe's", "-63.27", "-2.95", "Groceries", "Groceries"),
    (23, "credit", "Olive Garden", "-58.90", "-7.25", "Dining", "Dinner"),
    (25, "checking", "Transfer to Savings", "-500.00", "0", "Transfer", "Monthly savings transfer"),
    (25, "savings", "Transfer from Checking", "500.00", "0", "Transfer", "Monthly savings transfer"),
    (27, "credit", "Amazon", "-42.99", "-11.20", "Shopping", "Online order"),
    (28, "savings", "Ally Bank Interest", "12.45", "0.35", "Income", "Interest payment"),
]


@dataclass
class DemoAccount:
    id: uuid.UUID
    name: str
    institution: str


@dataclass
class DemoDataset:
    accounts: List[DemoAccount]
    transactions: List[TransactionRow]


def _month_start(year: int, month: int, back: int):
    index = year * 12 + (month - 1) - back
    return index // 12, index % 12 + 1


def build_demo_dataset(owner_id: uuid.UUID, now: datetime) -> DemoDataset:
    """Generate the demo accounts and transactions for ``owner_id``."""
    accounts = {
        key: DemoAccount(
            id=derive_id(f"demo:{owner_id}:account:{key}"),
            name=name,
            institution=institution,
        )
        for key, name, institution in DEMO_ACCOUNTS
    }

    today = now.astimezone(timezone.utc).date()
    transactions = []
    for back in range(DEMO_MONTHS - 1, -1, -1):
        year, month = _month_start(today.year, today.month, back)
        last_day = calendar.monthrange(year, month)[1]
        for index, (day, account_key, merchant, amount, drift, category, description) in enumerate(
            MONTHLY_ENTRIES
        ):
            occurred = datetime(year, month, min(day, last_day), 12, 0, tzinfo=timezone.utc)
            if occurred.date() > today:
                continue
            value = Decimal(amount) + Decimal(drift) * back
            transactions.append(
                TransactionRow(
                    id=derive_id(f"demo:{owner_id}:tx:{year:04d}-{month:02d}:{index}"),
                    account_id=accounts[account_key].id,
                    merchant_name=merchant,
                    amount=value.quantize(Decimal("0.01")),
                    currency="USD",
                    occurred_at=occurred,
                    authorized_at=occurred,
                    pending=False,
                    category=category,
                    description=description,
                )
            )

    return DemoDataset(accounts=list(accounts.values()), transactions=transactions)
