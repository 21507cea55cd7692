"""
Pytest fixtures for bullion_ledger tests.

Provides a throwaway SQLite repository, the service wired to it and small
record factories used across the test modules.
"""
from datetime import date, datetime
from pathlib import Path

import pytest

from bullion_ledger.config import AppConfig
from bullion_ledger.database import SQLiteRepository
from bullion_ledger.models import GhaatTransaction, Merchant, Trade
from bullion_ledger.price_service import GoldRateService
from bullion_ledger.services import LedgerService


def make_trade(type_, total_amount=0.0, day=None, merchant_id="m1", **kwargs):
    """Build a trade; ``day`` is a day of January 2024."""
    trade_date = date(2024, 1, day) if day is not None else None
    return Trade(type=type_, merchant_id=merchant_id, total_amount=total_amount, trade_date=trade_date, **kwargs)


def make_ghaat(type_, units=1, gross=2.0, purity=75.0, category="Ring", when=None, **kwargs):
    return GhaatTransaction(
        type=type_,
        category=category,
        units=units,
        gross_weight_per_unit=gross,
        purity=purity,
        transaction_date=when,
        **kwargs,
    )


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        project_root=tmp_path,
        database_file=tmp_path / "ledger.db",
        trades_file=tmp_path / "trades.csv",
        currency="INR",
        log_level="DEBUG",
        alpha_vantage_key=None,
        alpha_vantage_endpoint="https://example.invalid/query",
    )


@pytest.fixture
def repository(config: AppConfig):
    repo = SQLiteRepository(config.database_file)
    repo.initialise_schema()
    yield repo
    repo.close()


@pytest.fixture
def service(config: AppConfig, repository: SQLiteRepository) -> LedgerService:
    return LedgerService(config, repository, GoldRateService(config))


@pytest.fixture
def merchant(repository: SQLiteRepository) -> Merchant:
    return repository.add_merchant(
        Merchant(name="Shree Jewellers", created_at=datetime(2024, 1, 1, 9, 0, 0))
    )
