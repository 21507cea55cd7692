"""Runtime configuration for the bullion_ledger backend.

Every setting comes from the environment (optionally seeded from a ``.env``
file) and is frozen into an :class:`AppConfig` at startup.  Other modules
receive the config object and never read environment variables themselves.
"""
from __future__ import annotations

from dataclasses import dataclass
from os import getenv
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_ALPHA_VANTAGE_ENDPOINT = "https://www.alphavantage.co/query"


@dataclass(frozen=True)
class AppConfig:
    """Settings shared by the repository, services and HTTP layer.

    Attributes:
        project_root: Checkout directory; default file locations hang off it.
        database_file: SQLite file holding merchants, trades, the ghaat
            subledger, raw gold movements and cached gold rates.
        trades_file: Spreadsheet imported by ``POST /trades/import`` when no
            path is given.
        currency: Booking currency, also the quote currency for gold rates.
        log_level: Root logging level applied by ``main.py``.
        alpha_vantage_key: API key for live gold rates. Rate refreshes are
            disabled while it is unset.
        alpha_vantage_endpoint: Base URL of the Alpha Vantage REST API.
    """

    project_root: Path
    database_file: Path
    trades_file: Path
    currency: str
    log_level: str
    alpha_vantage_key: Optional[str]
    alpha_vantage_endpoint: str


def load_config() -> AppConfig:
    """Build an :class:`AppConfig` from ``BULLION_LEDGER_*`` and ``ALPHAVANTAGE_*`` variables."""

    project_root = Path(__file__).resolve().parent.parent
    database_file = Path(getenv_with_default("BULLION_LEDGER_DB_FILE", project_root / "bullion_ledger.db"))
    trades_file = Path(getenv_with_default("BULLION_LEDGER_TRADES_FILE", project_root / "data" / "trades.xlsx"))

    # The SQLite file is created on first connect; its directory must exist.
    database_file.parent.mkdir(parents=True, exist_ok=True)

    return AppConfig(
        project_root=project_root,
        database_file=database_file,
        trades_file=trades_file,
        currency=getenv_with_default("BULLION_LEDGER_CURRENCY", "INR").upper(),
        log_level=getenv_with_default("BULLION_LEDGER_LOG_LEVEL", "INFO").upper(),
        alpha_vantage_key=getenv_with_default("ALPHAVANTAGE_API_KEY") or None,
        alpha_vantage_endpoint=getenv_with_default("ALPHAVANTAGE_ENDPOINT", DEFAULT_ALPHA_VANTAGE_ENDPOINT),
    )


def getenv_with_default(name: str, default: Optional[Path | str] = None) -> Optional[str]:
    """Read ``name`` from the environment, falling back to ``default`` as a string."""

    value = getenv(name)
    if value is not None:
        return value
    return None if default is None else str(default)
