import os
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional


def _parse_list(value: Optional[str], default: List[str]) -> List[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    def __init__(self) -> None:
        self.currency: str = os.getenv("LEDGER_CURRENCY", "INR")
        self.default_option_odds: Decimal = Decimal(os.getenv("LEDGER_DEFAULT_OPTION_ODDS", "1.9"))
        self.log_level: str = os.getenv("LEDGER_LOG_LEVEL", "INFO").upper()
        self.cors_allowed_origins: List[str] = _parse_list(
            os.getenv("CORS_ALLOWED_ORIGINS"),
            ["*"],
        )
        self.bootstrap_admin: Optional[str] = os.getenv("LEDGER_BOOTSTRAP_ADMIN")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
