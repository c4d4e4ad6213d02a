"""
config.py
---------

Runtime settings read from environment variables. ``create_app`` builds a
:class:`Settings` from the environment and then applies any overrides it
was given, which is how the tests point the app at a temporary database.
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class Settings:
    secret_key: str = "dev-secret"
    db_path: str = "riskjournal.db"
    alphavantage_api_key: str = ""
    chart_cache_ttl: int = 24 * 60 * 60
    default_risk_percent: float = 0.75
    log_level: str = "INFO"
    http_timeout: float = 10.0

    @property
    def log_level_value(self) -> int:
        level = logging.getLevelName(self.log_level.upper())
        return level if isinstance(level, int) else logging.INFO


def load_settings(overrides: Optional[Mapping[str, Any]] = None) -> Settings:
    """Read settings from the environment, then apply ``overrides``.

    Override keys are the :class:`Settings` field names; unknown keys are
    ignored so a Flask-style config mapping can be passed straight in.
    """
    settings = Settings(
        secret_key=os.getenv("SECRET_KEY", "dev-secret"),
        db_path=os.getenv("RJ_DB", "riskjournal.db"),
        alphavantage_api_key=os.getenv("ALPHAVANTAGE_API_KEY", ""),
        chart_cache_ttl=int(os.getenv("RJ_CHART_CACHE_TTL", str(24 * 60 * 60))),
        default_risk_percent=float(os.getenv("RJ_DEFAULT_RISK_PERCENT", "0.75")),
        log_level=os.getenv("RJ_LOG_LEVEL", "INFO"),
        http_timeout=float(os.getenv("RJ_HTTP_TIMEOUT", "10")),
    )
    if overrides:
        known = {f.name for f in fields(Settings)}
        settings = replace(settings, **{k: v for k, v in overrides.items() if k in known})
    return settings
