from __future__ import annotations

from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from opsboard.config import get_settings


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    settings = get_settings()
    # psycopg3 driver uses `postgresql+psycopg://...`
    return create_engine(settings.database_url, pool_pre_ping=True)
