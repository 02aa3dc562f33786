"""Shared FastAPI dependencies used across route modules."""

from functools import lru_cache

from config import BotConfig, load_config
from database import SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@lru_cache(maxsize=1)
def get_config() -> BotConfig:
    return load_config()
