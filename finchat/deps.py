from functools import lru_cache

from loguru import logger

from finchat.assistant.session import SessionManager
from finchat.config import get_settings
from finchat.db.repository import LedgerRepository


@lru_cache
def get_repository() -> LedgerRepository:
    settings = get_settings()
    return LedgerRepository(settings.db_path or None)


@lru_cache
def get_sessions() -> SessionManager:
    settings = get_settings()
    return SessionManager(
        get_repository(),
        currency=settings.currency,
        lookup_window=settings.lookup_window,
        recent_limit=settings.recent_limit,
    )


def close_repository() -> None:
    """Close the ledger file and forget the cached singletons."""
    if get_repository.cache_info().currsize:
        get_repository().db.close()
        logger.info("Ledger closed")
    get_sessions.cache_clear()
    get_repository.cache_clear()
