"""
Dependency wiring for the FastAPI app and the Socket.IO handlers.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout

from sqlalchemy.exc import SQLAlchemyError

from teamboard.config import get_settings
from teamboard.db import InMemoryStore, SqlStore, Store
from teamboard.errors import StoreUnavailable
from teamboard.realtime import RoomHub

logger = logging.getLogger(__name__)

_store: Store | None = None
_hub: RoomHub | None = None
_lock = threading.Lock()


def open_sql_store(database_url: str, timeout: float) -> SqlStore:
    """
    Open the SQL store, giving up after ``timeout`` seconds.
    """
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-connect")
    future = pool.submit(SqlStore, database_url)
    try:
        return future.result(timeout=timeout)
    except FuturesTimeout as exc:
        raise StoreUnavailable(f"no answer within {timeout:g}s") from exc
    except (SQLAlchemyError, ImportError, OSError, ValueError) as exc:
        raise StoreUnavailable(str(exc)) from exc
    finally:
        # A hung connect attempt is left to finish on its own.
        pool.shutdown(wait=False)


def get_store() -> Store:
    """
    Return the process-wide store. The mode is decided on the first call and
    never changes afterwards.
    """
    global _store
    if _store is not None:
        return _store

    with _lock:
        if _store is not None:
            return _store
        settings = get_settings()
        if settings.use_in_memory_backends or not settings.database_url:
            logger.info("Using in-memory storage")
            _store = InMemoryStore()
        else:
            try:
                _store = open_sql_store(
                    settings.database_url, settings.store_connect_timeout
                )
                logger.info("Using SQL database for persistence")
            except StoreUnavailable as exc:
                logger.warning(
                    "Database connection failed (%s); falling back to in-memory storage",
                    exc.message,
                )
                _store = InMemoryStore()
    return _store


def get_hub() -> RoomHub:
    """
    Return a singleton room hub shared by HTTP routes and socket handlers.
    """
    global _hub
    if _hub is None:
        _hub = RoomHub()
    return _hub
