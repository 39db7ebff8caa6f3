"""
Store Factory
Centralizes the logic for selecting the FlashcardStore implementation.
"""

from studyloop.application.config import AppConfig
from studyloop.domain.errors import InvalidInput
from studyloop.domain.interfaces import FlashcardStore
from studyloop.infrastructure.adapters.hosted_store import HostedStore
from studyloop.infrastructure.adapters.memory_store import InMemoryStore
from studyloop.infrastructure.adapters.sqlite_store import SqliteStore


def get_store(config: AppConfig) -> FlashcardStore:
    """
    Returns the FlashcardStore implementation selected by config.store.
    """
    if config.store == "memory":
        return InMemoryStore(owner=config.owner)

    if config.store == "hosted":
        if not config.hosted_url:
            raise InvalidInput("store 'hosted' needs hosted_url (STUDYLOOP_HOSTED_URL)")
        return HostedStore(
            url=config.hosted_url,
            owner=config.owner,
            api_key=config.hosted_api_key,
            timeout=config.request_timeout,
        )

    return SqliteStore(config.db_path, owner=config.owner)
