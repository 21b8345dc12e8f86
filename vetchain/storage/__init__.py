# Content-addressed storage clients
from .content_store import (
    ContentStore,
    InMemoryContentStore,
    PinningServiceStore,
)
from ..config import ContentStoreConfig, ContentStoreDriver, get_content_store_driver


def create_content_store(config: ContentStoreConfig | None = None) -> ContentStore:
    """
    Create the appropriate ContentStore based on configuration.

    Returns:
        InMemoryContentStore when no pinning service is configured
        PinningServiceStore otherwise
    """
    config = config or ContentStoreConfig.from_env()
    if get_content_store_driver() == ContentStoreDriver.MEMORY:
        return InMemoryContentStore()
    return PinningServiceStore(config)


__all__ = [
    "ContentStore",
    "InMemoryContentStore",
    "PinningServiceStore",
    "create_content_store",
]
