"""
Wishlist service with a short-lived per-user cache.
"""

import logging
from typing import List, Optional

from ..domain.errors import ValidationConflictError
from ..domain.models import WishlistItem
from ..infrastructure.redis_repositories import WishlistRepository
from ..utils.cache import CacheStore
from ..utils.event_bus import EventBus, Events

logger = logging.getLogger(__name__)


class WishlistService:
    def __init__(self, wishlist: WishlistRepository, cache: CacheStore, event_bus: Optional[EventBus] = None):
        self.wishlist = wishlist
        self.cache = cache
        self.event_bus = event_bus

    def _changed(self, user_id: str) -> None:
        self.cache.invalidate(user_id, 'wishlist')
        if self.event_bus is not None:
            self.event_bus.emit(Events.WISHLIST_CHANGED, {'user_id': user_id})

    async def load_wishlist(self, user_id: str, force_refresh: bool = False) -> List[WishlistItem]:
        """Wishlist items, newest first."""
        if not force_refresh:
            entry = self.cache.get(user_id, 'wishlist')
            if entry is not None:
                return list(entry.items)
        items = await self.wishlist.get_with_options(user_id, order_by='created_at', direction='desc')
        self.cache.set(user_id, 'wishlist', items)
        return items

    async def add_wishlist_item(self, user_id: str, item: WishlistItem) -> WishlistItem:
        if not item.title.strip():
            raise ValidationConflictError('Title is required')
        created = await self.wishlist.create(user_id, item)
        self._changed(user_id)
        logger.info(f"Added wishlist item {created.id} for {user_id}")
        return created

    async def delete_wishlist_item(self, user_id: str, item_id: str) -> None:
        await self.wishlist.delete(user_id, item_id)
        self._changed(user_id)
