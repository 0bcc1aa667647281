"""
Counter synchronization for genre and series ``book_count`` fields.

Membership changes are applied as net deltas through the store's optimistic
counter transaction. ``reconcile`` recomputes every count from the active
books and is the backstop for any drift left behind by failed or racing
updates.
"""

import logging
from collections import Counter
from typing import Iterable, Optional, Dict, List

from ..domain.models import EntityKind, ReconcileResult, parse_timestamp
from ..domain.repositories import CountAdjuster, CacheInvalidator
from ..infrastructure.redis_store import DocumentStore
from ..utils.event_bus import EventBus, Events

logger = logging.getLogger(__name__)


def net_deltas(added: Iterable[str], removed: Iterable[str]) -> Dict[str, int]:
    """Combine increments and decrements per id, dropping ids that cancel out."""
    deltas: Dict[str, int] = {}
    for entity_id in added or []:
        if entity_id:
            deltas[entity_id] = deltas.get(entity_id, 0) + 1
    for entity_id in removed or []:
        if entity_id:
            deltas[entity_id] = deltas.get(entity_id, 0) - 1
    return {entity_id: delta for entity_id, delta in deltas.items() if delta}


class CounterSynchronizer(CountAdjuster):
    """Keeps denormalized book counts in step with book memberships."""

    def __init__(self, store: DocumentStore, cache: Optional[CacheInvalidator] = None,
                 event_bus: Optional[EventBus] = None):
        self.store = store
        self.cache = cache
        self.event_bus = event_bus

    async def update_counts(self, user_id: str, kind: EntityKind, added: Iterable[str],
                            removed: Iterable[str]) -> Dict[str, int]:
        """Increment ``added`` ids and decrement ``removed`` ids, floored at zero.

        All writes of one call land together or not at all.

        Returns:
            Mapping of entity id to the count written.
        """
        deltas = net_deltas(added, removed)
        if not deltas:
            return {}
        written = await self.store.adjust_counters(user_id, kind.collection, deltas)
        if self.cache is not None:
            self.cache.invalidate(user_id, kind.collection)
        logger.debug(f"Updated {kind.value} counts for {user_id}: {written}")
        return written

    async def update_genre_counts(self, user_id: str, added: Iterable[str], removed: Iterable[str]) -> None:
        await self.update_counts(user_id, EntityKind.GENRES, added, removed)

    async def update_series_counts(self, user_id: str, added_series_id: Optional[str] = None,
                                   removed_series_id: Optional[str] = None) -> None:
        await self.update_counts(
            user_id, EntityKind.SERIES,
            [added_series_id] if added_series_id else [],
            [removed_series_id] if removed_series_id else [],
        )

    async def sync_book_membership(self, user_id: str, before: Optional[Dict], after: Optional[Dict]) -> None:
        """Apply the counter changes implied by a book record going from ``before`` to ``after``.

        Pass ``None`` for a side that is absent or soft-deleted.
        """
        for kind in EntityKind:
            old = set(kind.memberships(before or {}))
            new = set(kind.memberships(after or {}))
            if old != new:
                await self.update_counts(user_id, kind, sorted(new - old), sorted(old - new))

    async def reconcile(self, user_id: str, kind: EntityKind) -> ReconcileResult:
        """Recompute every ``book_count`` of ``kind`` from the active books.

        Only entities whose stored count differs are written, so a second run
        with no intervening mutation writes nothing.
        """
        books = await self.store.get_all(user_id, 'books')
        active = [book for book in books if parse_timestamp(book.get('deleted_at')) is None]
        tally: Counter = Counter()
        for book in active:
            tally.update(kind.memberships(book))

        entities = await self.store.get_all(user_id, kind.collection)
        batch = self.store.batch(user_id)
        for entity in entities:
            expected = tally.get(entity['id'], 0)
            stored = entity.get('book_count')
            if stored != expected:
                logger.warning(f"{kind.value}/{entity['id']} count drift: stored {stored}, actual {expected}")
                batch.update(kind.collection, entity['id'], {'book_count': expected})
        updated = await batch.commit()

        orphans = set(tally) - {entity['id'] for entity in entities}
        if orphans:
            logger.warning(f"{len(orphans)} {kind.value} referenced by books no longer exist")

        if updated and self.cache is not None:
            self.cache.invalidate(user_id, kind.collection)
        result = ReconcileResult(updated=updated, total_books_scanned=len(active))
        logger.info(f"Reconciled {kind.value} for {user_id}: {result.updated} updated, "
                    f"{result.total_books_scanned} books scanned")
        if self.event_bus is not None:
            self.event_bus.emit(Events.COUNTS_RECONCILED, {
                'user_id': user_id, 'kind': kind.value, 'updated': result.updated,
            })
        return result

    async def reconcile_all(self, user_id: str) -> Dict[str, ReconcileResult]:
        results = {}
        for kind in EntityKind:
            results[kind.value] = await self.reconcile(user_id, kind)
        return results


def total_updated(results: Dict[str, ReconcileResult]) -> int:
    return sum(result.updated for result in results.values())


def kinds_from_name(name: str) -> List[EntityKind]:
    """Resolve ``genres``, ``series`` or ``all`` to entity kinds.

    Raises:
        ValueError: For any other name.
    """
    if name == 'all':
        return list(EntityKind)
    return [EntityKind(name)]
