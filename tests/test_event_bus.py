"""Tests for the domain event bus and cache invalidation wiring."""

from bookshelf.utils.cache import CacheStore
from bookshelf.utils.event_bus import EventBus, Events, wire_cache_invalidation


def test_on_emit_off():
    bus = EventBus()
    received = []
    unsubscribe = bus.on('ping', received.append)
    bus.emit('ping', 1)
    unsubscribe()
    bus.emit('ping', 2)
    assert received == [1]


def test_once_fires_a_single_time():
    bus = EventBus()
    received = []
    bus.once('ping', received.append)
    bus.emit('ping', 'a')
    bus.emit('ping', 'b')
    assert received == ['a']
    assert bus.listener_count('ping') == 0


def test_failing_listener_does_not_stop_delivery():
    bus = EventBus()
    received = []

    def broken(payload):
        raise RuntimeError('boom')

    bus.on('ping', broken)
    bus.on('ping', received.append)
    bus.emit('ping', 'ok')
    assert received == ['ok']


def test_clear():
    bus = EventBus()
    bus.on('a', print)
    bus.on('b', print)
    bus.clear('a')
    assert bus.listener_count('a') == 0
    assert bus.listener_count('b') == 1
    bus.clear()
    assert bus.listener_count('b') == 0


def test_wired_cache_is_invalidated_by_events():
    bus = EventBus()
    cache = CacheStore()
    wire_cache_invalidation(bus, cache)
    cache.set('u1', 'books', ['b'])
    cache.set('u1', 'genres', ['g'])
    cache.set('u1', 'wishlist', ['w'])

    bus.emit(Events.BOOK_DELETED, {'user_id': 'u1', 'book_id': 'b', 'soft': True})
    assert cache.get('u1', 'books') is None
    assert cache.get('u1', 'genres') is None
    assert cache.get('u1', 'wishlist') is not None

    bus.emit(Events.WISHLIST_CHANGED, {'user_id': 'u1'})
    assert cache.get('u1', 'wishlist') is None


def test_events_without_user_are_ignored():
    bus = EventBus()
    cache = CacheStore()
    wire_cache_invalidation(bus, cache)
    cache.set('u1', 'series', ['s'])
    bus.emit(Events.SERIES_MERGED, None)
    assert cache.get('u1', 'series') is not None
