"""Tests for the Redis document store and the generic repository."""

import asyncio

import pytest
from redis.asyncio.client import Pipeline
from redis.exceptions import ConnectionError as RedisConnectionError, WatchError

from bookshelf.domain.errors import DocumentNotFoundError, StoreUnavailableError
from bookshelf.domain.models import Book
from bookshelf.infrastructure.redis_repositories import BookRepository, GenreRepository, order_records


def test_create_stamps_timestamps_and_id(registry, user_id):
    async def scenario():
        store = registry.store
        record = await store.create(user_id, 'genres', {'name': 'Fantasy', 'book_count': 0})
        fetched = await store.get(user_id, 'genres', record['id'])
        return record, fetched

    record, fetched = asyncio.run(scenario())
    assert record['id']
    assert fetched['name'] == 'Fantasy'
    assert fetched['book_count'] == 0
    assert fetched['created_at'] == fetched['updated_at']
    assert fetched['created_at'].endswith('+00:00')


def test_update_missing_document_raises(registry, user_id):
    async def scenario():
        await registry.store.update(user_id, 'books', 'nope', {'title': 'X'})

    with pytest.raises(DocumentNotFoundError):
        asyncio.run(scenario())


def test_delete_missing_document_is_noop(registry, user_id):
    async def scenario():
        await registry.store.delete(user_id, 'books', 'nope')
        return await registry.store.get_all(user_id, 'books')

    assert asyncio.run(scenario()) == []


def test_collections_are_scoped_per_user(registry):
    async def scenario():
        await registry.store.create('alice', 'books', {'title': 'A'})
        await registry.store.create('bob', 'books', {'title': 'B'})
        return await registry.store.get_all('alice', 'books')

    records = asyncio.run(scenario())
    assert [r['title'] for r in records] == ['A']


def test_query_by_field_operators(registry, user_id):
    async def scenario():
        repo = BookRepository(registry.store)
        await repo.create(user_id, Book(title='One', genres=['g1', 'g2'], series_position=1), doc_id='b1')
        await repo.create(user_id, Book(title='Two', genres=['g2'], series_position=2), doc_id='b2')
        await repo.create(user_id, Book(title='Three', genres=[], series_position=3), doc_id='b3')
        return {
            'contains': await repo.query_by_field(user_id, 'genres', 'array-contains', 'g2'),
            'any': await repo.query_by_field(user_id, 'genres', 'array-contains-any', ['g1', 'zz']),
            'gt': await repo.query_by_field(user_id, 'series_position', '>', 1),
            'in': await repo.query_by_field(user_id, 'title', 'in', ['One', 'Three']),
            'not_in': await repo.query_by_field(user_id, 'title', 'not-in', ['One', 'Three']),
        }

    results = asyncio.run(scenario())
    ids = {name: sorted(book.id for book in books) for name, books in results.items()}
    assert ids['contains'] == ['b1', 'b2']
    assert ids['any'] == ['b1']
    assert ids['gt'] == ['b2', 'b3']
    assert ids['in'] == ['b1', 'b3']
    assert ids['not_in'] == ['b2']


def test_query_by_field_rejects_unknown_operator(registry, user_id):
    async def scenario():
        await BookRepository(registry.store).query_by_field(user_id, 'title', 'like', 'x')

    with pytest.raises(ValueError):
        asyncio.run(scenario())


def test_order_records_puts_missing_values_last():
    records = [{'id': 'a', 'n': None}, {'id': 'b', 'n': 2}, {'id': 'c', 'n': 1}]
    assert [r['id'] for r in order_records(records, 'n', 'asc')] == ['c', 'b', 'a']
    assert [r['id'] for r in order_records(records, 'n', 'desc')] == ['b', 'c', 'a']


def test_get_paginated_walks_pages_and_reports_extra_empty_page(registry, user_id):
    async def scenario():
        repo = BookRepository(registry.store)
        for index in range(4):
            await repo.create(user_id, Book(title=f'T{index}', series_position=index), doc_id=f'b{index}')
        pages = []
        cursor = None
        while True:
            page = await repo.get_paginated(user_id, order_by='series_position', direction='asc',
                                            limit=2, cursor=cursor)
            pages.append(page)
            if not page.has_more:
                break
            cursor = page.cursor
        return pages

    pages = asyncio.run(scenario())
    assert [[b.id for b in page.items] for page in pages] == [['b0', 'b1'], ['b2', 'b3'], []]
    assert [page.has_more for page in pages] == [True, True, False]


def test_get_with_options_orders_and_limits(registry, user_id):
    async def scenario():
        repo = GenreRepository(registry.store)
        for name in ('Mystery', 'Fantasy', 'Horror'):
            await repo.create(user_id, {'name': name, 'book_count': 0})
        return await repo.get_with_options(user_id, order_by='name', direction='asc', limit=2)

    genres = asyncio.run(scenario())
    assert [g.name for g in genres] == ['Fantasy', 'Horror']


def test_batch_with_missing_update_target_writes_nothing(registry, user_id):
    async def scenario():
        store = registry.store
        await store.create(user_id, 'genres', {'name': 'A', 'book_count': 1}, doc_id='g1')
        batch = store.batch(user_id)
        batch.update('genres', 'g1', {'book_count': 5})
        batch.update('genres', 'missing', {'book_count': 5})
        with pytest.raises(DocumentNotFoundError):
            await batch.commit()
        return await store.get(user_id, 'genres', 'g1')

    assert asyncio.run(scenario())['book_count'] == 1


def test_batch_applies_set_update_and_delete_together(registry, user_id):
    async def scenario():
        store = registry.store
        await store.create(user_id, 'genres', {'name': 'A', 'book_count': 1}, doc_id='g1')
        await store.create(user_id, 'genres', {'name': 'B', 'book_count': 1}, doc_id='g2')
        batch = store.batch(user_id)
        batch.set('genres', 'g3', {'name': 'C', 'book_count': 0})
        batch.update('genres', 'g1', {'book_count': 7})
        batch.delete('genres', 'g2')
        applied = await batch.commit()
        return applied, {r['id']: r for r in await store.get_all(user_id, 'genres')}

    applied, records = asyncio.run(scenario())
    assert applied == 3
    assert sorted(records) == ['g1', 'g3']
    assert records['g1']['book_count'] == 7
    assert records['g1']['name'] == 'A'


def test_adjust_counters_floors_at_zero_and_skips_missing(registry, user_id):
    async def scenario():
        store = registry.store
        await store.create(user_id, 'genres', {'name': 'A', 'book_count': 1}, doc_id='g1')
        await store.create(user_id, 'genres', {'name': 'B', 'book_count': 3}, doc_id='g2')
        written = await store.adjust_counters(user_id, 'genres', {'g1': -2, 'g2': 1, 'gone': 1})
        records = {r['id']: r['book_count'] for r in await store.get_all(user_id, 'genres')}
        return written, records

    written, records = asyncio.run(scenario())
    assert written == {'g1': 0, 'g2': 4}
    assert records == {'g1': 0, 'g2': 4}


def test_concurrent_counter_updates_from_two_clients_are_exact(make_registry, user_id):
    first = make_registry(COUNTER_MAX_RETRIES=20)
    second = make_registry(COUNTER_MAX_RETRIES=20)

    async def scenario():
        await first.store.create(user_id, 'genres', {'name': 'A', 'book_count': 0}, doc_id='g1')
        updates = [store.adjust_counters(user_id, 'genres', {'g1': 1})
                   for store in (first.store, second.store) for _ in range(5)]
        await asyncio.gather(*updates)
        return (await second.store.get(user_id, 'genres', 'g1'))['book_count']

    assert asyncio.run(scenario()) == 10


def test_counter_update_gives_up_after_repeated_conflicts(make_registry, user_id, monkeypatch):
    registry = make_registry(COUNTER_MAX_RETRIES=2)
    attempts = []

    async def always_conflicting(self, raise_on_error=True):
        attempts.append(1)
        await self.reset()
        raise WatchError('Watched variable changed.')

    async def scenario():
        await registry.store.create(user_id, 'genres', {'name': 'A', 'book_count': 1}, doc_id='g1')
        monkeypatch.setattr(Pipeline, 'execute', always_conflicting)
        await registry.store.adjust_counters(user_id, 'genres', {'g1': 1})

    with pytest.raises(StoreUnavailableError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.operation == 'adjust_counters'
    assert len(attempts) == 2


def test_connection_failures_surface_as_store_unavailable(registry, user_id, monkeypatch):
    async def failing_hgetall(*args, **kwargs):
        raise RedisConnectionError('connection refused')

    monkeypatch.setattr(registry.store.redis, 'hgetall', failing_hgetall)

    async def scenario():
        await registry.store.get(user_id, 'books', 'b1')

    with pytest.raises(StoreUnavailableError) as excinfo:
        asyncio.run(scenario())
    assert excinfo.value.operation == 'get'
