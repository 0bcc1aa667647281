"""Tests for series duplicate detection, merge and expected books."""

import asyncio

import pytest

from bookshelf.domain.errors import DocumentNotFoundError, ValidationConflictError
from bookshelf.domain.models import Book, ExpectedBook, Series
from bookshelf.services.series_service import (
    are_similar_names, find_potential_duplicates, merge_expected_books, strip_series_suffixes
)


def test_are_similar_names():
    assert are_similar_names('discworld', 'discworld')
    assert are_similar_names('the expanse', 'expanse')
    assert are_similar_names('dune chronicles', 'dune saga')
    assert not are_similar_names('red series', 'red saga')  # stripped form too short
    assert not are_similar_names('foundation', 'earthsea')
    assert not are_similar_names('', 'anything')


def test_strip_series_suffixes_is_sequential():
    assert strip_series_suffixes('mistborn saga') == 'mistborn'
    assert strip_series_suffixes('expanse series') == 'expanse'
    assert strip_series_suffixes('witcher saga series') == 'witcher'


def test_find_potential_duplicates_groups_each_series_once():
    series = [
        Series(id='1', name='The Expanse'),
        Series(id='2', name='Expanse'),
        Series(id='3', name='The Expanse Series'),
        Series(id='4', name='Foundation'),
        Series(id='5', name='Foundation Trilogy'),
        Series(id='6', name='Earthsea'),
    ]
    groups = find_potential_duplicates(series)
    assert [[s.id for s in group] for group in groups] == [['1', '2', '3'], ['4', '5']]


def test_merge_expected_books_deduplicates_by_isbn_then_title():
    target = [ExpectedBook(title='X', isbn='111', position=1), ExpectedBook(title='Y', position=2)]
    source = [
        ExpectedBook(title='Different Title', isbn='111'),
        ExpectedBook(title='y'),
        ExpectedBook(title='Z', position=3),
    ]
    merged = merge_expected_books(target, source)
    assert [b.title for b in merged] == ['X', 'Y', 'Z']


def test_merge_series(registry, user_id):
    async def scenario():
        source = await registry.series.create_series(
            user_id, 'Wheel of Time', expected_books=[ExpectedBook(title='X')])
        target = await registry.series.create_series(
            user_id, 'The Wheel of Time Saga', expected_books=[ExpectedBook(title='X'), ExpectedBook(title='Y')])
        for position in (1, 2):
            await registry.library.save_book(user_id, Book(
                title=f'Source {position}', series_id=source.id, series_position=position))
        for position in (3, 4, 5):
            await registry.library.save_book(user_id, Book(
                title=f'Target {position}', series_id=target.id, series_position=position))

        result = await registry.series.merge_series(user_id, source.id, target.id)
        merged = await registry.series.get_series_by_id(user_id, target.id)
        gone = await registry.series.get_series_by_id(user_id, source.id)
        moved = await registry.book_repository.get_by_series(user_id, target.id)
        return result, merged, gone, moved

    result, merged, gone, moved = asyncio.run(scenario())
    assert result.books_updated == 2
    assert result.expected_books_merged == 0
    assert merged.book_count == 5
    assert [b.title for b in merged.expected_books] == ['X', 'Y']
    assert merged.total_books == 7
    assert gone is None
    assert len(moved) == 5


def test_merge_series_rejects_self_and_missing(registry, user_id):
    async def scenario():
        series = await registry.series.create_series(user_id, 'Dune')
        with pytest.raises(ValidationConflictError):
            await registry.series.merge_series(user_id, series.id, series.id)
        with pytest.raises(DocumentNotFoundError, match='Source series not found'):
            await registry.series.merge_series(user_id, 'missing', series.id)
        with pytest.raises(DocumentNotFoundError, match='Target series not found'):
            await registry.series.merge_series(user_id, series.id, 'missing')

    asyncio.run(scenario())


def test_merge_series_emits_event(registry, user_id):
    events = []
    registry.event_bus.on('series:merged', events.append)

    async def scenario():
        a = await registry.series.create_series(user_id, 'Alpha')
        b = await registry.series.create_series(user_id, 'Beta')
        await registry.series.merge_series(user_id, a.id, b.id)
        return a.id, b.id

    a_id, b_id = asyncio.run(scenario())
    assert events == [{'user_id': user_id, 'source_id': a_id, 'target_id': b_id}]


def test_create_series_rejects_duplicate_name(registry, user_id):
    async def scenario():
        await registry.series.create_series(user_id, 'The Hobbit')
        await registry.series.create_series(user_id, '  the   HOBBIT ')

    with pytest.raises(ValidationConflictError, match='already exists'):
        asyncio.run(scenario())


def test_create_series_normalizes_total_books(registry, user_id):
    async def scenario():
        return await registry.series.create_series(user_id, 'Dresden Files', total_books=0)

    assert asyncio.run(scenario()).total_books is None


def test_expected_books_add_and_remove(registry, user_id):
    async def scenario():
        series = await registry.series.create_series(user_id, 'Stormlight')
        await registry.series.add_expected_book(user_id, series.id, ExpectedBook(title='Book Five', position=5))
        await registry.series.add_expected_book(user_id, series.id, ExpectedBook(title='Unknown'))
        listed = await registry.series.add_expected_book(
            user_id, series.id, ExpectedBook(title='Book Four', position=4, source='api'))
        with pytest.raises(ValidationConflictError, match='already exists'):
            await registry.series.add_expected_book(user_id, series.id, ExpectedBook(title='book five'))
        with pytest.raises(ValidationConflictError, match='Invalid book index'):
            await registry.series.remove_expected_book(user_id, series.id, 3)
        remaining = await registry.series.remove_expected_book(user_id, series.id, 0)
        return listed, remaining

    listed, remaining = asyncio.run(scenario())
    assert [b.title for b in listed] == ['Book Four', 'Book Five', 'Unknown']
    assert [b.source for b in listed] == ['api', 'manual', 'manual']
    assert [b.title for b in remaining] == ['Book Five', 'Unknown']


def test_delete_series_unlinks_books(registry, user_id):
    async def scenario():
        series = await registry.series.create_series(user_id, 'Hitchhiker')
        book = await registry.library.save_book(user_id, Book(title='HHGTTG', series_id=series.id, series_position=1))
        unlinked = await registry.series.delete_series(user_id, series.id)
        return unlinked, await registry.library.get_book(user_id, book.id), await registry.series.load_series(user_id)

    unlinked, book, remaining = asyncio.run(scenario())
    assert unlinked == 1
    assert book.series_id is None
    assert book.series_position is None
    assert remaining == []


def test_find_duplicates_uses_active_series(registry, user_id):
    async def scenario():
        await registry.series.create_series(user_id, 'Mistborn')
        await registry.series.create_series(user_id, 'Mistborn Saga')
        binned = await registry.series.create_series(user_id, 'Mistborn Trilogy')
        await registry.series.soft_delete_series(user_id, binned.id)
        return await registry.series.find_duplicates(user_id)

    groups = asyncio.run(scenario())
    assert [[s.name for s in group] for group in groups] == [['Mistborn', 'Mistborn Saga']]
