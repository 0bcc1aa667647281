"""Tests for the maintenance command line."""

import asyncio
from datetime import timedelta

import pytest

from bookshelf.cli import build_parser, main
from bookshelf.domain.models import Book, now_utc


def test_parser_defaults():
    args = build_parser().parse_args(['reconcile', '--user', 'u1'])
    assert args.command == 'reconcile'
    assert args.kind == 'all'

    args = build_parser().parse_args(['purge-bin', '--user', 'u1', '--retention-days', '7'])
    assert args.retention_days == 7


def test_parser_rejects_unknown_kind():
    with pytest.raises(SystemExit):
        build_parser().parse_args(['reconcile', '--user', 'u1', '--kind', 'authors'])


def test_reconcile_command(make_registry, user_id, capsys):
    async def seed():
        registry = make_registry()
        genre = await registry.genres.create_genre(user_id, 'Western')
        await registry.library.save_book(user_id, Book(title='Lonesome Dove', genres=[genre.id]))
        await registry.store.update(user_id, 'genres', genre.id, {'book_count': 0})
        return genre.id

    genre_id = asyncio.run(seed())
    assert main(['reconcile', '--user', user_id, '--kind', 'genres'], registry=make_registry()) == 0
    assert 'genres: 1 updated, 1 active books scanned' in capsys.readouterr().out

    async def check():
        return (await make_registry().genres.get_genre_by_id(user_id, genre_id)).book_count

    assert asyncio.run(check()) == 1


def test_purge_bin_command(make_registry, user_id, capsys):
    async def seed():
        registry = make_registry()
        book = await registry.library.save_book(user_id, Book(title='Old'))
        deleted_at = (now_utc() - timedelta(days=10)).isoformat()
        await registry.store.update(user_id, 'books', book.id, {'deleted_at': deleted_at})

    asyncio.run(seed())
    assert main(['purge-bin', '--user', user_id, '--retention-days', '7'], registry=make_registry()) == 0
    assert 'Purged 1 of 1 binned books' in capsys.readouterr().out
