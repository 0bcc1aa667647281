"""Tests for the Flask JSON API."""

import fakeredis
import pytest

from bookshelf import create_app
from bookshelf.domain.models import Book
from bookshelf.services.async_helper import run_async


@pytest.fixture
def app(fake_server, settings):
    class TestConfig:
        TESTING = True
        REDIS_CLIENT = fakeredis.FakeAsyncRedis(server=fake_server, decode_responses=True)
        API_TOKEN = None
        DATA_DIR = settings['DATA_DIR']
        BOOKS_CACHE_DIR = settings['BOOKS_CACHE_DIR']
        BOOKSHELF_KEY_PREFIX = 'apitest'

    return create_app(TestConfig)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['bookshelf']


HEADERS = {'X-User-Id': 'user-1'}


def test_requires_user_header(client):
    response = client.get('/api/v1/bin')
    assert response.status_code == 401
    assert response.get_json()['status'] == 'error'


def test_bearer_token_enforced_when_configured(app, client):
    app.config['API_TOKEN'] = 'secret'
    assert client.get('/api/v1/bin', headers=HEADERS).status_code == 401
    ok = client.get('/api/v1/bin', headers={**HEADERS, 'Authorization': 'Bearer secret'})
    assert ok.status_code == 200


def test_bin_flow_over_http(client, services):
    genre = run_async(services.genres.create_genre('user-1', 'Fantasy'))
    book = run_async(services.library.save_book('user-1', Book(title='Mort', genres=[genre.id])))

    response = client.post(f'/api/v1/bin/{book.id}', headers=HEADERS, json={})
    assert response.status_code == 200
    assert response.get_json()['data']['counts_updated'] is True

    listing = client.get('/api/v1/bin', headers=HEADERS).get_json()
    assert listing['count'] == 1
    assert listing['data'][0]['days_remaining'] == 30

    again = client.post(f'/api/v1/bin/{book.id}', headers=HEADERS, json={})
    assert again.status_code == 409

    restored = client.post(f'/api/v1/bin/{book.id}/restore', headers=HEADERS)
    body = restored.get_json()
    assert restored.status_code == 200
    assert body['data']['warnings'] == []
    assert body['data']['book']['deleted_at'] is None


def test_permanent_delete_requires_binned_book(client, services):
    book = run_async(services.library.save_book('user-1', Book(title='Emma')))
    assert client.delete(f'/api/v1/bin/{book.id}', headers=HEADERS).status_code == 409

    client.post(f'/api/v1/bin/{book.id}', headers=HEADERS, json={})
    assert client.delete(f'/api/v1/bin/{book.id}', headers=HEADERS).status_code == 200
    assert client.post(f'/api/v1/bin/{book.id}/restore', headers=HEADERS).status_code == 404


def test_empty_bin(client, services):
    for title in ('A', 'B'):
        book = run_async(services.library.save_book('user-1', Book(title=title)))
        client.post(f'/api/v1/bin/{book.id}', headers=HEADERS, json={})
    response = client.post('/api/v1/bin/empty', headers=HEADERS)
    assert response.get_json()['data']['deleted'] == 2
    assert client.get('/api/v1/bin', headers=HEADERS).get_json()['count'] == 0


def test_unknown_book_is_404(client):
    response = client.post('/api/v1/bin/missing', headers=HEADERS, json={})
    assert response.status_code == 404


def test_series_duplicates_and_merge(client, services):
    source = run_async(services.series.create_series('user-1', 'Expanse'))
    target = run_async(services.series.create_series('user-1', 'The Expanse'))

    duplicates = client.get('/api/v1/series/duplicates', headers=HEADERS).get_json()
    assert duplicates['count'] == 1

    missing = client.post('/api/v1/series/merge', headers=HEADERS, json={'source_id': source.id})
    assert missing.status_code == 400

    self_merge = client.post('/api/v1/series/merge', headers=HEADERS,
                             json={'source_id': source.id, 'target_id': source.id})
    assert self_merge.status_code == 409

    merged = client.post('/api/v1/series/merge', headers=HEADERS,
                         json={'source_id': source.id, 'target_id': target.id})
    assert merged.status_code == 200
    assert merged.get_json()['data'] == {'books_updated': 0, 'expected_books_merged': 0}


def test_reconcile_endpoint(client, services):
    genre = run_async(services.genres.create_genre('user-1', 'Horror'))
    run_async(services.library.save_book('user-1', Book(title='It', genres=[genre.id])))
    run_async(services.store.update('user-1', 'genres', genre.id, {'book_count': 4}))

    response = client.post('/api/v1/maintenance/reconcile', headers=HEADERS, json={'kind': 'genres'})
    assert response.status_code == 200
    assert response.get_json()['data'] == {'genres': {'updated': 1, 'total_books_scanned': 1}}

    bad = client.post('/api/v1/maintenance/reconcile', headers=HEADERS, json={'kind': 'authors'})
    assert bad.status_code == 400
