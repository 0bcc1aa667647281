import os
import secrets
from dotenv import load_dotenv

# Load environment variables from .env file(s)
load_dotenv()

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    # Security
    SECRET_KEY = os.environ.get('SECRET_KEY') or secrets.token_hex(32)

    # Shared bearer token for the JSON API; unset means header identity only
    API_TOKEN = os.environ.get('API_TOKEN')

    # Redis document store
    REDIS_URL = os.environ.get('REDIS_URL', 'redis://localhost:6379/0')
    BOOKSHELF_KEY_PREFIX = os.environ.get('BOOKSHELF_KEY_PREFIX', 'bookshelf')
    COUNTER_MAX_RETRIES = _int_env('COUNTER_MAX_RETRIES', 10)

    # Bin
    BIN_RETENTION_DAYS = _int_env('BIN_RETENTION_DAYS', 30)

    # Caches (seconds)
    GENRES_CACHE_TTL = _int_env('GENRES_CACHE_TTL', 300)
    SERIES_CACHE_TTL = _int_env('SERIES_CACHE_TTL', 300)
    WISHLIST_CACHE_TTL = _int_env('WISHLIST_CACHE_TTL', 300)
    BOOKS_CACHE_TTL = _int_env('BOOKS_CACHE_TTL', 3600)
    BOOKS_PAGE_SIZE = _int_env('BOOKS_PAGE_SIZE', 50)

    # Data directory: covers/ and cache/ are created on first use
    DATA_DIR = os.environ.get('DATA_DIR') or os.path.join(basedir, 'data')
    BOOKS_CACHE_DIR = os.environ.get('BOOKS_CACHE_DIR') or os.path.join(DATA_DIR, 'cache')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'ERROR')
