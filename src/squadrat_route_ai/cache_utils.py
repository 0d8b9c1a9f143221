import argparse
import hashlib
import logging
import os
import pickle
import shutil
from typing import Any

import rocksdict

DEFAULT_CACHE_DIR = os.path.expanduser("~/.squadrat_route_ai_cache")

logger = logging.getLogger(__name__)


class MemoryRocksDB(dict):
    """In-memory stand-in for ``rocksdict.Rdict`` when the store cannot be opened."""

    def close(self) -> None:
        pass


def get_cache_dir() -> str:
    """Return the directory used for cached files."""

    # Re-read each call so callers may override the location after import.
    path = os.environ.get("SQRAI_CACHE_DIR", DEFAULT_CACHE_DIR)
    os.makedirs(path, exist_ok=True)
    return path


def _rocksdb_path(name: str, key: str) -> str:
    h = hashlib.sha1(key.encode()).hexdigest()[:16]
    return os.path.join(get_cache_dir(), f"{name}_{h}_db")


def open_rocksdb(name: str, key: str, read_only: bool = True) -> rocksdict.Rdict | None:
    """Open the store ``name``/``key``; ``None`` when read-only and absent."""
    path = _rocksdb_path(name, key)
    if read_only and not os.path.exists(path):
        logger.debug("RocksDB at %s not found for read-only access", path)
        return None

    try:
        opts = rocksdict.Options(raw_mode=False)
        opts.create_if_missing(not read_only)
        return rocksdict.Rdict(path, opts)
    except Exception as e:
        if read_only:
            logger.info("RocksDB at %s could not be opened read-only: %s", path, e)
            return None
        logger.warning(
            "Failed to open RocksDB at %s (%s); falling back to in-memory cache", path, e
        )
        return MemoryRocksDB()


def close_rocksdb(db: rocksdict.Rdict | None) -> None:
    if db is not None:
        try:
            db.close()
        except Exception as e:
            logger.error("Failed to close RocksDB: %s", e)


def load_rocksdb_cache(db_instance: rocksdict.Rdict | None, key: Any) -> Any | None:
    """Return the cached value for ``key`` or ``None`` if unavailable."""

    if db_instance is None:
        return None
    try:
        value_bytes = db_instance.get(pickle.dumps(key))
    except Exception as e:  # pragma: no cover - DB errors
        logger.error("RocksDB read error: %s", e)
        return None
    if not value_bytes:
        return None
    try:
        return pickle.loads(value_bytes)
    except pickle.UnpicklingError as e:  # pragma: no cover - corrupted entry
        logger.error("Corrupted RocksDB entry: %s", e)
        return None


def save_rocksdb_cache(db_instance: rocksdict.Rdict | None, key: Any, data: Any) -> None:
    if db_instance is None:
        return
    try:
        db_instance[pickle.dumps(key)] = pickle.dumps(data)
    except Exception as e:  # pragma: no cover - DB errors
        logger.error("RocksDB write error: %s", e)


def clear_cache() -> None:
    dir_path = get_cache_dir()
    if os.path.isdir(dir_path):
        shutil.rmtree(dir_path)
        logger.info("Cleared cache directory %s", dir_path)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Manage squadrat-route-ai cache")
    parser.add_argument("--clear", action="store_true", help="remove all cached data")
    args = parser.parse_args(argv)
    if args.clear:
        clear_cache()
        print(f"Cache cleared: {get_cache_dir()}")


if __name__ == "__main__":
    main()
