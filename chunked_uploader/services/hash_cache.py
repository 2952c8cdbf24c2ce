"""
HashCache - Local cache for whole-file content hashes.

Avoids re-hashing a large file when an interrupted upload is resumed.
An entry is valid while the file's mtime and size are unchanged.
"""
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)

DEFAULT_CACHE_DIR = Path.home() / ".cache" / "chunked-uploader"
DEFAULT_CACHE_FILE = "hashes.json"


class HashCache:
    """
    Local cache for whole-file hashes.

    Keyed by absolute path and hash algorithm; validated against mtime and size.
    """

    def __init__(self, cache_dir: Optional[Path] = None, cache_file: str = DEFAULT_CACHE_FILE):
        self._cache_dir = cache_dir or DEFAULT_CACHE_DIR
        self._cache_file = self._cache_dir / cache_file
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._dirty = False

    async def load(self) -> None:
        """Load cache from disk. A broken cache file means starting fresh."""
        try:
            if self._cache_file.exists():
                with open(self._cache_file, "r", encoding="utf-8") as f:
                    self._cache = json.load(f)
                logger.info("HashCache: Loaded %d entries from %s", len(self._cache), self._cache_file)
            else:
                logger.debug("HashCache: No cache file found at %s, starting fresh", self._cache_file)
                self._cache = {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("HashCache: Failed to load cache: %s - starting fresh", e)
            self._cache = {}

    async def save(self) -> None:
        """Save cache to disk if dirty."""
        if not self._dirty:
            return

        try:
            self._cache_dir.mkdir(parents=True, exist_ok=True)
            with open(self._cache_file, "w", encoding="utf-8") as f:
                json.dump(self._cache, f, indent=2)
            self._dirty = False
            logger.info("HashCache: Saved %d entries to %s", len(self._cache), self._cache_file)
        except OSError as e:
            logger.error("HashCache: Failed to save cache: %s", e)

    def _get_file_key(self, file_path: Path, algorithm: str) -> str:
        return f"{algorithm}:{Path(file_path).resolve()}"

    def _stat(self, file_path: Path) -> tuple:
        try:
            st = Path(file_path).stat()
        except OSError:
            return "", 0
        return datetime.fromtimestamp(st.st_mtime).isoformat(), st.st_size

    async def get(self, file_path: Path, algorithm: str = "blake3") -> Optional[str]:
        """
        Get cached hash for file if still valid.

        Returns None if the file is not cached or its mtime/size changed.
        """
        file_path = Path(file_path)
        key = self._get_file_key(file_path, algorithm)

        cached = self._cache.get(key)
        if cached is None:
            logger.debug("HashCache: MISS (not cached) - %s", file_path.name)
            return None

        mtime, size = self._stat(file_path)
        if cached.get("mtime") != mtime or cached.get("file_size") != size:
            logger.debug("HashCache: MISS (file changed) - %s", file_path.name)
            return None

        file_hash = cached.get("hash")
        if file_hash:
            logger.debug("HashCache: HIT - %s -> %s...", file_path.name, file_hash[:16])
        return file_hash or None

    async def set(self, file_path: Path, algorithm: str, file_hash: str) -> None:
        """Store hash in cache."""
        file_path = Path(file_path)
        mtime, size = self._stat(file_path)
        self._cache[self._get_file_key(file_path, algorithm)] = {
            "hash": file_hash,
            "file_size": size,
            "mtime": mtime,
            "cached_at": datetime.now().isoformat(),
        }
        self._dirty = True
        logger.debug("HashCache: Cached - %s -> %s...", file_path.name, file_hash[:16])

    async def invalidate(self, file_path: Path, algorithm: str = "blake3") -> None:
        key = self._get_file_key(file_path, algorithm)
        if key in self._cache:
            del self._cache[key]
            self._dirty = True
            logger.debug("HashCache: Invalidated - %s", Path(file_path).name)

    async def clear(self) -> None:
        self._cache = {}
        self._dirty = True
        logger.info("HashCache: Cleared all entries")

    def stats(self) -> Dict[str, int]:
        return {
            "entries": len(self._cache),
            "dirty": self._dirty
        }
