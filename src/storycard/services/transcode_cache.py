from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from pathlib import Path

from storycard.models import CachedTranscodeEntry, TranscodeResult


def cache_key(story_text: str) -> str:
    """Digest of the trimmed story text."""
    return hashlib.md5(story_text.strip().encode("utf-8")).hexdigest()


class TranscodeCache:
    """Best-effort on-disk cache of transcode results keyed by story text.

    Lets identical story text skip TTS, upload and transcode during
    development. When ``enabled`` is false both paths are no-ops.
    """

    def __init__(
        self,
        cache_dir: str | Path = ".cache/transcodes",
        enabled: bool = True,
        logger: logging.Logger | None = None,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.enabled = enabled
        self.logger = logger or logging.getLogger(__name__)

    def _path_for(self, key: str) -> Path:
        return self.cache_dir / f"{key}.json"

    def get(self, key: str) -> CachedTranscodeEntry | None:
        """Return the cached entry, or ``None`` on a miss. Never raises."""
        if not self.enabled:
            return None

        try:
            with open(self._path_for(key), encoding="utf-8") as f:
                entry = CachedTranscodeEntry.from_payload(json.load(f), story_text_hash=key)
        except FileNotFoundError:
            return None
        except Exception as e:
            self.logger.debug(f"Ignoring unreadable cache entry {key}: {e}")
            return None

        self.logger.info(
            f"Using cached Yoto transcode hash (saved TTS + upload): key={key}, "
            f"sha256={entry.transcode_result.content_hash}"
        )
        return entry

    def put(self, key: str, result: TranscodeResult) -> None:
        """Store *result* under *key*. Failures are logged, never raised."""
        if not self.enabled:
            return

        entry = CachedTranscodeEntry(story_text_hash=key, transcode_result=result)
        tmp_name: str | None = None
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            # Write then rename so concurrent readers never see a partial file
            with tempfile.NamedTemporaryFile(
                mode="w", encoding="utf-8", dir=self.cache_dir, suffix=".tmp", delete=False
            ) as tmp_file:
                tmp_name = tmp_file.name
                json.dump(entry.to_payload(), tmp_file, indent=2)
            os.replace(tmp_name, self._path_for(key))
            tmp_name = None
            self.logger.info(
                f"Cached Yoto transcode hash for future use: key={key}, sha256={result.content_hash}"
            )
        except Exception as e:
            self.logger.warning(f"Failed to cache Yoto transcode hash {key}: {e}")
        finally:
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError as e:
                    self.logger.warning(f"Failed to delete temp file {tmp_name}: {e}")

    def clear(self) -> int:
        """Remove every cached entry and return how many were deleted."""
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob("*.json"):
            try:
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
        self.logger.info(f"Cleared {removed} cached transcode entries")
        return removed
