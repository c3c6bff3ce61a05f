"""
Reusable Utilities

Small pure helpers shared by the gate, the transition engine and the
task synchronizer.
"""

import os
import re
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


ADHOC_MAX_PROMPT_LENGTH = 50
ADHOC_MAX_SLUG_WORDS = 3

# Keep ASCII alphanumerics, CJK ideographs and whitespace
_SLUG_STRIP_RE = re.compile(r'[^a-zA-Z0-9\u4e00-\u9fff\s]')


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Current time in integer milliseconds since the epoch."""
    return int(time.time() * 1000)


def slugify_words(text: str, max_words: int = ADHOC_MAX_SLUG_WORDS,
                  max_length: int = ADHOC_MAX_PROMPT_LENGTH) -> str:
    """
    Convert free text to a short hyphenated slug.

    Only the first ``max_length`` characters are considered and at most
    ``max_words`` words are kept.

    Args:
        text: Input text to slugify
        max_words: Maximum number of words in the slug
        max_length: Number of leading characters considered

    Returns:
        Lowercase hyphen-joined slug, or an empty string if nothing survives
    """
    words = _SLUG_STRIP_RE.sub('', (text or '')[:max_length]).strip()
    if not words:
        return ''
    return '-'.join(words.split()[:max_words]).lower()


def generate_adhoc_change_id(text: str, now_ms: Optional[int] = None) -> str:
    """
    Build an identifier for a unit of work that has no explicit change id.

    Format is ``ad-hoc-<slug>-<timestamp>`` or ``ad-hoc-<timestamp>`` when
    the text yields no slug.

    Args:
        text: Prompt or description the slug is derived from
        now_ms: Timestamp in milliseconds (defaults to the current time)

    Returns:
        The generated change id
    """
    timestamp = now_ms if now_ms is not None else epoch_ms()
    slug = slugify_words(text)
    if slug:
        return f"ad-hoc-{slug}-{timestamp}"
    return f"ad-hoc-{timestamp}"


def atomic_write_text(path: Path, content: str) -> None:
    """
    Write a text file atomically.

    Writes to a process-unique temp file next to ``path``, fsyncs it and
    renames it over the destination so readers never see a partial file.
    The temp file is removed if anything fails; the error is re-raised.

    Args:
        path: Destination file
        content: Full file content
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(f"{path.name}.{os.getpid()}.tmp")
    try:
        with open(temp_path, 'w', encoding='utf-8') as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_path, path)

        # Sync the directory so the rename survives a crash (best-effort)
        try:
            flags = os.O_RDONLY
            if hasattr(os, 'O_DIRECTORY'):
                flags |= os.O_DIRECTORY
            dir_fd = os.open(str(path.parent), flags)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
        except OSError:
            pass
    except Exception:
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        raise


def shorten_path(file_path: Optional[str], max_length: int = 50) -> str:
    """Shorten a long path to its tail, prefixed with an ellipsis."""
    if not file_path:
        return '(unknown file)'
    if len(file_path) <= max_length:
        return file_path
    return '...' + file_path[-(max_length - 3):]
