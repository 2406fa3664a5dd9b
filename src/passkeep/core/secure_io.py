"""Owner-only atomic file writes.

Every artifact passkeep keeps on disk (vault, session mirror, key cache,
pid file) goes through ``atomic_write_text`` so a concurrent reader sees
either the previous content or the new content, never a partial write.
"""

import os
import threading
from pathlib import Path
from typing import Union

PathLike = Union[str, Path]


def atomic_write_text(path: PathLike, text: str, mode: int = 0o600) -> None:
    """Write ``text`` to ``path`` through a temp file and ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.{threading.get_ident()}.tmp")
    try:
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        # Clean up temp file on failure
        if tmp_path.exists():
            tmp_path.unlink()
        raise
    # os.open only applies the mode on creation; tighten a reused path too
    os.chmod(path, mode)


def remove_if_exists(path: PathLike) -> bool:
    """Delete ``path``. Returns True if a file was removed."""
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    return True
