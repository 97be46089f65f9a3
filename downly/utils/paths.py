import os
import tempfile
from pathlib import Path
from typing import Iterable, List, Optional


def candidate_dirs(leaf: str, override: Optional[str] = None) -> List[Path]:
    """Explicit override, then the runtime temp area, then a local cache"""
    dirs = []
    if override:
        dirs.append(Path(override))
    dirs.append(Path(tempfile.gettempdir()) / "downly" / leaf)
    dirs.append(Path.cwd() / ".cache" / "downly" / leaf)
    return dirs


def first_writable_dir(candidates: Iterable[Path]) -> Optional[Path]:
    """Create candidates in order and return the first one we can write to"""
    for directory in candidates:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        if os.access(directory, os.W_OK | os.X_OK):
            return directory
    return None
