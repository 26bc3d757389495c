# hashcourier/miner/state.py
from __future__ import annotations

import json
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Tuple

from filelock import FileLock

from hashcourier.miner.logging import LogLevel, log_init


class Store:
    """
    Resolved storage locations for one project.

    Layout under `base_dir`:
        projects/<project_id>/storage   mining data (ledgers, caches, config)
        projects/<project_id>/secure    wallet material (never touched here)
    """

    def __init__(self, base_dir: Path | str, project_id: str):
        if not project_id:
            raise ValueError("project_id is required")
        self.base_dir: Path = Path(base_dir).expanduser()
        self.project_id: str = project_id
        self.project_dir: Path = self.base_dir / "projects" / project_id
        self.storage_dir: Path = self.project_dir / "storage"
        self.secure_dir: Path = self.project_dir / "secure"
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        self.secure_dir.mkdir(parents=True, exist_ok=True)

    def path(self, name: str) -> Path:
        return self.storage_dir / name

    def document(self, name: str) -> "JsonDocument":
        return JsonDocument(self.path(name))

    def log(self, name: str) -> "JsonlLog":
        return JsonlLog(self.path(name))

    def migrate_flat_layout(self) -> List[str]:
        """
        Copy files from the legacy flat `<base>/storage` and `<base>/secure`
        directories into this project. Existing files are never overwritten.
        Returns the relative names of copied files.
        """
        copied: List[str] = []
        for legacy, target in (
            (self.base_dir / "storage", self.storage_dir),
            (self.base_dir / "secure", self.secure_dir),
        ):
            if not legacy.is_dir():
                continue
            for src in sorted(legacy.iterdir()):
                dest = target / src.name
                if not src.is_file() or dest.exists():
                    continue
                shutil.copy2(src, dest)
                copied.append(f"{legacy.name}/{src.name}")
        if copied:
            log_init(LogLevel.MEDIUM, "Migrated legacy flat layout", "store", {
                "project": self.project_id,
                "files": len(copied),
            })
        return copied


def _atomic_write_text(path: Path, text: str) -> None:
    """Temp file in the same directory + os.replace."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_fd, tmp_path = tempfile.mkstemp(prefix=path.name + ".", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(tmp_fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)


class JsonDocument:
    """
    A whole-file JSON store with a single-writer discipline.

    Every mutation is a read-modify-write of the full document performed under
    an exclusive lock (thread lock + cross-process file lock), and lands on disk
    through one atomic replace, so readers see either the old or the new file.
    """

    def __init__(self, path: Path):
        self.path: Path = Path(path)
        self._thread_lock = threading.RLock()
        self._file_lock = FileLock(str(self.path) + ".lock")

    @contextmanager
    def exclusive(self) -> Iterator[None]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._thread_lock, self._file_lock:
            yield

    def read(self, default: Callable[[], Any]) -> Any:
        if not self.path.exists():
            return default()
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log_init(LogLevel.HIGH, "Could not load document, using defaults", "store", {
                "file": self.path.name,
                "error": str(e),
            })
            return default()

    def write(self, payload: Any) -> None:
        with self.exclusive():
            _atomic_write_text(self.path, json.dumps(payload, indent=2))

    @contextmanager
    def edit(self, default: Callable[[], Any]) -> Iterator[Any]:
        """
        Yield the current document for in-place mutation; it is written back
        only if the block finishes without raising.
        """
        with self.exclusive():
            data = self.read(default)
            yield data
            _atomic_write_text(self.path, json.dumps(data, indent=2))


class JsonlLog:
    """
    Append-only JSON-lines log. Each append is one `write` of one full line.
    Appends and rewrites share the exclusive lock so a rewrite never drops a
    line appended while it was running.
    """

    def __init__(self, path: Path):
        self.path: Path = Path(path)
        self._thread_lock = threading.RLock()
        self._file_lock = FileLock(str(self.path) + ".lock")

    def append(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, separators=(",", ":")) + "\n"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self._thread_lock, self._file_lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line)

    def _raw_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        content = self.path.read_text(encoding="utf-8")
        return [ln for ln in content.splitlines() if ln.strip()]

    def read(self) -> List[Dict[str, Any]]:
        """Parsed records of a point-in-time read; malformed lines are skipped and logged."""
        records, _bad = self._parse(self._raw_lines())
        return records

    def _parse(self, lines: List[str]) -> Tuple[List[Dict[str, Any]], int]:
        records: List[Dict[str, Any]] = []
        bad = 0
        for ln in lines:
            try:
                obj = json.loads(ln)
            except ValueError:
                obj = None
            if not isinstance(obj, dict):
                bad += 1
                log_init(LogLevel.HIGH, "Skipping malformed log line", "store", {
                    "file": self.path.name,
                    "line": ln[:80],
                })
                continue
            records.append(obj)
        return records, bad

    def remove_where(self, predicate: Callable[[Dict[str, Any]], bool]) -> int:
        """
        Rewrite the log without the records matching `predicate`. Lines that do
        not parse are kept verbatim. Returns the number of records removed.
        """
        with self._thread_lock, self._file_lock:
            lines = self._raw_lines()
            kept: List[str] = []
            removed = 0
            for ln in lines:
                try:
                    obj = json.loads(ln)
                except ValueError:
                    kept.append(ln)
                    continue
                if isinstance(obj, dict) and predicate(obj):
                    removed += 1
                else:
                    kept.append(ln)
            if removed:
                _atomic_write_text(self.path, "".join(ln + "\n" for ln in kept))
            return removed
