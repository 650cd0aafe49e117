"""
Durable JSON state for the conflict-resolution workflow.

Two files live in the working directory across runs:

- ``.validation-state.json``: the queue of unresolved :class:`DuplicateRecord`
  entries written by the validator
- ``.page-name-fixes.json``: the map of fix key (source-relative path or
  canonical title) to fixed title written by the name fixer

Writes go to a temporary file that is then renamed over the target, so a
crash never leaves a half-written state file behind.
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

from models import DuplicateRecord

logger = logging.getLogger('wiki_confluence_migrator.validation.state_store')

DEFAULT_STATE_FILE = '.validation-state.json'
DEFAULT_FIXES_FILE = '.page-name-fixes.json'


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(f"Error loading {path}, starting from an empty state: {e}")
        return default


def _write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=str(path.parent))
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class ValidationState:
    """Persisted queue of unresolved title collisions."""

    def __init__(self, path: Union[str, Path] = DEFAULT_STATE_FILE):
        self.path = Path(path)

    def load(self) -> List[DuplicateRecord]:
        """Load the queue; a missing or unreadable file is an empty queue."""
        data = _read_json(self.path, [])
        if isinstance(data, dict):
            data = data.get('duplicates', [])

        records = []
        for item in data:
            try:
                records.append(DuplicateRecord.from_dict(item))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Ignoring malformed validation record {item!r}: {e}")
        return records

    def save(self, records: List[DuplicateRecord]) -> None:
        """Replace the queue on disk."""
        _write_json_atomic(self.path, [record.to_dict() for record in records])
        logger.info(f"Validation state saved to {self.path} ({len(records)} conflicts)")

    def clear(self) -> None:
        """Remove the queue file; a missing file reads back as an empty queue."""
        if self.path.exists():
            self.path.unlink()
            logger.info("Validation state cleared")

    def exists(self) -> bool:
        return self.path.exists()


class PageNameFixes:
    """Persisted map of fix key to fixed page title."""

    def __init__(self, path: Union[str, Path] = DEFAULT_FIXES_FILE):
        self.path = Path(path)

    def load(self) -> Dict[str, str]:
        data = _read_json(self.path, {})
        if not isinstance(data, dict):
            logger.warning(f"Ignoring {self.path}: expected a JSON object")
            return {}
        return {str(key): str(value) for key, value in data.items()}

    def save(self, fixes: Dict[str, str]) -> None:
        _write_json_atomic(self.path, dict(sorted(fixes.items())))
        logger.info(f"Page name fixes saved to {self.path} ({len(fixes)} entries)")

    def update(self, new_fixes: Dict[str, str]) -> Dict[str, str]:
        """Merge ``new_fixes`` into the stored map and return the result."""
        fixes = self.load()
        fixes.update(new_fixes)
        self.save(fixes)
        return fixes


__all__ = ['ValidationState', 'PageNameFixes', 'DEFAULT_STATE_FILE', 'DEFAULT_FIXES_FILE']
