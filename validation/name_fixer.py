"""Derive non-colliding page titles for recorded duplicates."""

import logging
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional, Set, Tuple

from converters.path_sanitizer import decode_url_encoded, resolve_page_title, sanitize_page_title
from models import DuplicateReason, DuplicateRecord, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.validation.name_fixer')


def generate_fixed_page_name(original_title: str, project_name: str) -> str:
    """
    Prefix a title with ``"{project_name} - "``.

    Titles that already carry the prefix are returned unchanged.
    """
    title = sanitize_page_title(original_title)
    prefix = f"{project_name} - "
    if title.startswith(prefix):
        return title
    return sanitize_page_title(f"{prefix}{title}")


class NameFixer:
    """Turns a duplicate queue into persisted name fixes."""

    def __init__(self, config: Dict[str, Any], logger: logging.Logger = None):
        """
        Initialize name fixer.

        Args:
            config: Configuration dictionary (``project.name`` is the title prefix)
            logger: Optional logger instance

        Raises:
            ValueError: If no project name is configured
        """
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.validation.name_fixer')
        self.project_name = (config.get('project', {}).get('name') or '').strip()
        if not self.project_name:
            raise ValueError("project.name is required to fix page names (set PROJECT_NAME)")

    def fix(
        self,
        tree: WikiTree,
        duplicates: List[DuplicateRecord],
        fixes: Optional[Dict[str, str]] = None
    ) -> Tuple[Dict[str, str], List[DuplicateRecord]]:
        """
        Compute fixed titles for ``duplicates``.

        Source duplicates are keyed by the page's relative path, since both
        pages share the title; target conflicts are keyed by the title.

        Args:
            tree: Parsed wiki tree
            duplicates: Conflict queue
            fixes: Fixes applied in earlier runs

        Returns:
            Tuple of (new fixes, records that could not be fixed)
        """
        existing = dict(fixes or {})
        taken: Set[str] = {resolve_page_title(page, existing) for page in tree.walk()}
        taken.update(existing.values())

        new_fixes: Dict[str, str] = {}
        remaining: List[DuplicateRecord] = []

        for record in duplicates:
            if record.reason is DuplicateReason.DUPLICATE_IN_SOURCE:
                key = record.path
            else:
                key = record.title

            if not key:
                self.logger.warning(f"Cannot fix '{record.title}': no source path recorded")
                remaining.append(record)
                continue

            if key in existing or key in new_fixes:
                self.logger.debug(f"'{record.title}' already has a fix under '{key}'")
                continue

            fixed = self._unique_title(record, taken)
            taken.add(fixed)
            new_fixes[key] = fixed
            self.logger.info(f"Fixed page name: '{record.title}' -> '{fixed}'")

        return new_fixes, remaining

    def _unique_title(self, record: DuplicateRecord, taken: Set[str]) -> str:
        candidate = generate_fixed_page_name(record.title, self.project_name)
        if candidate not in taken:
            return candidate

        parent = PurePosixPath(record.path).parent.name if record.path else ''
        if parent:
            base = generate_fixed_page_name(f"{decode_url_encoded(parent)} - {record.title}", self.project_name)
            if base not in taken:
                return base
        else:
            base = candidate

        suffix = 2
        while f"{base} ({suffix})" in taken:
            suffix += 1
        return f"{base} ({suffix})"


__all__ = ['NameFixer', 'generate_fixed_page_name']
