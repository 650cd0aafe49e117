"""
Duplicate-title detection against the source tree and the target space.

A page conflicts when its resolved Confluence title was already produced
by an earlier page of the same tree (``duplicate-in-source``) or when the
target space already holds a page with that title that this tool did not
create (``exists-in-target``). Source duplicates are checked first, so a
page yields at most one record.
"""

import logging
from collections import Counter
from typing import Any, Dict, List, Optional, Set, Tuple

from confluence_client import ConfluenceApiError, ConfluenceAuthError, ConfluenceRateLimitError
from converters.path_sanitizer import is_fixed, resolve_page_title
from models import DuplicateReason, DuplicateRecord, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.validation.page_validator')


class PageValidator:
    """Compares a parsed wiki tree with the pages already in the target space."""

    def __init__(self, client, config: Dict[str, Any], logger: logging.Logger = None):
        """
        Initialize page validator.

        Args:
            client: ConfluenceClient (or compatible) used for title lookups
            config: Configuration dictionary
            logger: Optional logger instance
        """
        self.client = client
        self.config = config
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.validation.page_validator')

        confluence = config.get('confluence', {})
        self.space_key = confluence.get('space_key')
        self.parent_page_id = str(confluence.get('parent_page_id') or '')
        self.ignore_owned_pages = config.get('migration', {}).get('ignore_owned_pages', True)

        self.stats = {
            'pages_checked': 0,
            'duplicates_in_source': 0,
            'existing_in_target': 0,
            'owned_pages_ignored': 0,
            'fixed_pages_skipped': 0,
            'lookup_errors': 0,
            'stale_records_pruned': 0,
        }

    def validate(self, tree: WikiTree, fixes: Optional[Dict[str, str]] = None) -> List[DuplicateRecord]:
        """
        Find every title collision in ``tree``.

        Args:
            tree: Parsed wiki tree
            fixes: Persisted name fixes; fixed pages are not looked up in the target again

        Returns:
            List of DuplicateRecord, in tree pre-order

        Raises:
            ConfluenceAuthError: If the credentials are rejected
            ConfluenceRateLimitError: If the target keeps rate limiting lookups
        """
        fixes = fixes or {}
        seen: Dict[str, str] = {}
        duplicates: List[DuplicateRecord] = []

        for page in tree.walk():
            self.stats['pages_checked'] += 1
            title = resolve_page_title(page, fixes)

            if title in seen:
                self.logger.warning(
                    f"Duplicate title '{title}' in wiki: {page.relative_path} (first seen at {seen[title]})"
                )
                self.stats['duplicates_in_source'] += 1
                duplicates.append(DuplicateRecord(
                    title=title,
                    reason=DuplicateReason.DUPLICATE_IN_SOURCE,
                    path=page.relative_path,
                ))
                continue

            seen[title] = page.relative_path

            if is_fixed(page, fixes):
                self.logger.info(f"Skipping target lookup for fixed page '{page.title}' -> '{title}'")
                self.stats['fixed_pages_skipped'] += 1
                continue

            remote_id = self.find_conflicting_page(title)
            if remote_id:
                self.logger.warning(f"Page '{title}' already exists in space {self.space_key} (id {remote_id})")
                self.stats['existing_in_target'] += 1
                duplicates.append(DuplicateRecord(
                    title=title,
                    reason=DuplicateReason.EXISTS_IN_TARGET,
                    path=page.relative_path,
                    remote_id=remote_id,
                ))

        self.logger.info(
            f"Validation checked {self.stats['pages_checked']} pages, found {len(duplicates)} conflicts"
        )
        return duplicates

    def revalidate(
        self,
        tree: WikiTree,
        previous: List[DuplicateRecord],
        fixes: Optional[Dict[str, str]] = None
    ) -> List[DuplicateRecord]:
        """
        Re-check a persisted conflict queue, then validate the whole tree.

        Each previously recorded conflict is checked on its own first: a
        source duplicate is stale once fewer than two pages resolve to its
        title, a target conflict is stale once the source page is gone, has
        been fixed, or the remote page no longer exists. Stale records are
        logged and dropped; the returned queue is the fresh validation.

        Returns:
            Current list of DuplicateRecord
        """
        fixes = fixes or {}
        kept, pruned = self._check_previous(tree, previous, fixes)
        for record in pruned:
            self.logger.info(
                f"Conflict resolved since last run: '{record.title}' ({record.reason.value}) at {record.path}"
            )
        self.stats['stale_records_pruned'] += len(pruned)

        if kept:
            self.logger.info(f"{len(kept)} previous conflicts still present")

        return self.validate(tree, fixes)

    def find_conflicting_page(self, title: str) -> Optional[str]:
        """
        Remote id of a page titled ``title`` that this tool does not own.

        Lookup failures other than authentication and rate limiting are
        logged and treated as "no conflict".
        """
        expand = 'ancestors' if self.ignore_owned_pages else None
        try:
            remote = self.client.get_page_by_title(self.space_key, title, expand=expand)
        except (ConfluenceAuthError, ConfluenceRateLimitError):
            raise
        except ConfluenceApiError as e:
            self.stats['lookup_errors'] += 1
            self.logger.warning(f"Error checking page '{title}': {e}")
            return None

        if not remote:
            return None

        if self.ignore_owned_pages and self._is_owned(remote):
            self.stats['owned_pages_ignored'] += 1
            self.logger.debug(f"Page '{title}' was published by an earlier run, not a conflict")
            return None

        return str(remote.get('id'))

    def _is_owned(self, remote: Dict[str, Any]) -> bool:
        if not self.parent_page_id:
            return False
        ancestor_ids = {str(a.get('id')) for a in remote.get('ancestors', []) or []}
        return self.parent_page_id in ancestor_ids

    def _check_previous(
        self,
        tree: WikiTree,
        previous: List[DuplicateRecord],
        fixes: Dict[str, str]
    ) -> Tuple[List[DuplicateRecord], List[DuplicateRecord]]:
        titles = Counter(resolve_page_title(page, fixes) for page in tree.walk())
        unfixed_paths: Set[str] = {
            page.relative_path for page in tree.walk() if not is_fixed(page, fixes)
        }

        kept: List[DuplicateRecord] = []
        pruned: List[DuplicateRecord] = []
        for record in previous:
            if record.reason is DuplicateReason.DUPLICATE_IN_SOURCE:
                still_valid = titles[record.title] > 1
            else:
                still_valid = (
                    record.path in unfixed_paths
                    and titles[record.title] > 0
                    and self.find_conflicting_page(record.title) is not None
                )
            (kept if still_valid else pruned).append(record)
        return kept, pruned


__all__ = ['PageValidator']
