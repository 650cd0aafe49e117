"""
Migration orchestrator for coordinating the complete migration pipeline.

This module provides the central coordinator that sequences all migration phases:
Pre-flight → Parse → Index attachments → Validate → Publish → Report. Conflicts
found by validation stop the run before anything is written to Confluence;
the persisted queue and name fixes carry the state between runs.
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from confluence_client import (
    ConfluenceClient,
    ConfluenceNotFoundError,
    ConfluenceRateLimitError,
    retry_with_backoff,
)
from converters.path_sanitizer import canonical_title
from exporters.local_preview import LocalPreviewExporter
from fetchers.attachment_index import AttachmentIndex
from fetchers.wiki_parser import WikiTreeParser
from importers.confluence_publisher import ConfluencePublisher
from logger import log_section
from models import DuplicateRecord, WikiTree
from orchestrator.migration_report import MigrationReport
from validation.name_fixer import NameFixer
from validation.page_validator import PageValidator
from validation.state_store import PageNameFixes, ValidationState

logger = logging.getLogger('wiki_confluence_migrator.orchestrator')

T = TypeVar('T')


class MigrationOrchestrator:
    """Central coordinator for the migrate, validate, fix-names and local commands."""

    def __init__(self, config: Dict[str, Any], client=None, logger: Optional[logging.Logger] = None):
        """
        Initialize migration orchestrator.

        Args:
            config: Configuration dictionary
            client: ConfluenceClient (created from ``config`` on first use)
            logger: Optional logger instance
        """
        self.config = config
        self._client = client
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.orchestrator')

        migration = config.get('migration', {})
        backoff = migration.get('backoff', {})
        self.retries = backoff.get('retries', 3)
        self.delay = backoff.get('delay', 1.0)
        self.report_path = migration.get('report_path')

        self.validation_state = ValidationState(migration.get('state_file') or '.validation-state.json')
        self.name_fixes = PageNameFixes(migration.get('fixes_file') or '.page-name-fixes.json')

        self.report_generator = MigrationReport()
        self.phase_stats: Dict[str, Any] = {}

    @property
    def client(self):
        if self._client is None:
            self._client = ConfluenceClient.from_config(self.config)
        return self._client

    @property
    def space_key(self) -> Optional[str]:
        return self.config.get('confluence', {}).get('space_key')

    def _retry(self, func: Callable[[], T]) -> T:
        return retry_with_backoff(func, retries=self.retries, delay=self.delay)

    def run_migration(
        self,
        single: Optional[str] = None,
        parent_id: Optional[str] = None,
        clean: bool = False,
        auto_fix: bool = False
    ) -> Dict[str, Any]:
        """
        Validate the wiki and publish it when no conflicts remain.

        Args:
            single: Title of the page whose subtree alone is published
            parent_id: Root parent override
            clean: Delete the root parent's existing children first
            auto_fix: Apply name fixes in-process and re-validate once

        Returns:
            Migration report
        """
        self.logger.info("Starting migration")
        start_time = time.time()
        self.phase_stats = {}
        tree = None
        conflicts: List[DuplicateRecord] = []
        publisher = None
        extra: Dict[str, Any] = {}

        try:
            self._execute_preflight()
            tree = self._execute_parse()
            attachment_index = self._execute_attachment_index(tree)

            conflicts, fixes, applied = self._execute_reconcile(tree, auto_fix)
            if applied:
                extra['fixes_applied'] = applied

            if conflicts:
                self.logger.error(
                    f"{len(conflicts)} title conflicts block publication; "
                    f"queue saved to {self.validation_state.path}"
                )
                return self._finish('migrate', tree, start_time, conflicts=conflicts, extra=extra)

            publish_tree = self._select_subtree(tree, single) if single else tree
            root_parent = str(parent_id or self.config.get('confluence', {}).get('parent_page_id'))

            publisher = ConfluencePublisher(self.client, self.config, attachment_index, fixes)
            if clean:
                self.phase_stats['clean'] = {'deleted': self._retry(lambda: publisher.clean_parent(root_parent))}

            self.phase_stats['placeholders'] = self._retry(
                lambda: publisher.create_placeholders(publish_tree, root_parent)
            )
            self.phase_stats['content'] = self._retry(
                lambda: publisher.publish_content(publish_tree, root_parent)
            )
            tree = publish_tree

        except ConfluenceRateLimitError as e:
            self.logger.error(f"Rate limit still exceeded after {self.retries} attempts: {e}")
            return self._finish(
                'migrate', tree, start_time,
                publisher_summary=publisher.summary() if publisher else None,
                error=str(e), extra=extra
            )

        return self._finish(
            'migrate', tree, start_time,
            publisher_summary=publisher.summary(), extra=extra
        )

    def validate_only(self) -> Dict[str, Any]:
        """Run pre-flight and validation, persist the queue, publish nothing."""
        self.logger.info("Starting validation")
        start_time = time.time()
        self.phase_stats = {}

        self._execute_preflight()
        tree = self._execute_parse()
        self._execute_attachment_index(tree)
        conflicts, _, _ = self._execute_reconcile(tree, auto_fix=False)

        return self._finish('validate', tree, start_time, conflicts=conflicts)

    def fix_names(self) -> Dict[str, Any]:
        """
        Apply NameFixer to the persisted queue.

        Works offline: the tree is re-parsed for folder names and sibling
        titles, but Confluence is not contacted. Run ``validate`` or
        ``migrate`` afterwards to confirm the fixes clear every conflict.
        """
        self.logger.info("Applying name fixes")
        start_time = time.time()
        self.phase_stats = {}

        tree = self._execute_parse()
        queue = self.validation_state.load()
        if not queue:
            self.logger.info(f"No pending conflicts in {self.validation_state.path}")
            return self._finish('fix-names', tree, start_time)

        log_section("Name Fixes")
        fixer = NameFixer(self.config)
        new_fixes, remaining = fixer.fix(tree, queue, self.name_fixes.load())
        self.name_fixes.update(new_fixes)

        if remaining:
            self.validation_state.save(remaining)
        else:
            self.validation_state.clear()

        self.phase_stats['name_fixes'] = {'applied': len(new_fixes), 'remaining': len(remaining)}
        return self._finish(
            'fix-names', tree, start_time,
            conflicts=remaining, extra={'fixes_applied': new_fixes}
        )

    def run_local(self, output: Optional[str] = None) -> Dict[str, Any]:
        """
        Write the offline HTML preview.

        Args:
            output: Output directory override

        Returns:
            Migration report with the preview statistics
        """
        self.logger.info("Starting local preview")
        start_time = time.time()
        self.phase_stats = {}

        if output:
            self.config.setdefault('local', {})['output_directory'] = output

        tree = self._execute_parse()
        attachment_index = self._execute_attachment_index(tree)

        log_section("Local Preview")
        exporter = LocalPreviewExporter(self.config, fixes=self.name_fixes.load())
        self.phase_stats['local_preview'] = exporter.export(tree, attachment_index)

        return self._finish(
            'local', tree, start_time,
            publisher_summary={'unresolved_links': exporter.unresolved_links},
            extra={'output_directory': self.phase_stats['local_preview']['output_directory']}
        )

    def _execute_preflight(self) -> None:
        """Check credentials and the target space before anything else."""
        log_section("Pre-flight")
        space_key = self.space_key
        try:
            space = self._retry(lambda: self.client.get_space(space_key))
        except ConfluenceNotFoundError:
            raise ValueError(f"Confluence space '{space_key}' not found")

        self.phase_stats['preflight'] = {'space': space.get('key', space_key), 'name': space.get('name')}
        self.logger.info(f"Connected to space '{space_key}' ({space.get('name', 'unnamed')})")

    def _execute_parse(self) -> WikiTree:
        log_section("Parsing Wiki")
        root_dir = self.config.get('wiki', {}).get('root_dir')
        parser = WikiTreeParser(self.config)

        tree = self._retry(lambda: parser.parse(root_dir))
        self.phase_stats['parse'] = dict(tree.metadata.get('stats', {}))
        self.logger.info(f"Parsed {tree.count_pages()} pages from {root_dir}")
        return tree

    def _execute_attachment_index(self, tree: WikiTree) -> AttachmentIndex:
        directories: List[str] = []
        configured = self.config.get('wiki', {}).get('attachments_dir')
        if configured and Path(configured).is_dir():
            directories.append(configured)
        for attachment_dir in tree.attachment_directories:
            directories.append(attachment_dir.source_path)

        seen = set()
        unique = []
        for directory in directories:
            key = str(Path(directory).resolve())
            if key not in seen:
                seen.add(key)
                unique.append(directory)

        index = AttachmentIndex.build(unique)
        self.phase_stats['attachment_index'] = dict(index.stats)
        self.logger.info(f"Indexed {len(index)} attachments from {len(unique)} directories")
        return index

    def _execute_reconcile(
        self, tree: WikiTree, auto_fix: bool
    ) -> Tuple[List[DuplicateRecord], Dict[str, str], Dict[str, str]]:
        """
        Drive the conflict state machine one step.

        Returns:
            (remaining conflicts, effective name fixes, fixes applied in this run)
        """
        log_section("Validation")
        fixes = self.name_fixes.load()
        previous = self.validation_state.load()
        validator = PageValidator(self.client, self.config)

        if previous:
            self.logger.info(f"Re-validating {len(previous)} queued conflicts")
            conflicts = self._retry(lambda: validator.revalidate(tree, previous, fixes))
        else:
            conflicts = self._retry(lambda: validator.validate(tree, fixes))

        applied: Dict[str, str] = {}
        if conflicts and auto_fix:
            self.logger.info(f"Auto-fixing {len(conflicts)} conflicts")
            new_fixes, _ = NameFixer(self.config).fix(tree, conflicts, fixes)
            fixes = self.name_fixes.update(new_fixes)
            applied = new_fixes
            conflicts = self._retry(lambda: validator.validate(tree, fixes))

        if conflicts:
            self.validation_state.save(conflicts)
        else:
            self.validation_state.clear()

        self.phase_stats['validation'] = dict(validator.stats)
        return conflicts, fixes, applied

    def _select_subtree(self, tree: WikiTree, title: str) -> WikiTree:
        page = tree.find_page(title)
        if page is None:
            wanted = canonical_title(title)
            page = next((p for p in tree.walk() if canonical_title(p.title) == wanted), None)
        if page is None:
            raise ValueError(f"Page '{title}' not found in wiki")

        subtree = tree.subtree(page)
        self.logger.info(f"Publishing only '{page.title}' and {subtree.count_pages() - 1} descendants")
        return subtree

    def _finish(
        self,
        command: str,
        tree: Optional[WikiTree],
        start_time: float,
        conflicts: Optional[List[DuplicateRecord]] = None,
        publisher_summary: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        duration = time.time() - start_time
        report = self._generate_report(command, tree, duration, conflicts, publisher_summary, error, extra)
        self.logger.info(f"{command} complete in {duration:.2f}s")
        return report

    def _generate_report(
        self,
        command: str,
        tree: Optional[WikiTree],
        duration: float,
        conflicts: Optional[List[DuplicateRecord]],
        publisher_summary: Optional[Dict[str, Any]],
        error: Optional[str],
        extra: Optional[Dict[str, Any]]
    ) -> Dict[str, Any]:
        """Generate the report and export the JSON copy when configured."""
        report = self.report_generator.generate_report(
            command, tree, self.phase_stats, duration,
            conflicts=conflicts,
            publisher_summary=publisher_summary,
            error=error,
            extra=extra
        )

        if self.report_path:
            try:
                self.report_generator.export_json_report(report, self.report_path)
            except OSError as e:
                self.logger.warning(f"Could not write JSON report to {self.report_path}: {e}")

        return report


__all__ = ['MigrationOrchestrator']
