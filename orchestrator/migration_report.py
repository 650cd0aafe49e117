"""
Migration report generator for aggregating statistics and formatting reports.

This module collects phase statistics, conflicts, failed pages, skipped
subtrees, unresolved links and attachment failures into one report, and
formats it for console display and JSON export.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import DuplicateRecord, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.orchestrator.report')

STATUS_SUCCESS = 'success'
STATUS_PARTIAL = 'partial'
STATUS_CONFLICTS = 'conflicts'
STATUS_FAILED = 'failed'


class MigrationReport:
    """Builds the end-of-run report shown to the operator."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize migration report generator.

        Args:
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.orchestrator.report')

    def generate_report(
        self,
        command: str,
        tree: Optional[WikiTree],
        phase_stats: Dict[str, Any],
        migration_duration: float,
        conflicts: Optional[List[DuplicateRecord]] = None,
        publisher_summary: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Generate the migration report.

        Args:
            command: CLI command that produced the run (migrate, validate, ...)
            tree: Parsed wiki tree, if parsing got that far
            phase_stats: Statistics from all phases
            migration_duration: Total duration in seconds
            conflicts: Unresolved title collisions
            publisher_summary: ``ConfluencePublisher.summary()`` output
            error: Error that stopped the run, if any
            extra: Additional top-level sections (fixes applied, output paths)

        Returns:
            Migration report dictionary
        """
        conflicts = conflicts or []
        published = publisher_summary or {}

        report = {
            'command': command,
            'summary': self._build_summary(tree, phase_stats, migration_duration, conflicts, published, error),
            'phases': phase_stats,
            'conflicts': [record.to_dict() for record in conflicts],
            'failed_pages': published.get('failed_pages', []),
            'skipped_subtrees': published.get('skipped_subtrees', []),
            'unresolved_links': published.get('unresolved_links', []),
            'attachment_failures': published.get('attachment_failures', []),
            'content_errors': published.get('content_errors', []),
            'timestamp': datetime.now().isoformat()
        }
        if error:
            report['error'] = error
        if extra:
            report.update(extra)

        self.logger.info(
            f"Report generated: status={report['summary']['status']}, "
            f"{report['summary']['pages']} pages, {len(conflicts)} conflicts"
        )
        return report

    def _build_summary(
        self,
        tree: Optional[WikiTree],
        phase_stats: Dict[str, Any],
        duration: float,
        conflicts: List[DuplicateRecord],
        published: Dict[str, Any],
        error: Optional[str]
    ) -> Dict[str, Any]:
        stats = published.get('stats', {})
        placeholders = stats.get('placeholders', {})
        content = stats.get('content', {})
        attachments = published.get('attachments', {})

        summary = {
            'pages': tree.count_pages() if tree else 0,
            'attachments_indexed': phase_stats.get('attachment_index', {}).get('files_indexed', 0),
            'conflicts': len(conflicts),
            'pages_created': placeholders.get('created', 0),
            'pages_reused': placeholders.get('reused', 0),
            'pages_updated': content.get('updated', 0),
            'pages_failed': len(published.get('failed_pages', [])),
            'pages_skipped': placeholders.get('skipped', 0),
            'attachments_uploaded': attachments.get('uploaded', 0),
            'attachments_skipped': attachments.get('skipped_existing', 0),
            'attachments_failed': attachments.get('failed', 0),
            'unresolved_links': len(published.get('unresolved_links', [])),
            'duration_seconds': duration,
            'duration_formatted': self._format_duration(duration)
        }
        summary['status'] = self._status(summary, conflicts, error)
        return summary

    @staticmethod
    def _status(summary: Dict[str, Any], conflicts: List[DuplicateRecord], error: Optional[str]) -> str:
        if error:
            return STATUS_FAILED
        if conflicts:
            return STATUS_CONFLICTS
        if summary['pages_failed'] or summary['pages_skipped'] or summary['attachments_failed']:
            return STATUS_PARTIAL
        return STATUS_SUCCESS

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            minutes = int(seconds // 60)
            secs = int(seconds % 60)
            return f"{minutes}m {secs}s"
        else:
            hours = int(seconds // 3600)
            minutes = int((seconds % 3600) // 60)
            secs = int(seconds % 60)
            return f"{hours}h {minutes}m {secs}s"

    def format_console_report(self, report: Dict[str, Any]) -> str:
        """
        Format report for console display.

        Args:
            report: Migration report dictionary

        Returns:
            Formatted console string
        """
        sections = []

        sections.append("=" * 60)
        sections.append(f"MIGRATION REPORT ({report.get('command', 'migrate')})")
        sections.append("=" * 60)
        sections.append("")

        summary = report.get('summary', {})
        sections.append("Summary:")
        sections.append(f"  Status:      {summary.get('status', 'unknown').upper()}")
        sections.append(f"  Pages:       {summary.get('pages', 0)}")
        sections.append(f"  Attachments: {summary.get('attachments_indexed', 0)} indexed")
        sections.append(f"  Duration:    {summary.get('duration_formatted', '0s')}")
        sections.append("")

        if report.get('command') == 'migrate' and summary.get('status') != STATUS_CONFLICTS:
            sections.append("Publication:")
            sections.append("-" * 60)
            sections.append(
                f"  Pages: {summary.get('pages_created', 0)} created, "
                f"{summary.get('pages_reused', 0)} reused, "
                f"{summary.get('pages_updated', 0)} updated, "
                f"{summary.get('pages_failed', 0)} failed, "
                f"{summary.get('pages_skipped', 0)} skipped"
            )
            sections.append(
                f"  Attachments: {summary.get('attachments_uploaded', 0)} uploaded, "
                f"{summary.get('attachments_skipped', 0)} already present, "
                f"{summary.get('attachments_failed', 0)} failed"
            )
            sections.append("")

        conflicts = report.get('conflicts', [])
        if conflicts:
            sections.append(f"Conflicts ({len(conflicts)}):")
            sections.append("-" * 60)
            for conflict in conflicts:
                remote = f" [remote id {conflict['remoteId']}]" if conflict.get('remoteId') else ''
                sections.append(f"  - {conflict['title']}: {conflict['reason']} ({conflict.get('path', '')}){remote}")
            sections.append("")
            sections.append("  Run 'fix-names' or 'migrate --auto-fix' to prefix the conflicting titles.")
            sections.append("")

        fixes = report.get('fixes_applied')
        if fixes:
            sections.append(f"Name Fixes Applied ({len(fixes)}):")
            sections.append("-" * 60)
            for key, title in fixes.items():
                sections.append(f"  - {key} -> {title}")
            sections.append("")

        failed = report.get('failed_pages', [])
        if failed:
            sections.append(f"Failed Pages ({len(failed)}):")
            sections.append("-" * 60)
            for item in failed:
                sections.append(f"  - {item['title']} ({item['phase']}): {item['error']}")
            sections.append("")

        skipped = report.get('skipped_subtrees', [])
        if skipped:
            sections.append("Skipped Subtrees (manual follow-up):")
            sections.append("-" * 60)
            for item in skipped:
                sections.append(f"  - below '{item['title']}': {', '.join(item['pages'])}")
            sections.append("")

        links = report.get('unresolved_links', [])
        if links:
            sections.append(f"Unresolved Links ({len(links)}):")
            sections.append("-" * 60)
            for item in links[:50]:
                sections.append(f"  - {item['page']} -> {item['target']}")
            if len(links) > 50:
                sections.append(f"  ... and {len(links) - 50} more")
            sections.append("")

        attachment_failures = report.get('attachment_failures', [])
        if attachment_failures:
            sections.append(f"Attachment Failures ({len(attachment_failures)}):")
            sections.append("-" * 60)
            for item in attachment_failures:
                sections.append(f"  - {item['page']}: {item['attachment']} ({item['error']})")
            sections.append("")

        if report.get('error'):
            sections.append(f"Error: {report['error']}")
            sections.append("")

        sections.append("=" * 60)

        return "\n".join(sections)

    def export_json_report(self, report: Dict[str, Any], filepath: str) -> None:
        """
        Export report to JSON file.

        Args:
            report: Migration report dictionary
            filepath: Output file path

        Raises:
            OSError: If the file cannot be written
        """
        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(report, f, indent=2, ensure_ascii=False, default=str)

        self.logger.info(f"JSON report exported to {filepath}")


__all__ = ['MigrationReport', 'STATUS_SUCCESS', 'STATUS_PARTIAL', 'STATUS_CONFLICTS', 'STATUS_FAILED']
