"""
Two-phase publication of a wiki tree to Confluence.

Phase 1 (placeholder pass) walks the tree in pre-order and makes sure every
page exists, creating a placeholder under its parent's id when needed, and
records ``title -> id`` before descending. Phase 2 (content pass) walks the
tree again in the same order, uploads the attachments each page refers to,
transforms its Markdown with the now complete id map and updates the page.

A page that cannot be created in phase 1 takes its subtree with it: the
children are not attempted and are reported for manual follow-up. A page
whose update fails in phase 2 is reported and its children still publish,
since their parent already exists. Authentication and rate-limit errors
are never handled per page; they abort the pass so the caller can stop or
retry it as a whole.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Set

from confluence_client import ConfluenceAuthError, ConfluenceRateLimitError
from converters.content_transformer import ContentTransformer
from converters.macro_handler import MacroHandler
from converters.path_sanitizer import canonical_title, resolve_page_title
from importers.attachment_uploader import AttachmentUploader
from importers.page_id_map import PageIdMap
from logger import ProgressTracker, log_section
from models import PageKind, WikiPage, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.importers.confluence_publisher')

PLACEHOLDER_BODY = '<p>This page is being migrated from Azure DevOps Wiki.</p>'

# Errors that must abort a whole pass instead of a single page
FATAL_ERRORS = (ConfluenceAuthError, ConfluenceRateLimitError)


class ConfluencePublisher:
    """Publishes a :class:`WikiTree` with the placeholder/content protocol."""

    def __init__(
        self,
        client,
        config: Dict[str, Any],
        attachment_index=None,
        fixes: Optional[Dict[str, str]] = None,
        transformer: Optional[ContentTransformer] = None,
        uploader: Optional[AttachmentUploader] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the publisher.

        Args:
            client: ConfluenceClient (or compatible)
            config: Configuration dictionary
            attachment_index: AttachmentIndex for attachment lookups and uploads
            fixes: Persisted page name fixes
            transformer: ContentTransformer (defaults to one linking through ``client.page_url``)
            uploader: AttachmentUploader (defaults to one built from ``config``)
            logger: Optional logger instance
        """
        self.client = client
        self.config = config
        self.attachment_index = attachment_index
        self.fixes = dict(fixes or {})
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.importers.confluence_publisher')

        confluence = config.get('confluence', {})
        self.space_key = confluence.get('space_key')
        self.root_parent_id = confluence.get('parent_page_id')
        self.prefer_blob_urls = config.get('migration', {}).get('prefer_blob_urls', False)

        self.transformer = transformer or ContentTransformer(link_builder=client.page_url)
        self.uploader = uploader or AttachmentUploader(config, client)
        self.macro_handler = MacroHandler()
        self.page_ids = PageIdMap()

        self.stats: Dict[str, Dict[str, int]] = {}
        self.failed_pages: List[Dict[str, Any]] = []
        self.skipped_subtrees: List[Dict[str, Any]] = []
        self.unresolved_links: List[Dict[str, str]] = []
        self.content_errors: List[Dict[str, str]] = []

    def title_for(self, page: WikiPage) -> str:
        """Title a page is published under, after name fixes."""
        return resolve_page_title(page, self.fixes)

    def create_placeholders(self, tree: WikiTree, parent_id: Optional[str] = None) -> Dict[str, int]:
        """
        Phase 1: ensure every page exists and record its id.

        Args:
            tree: Tree to publish
            parent_id: Remote id of the root parent (defaults to the configured parent)

        Returns:
            Phase statistics
        """
        log_section("Phase 1: Creating placeholder pages")
        self._start_phase('placeholders', ['created', 'reused', 'failed', 'skipped'])

        root_parent = str(parent_id or self.root_parent_id)
        with ProgressTracker(tree.count_pages(), "placeholder pages") as progress:
            for page in tree.pages:
                self._ensure_page(page, root_parent, progress)

        self.logger.info(f"Phase 1 complete: {self.stats['placeholders']}")
        return dict(self.stats['placeholders'])

    def publish_content(self, tree: WikiTree, parent_id: Optional[str] = None) -> Dict[str, int]:
        """
        Phase 2: upload attachments, resolve content and update every page.

        Args:
            tree: Tree to publish (the same tree passed to phase 1)
            parent_id: Remote id of the root parent (defaults to the configured parent)

        Returns:
            Phase statistics
        """
        log_section("Phase 2: Publishing page content")
        self._start_phase('content', ['updated', 'failed', 'skipped', 'broken_links', 'content_errors'])

        root_parent = str(parent_id or self.root_parent_id)
        with ProgressTracker(tree.count_pages(), "pages") as progress:
            for page in tree.pages:
                self._publish_page(page, root_parent, progress)

        self.logger.info(f"Phase 2 complete: {self.stats['content']}")
        return dict(self.stats['content'])

    def publish(self, tree: WikiTree, parent_id: Optional[str] = None) -> Dict[str, Dict[str, int]]:
        """Run both phases back to back."""
        self.create_placeholders(tree, parent_id)
        self.publish_content(tree, parent_id)
        return {phase: dict(values) for phase, values in self.stats.items()}

    def clean_parent(self, parent_id: Optional[str] = None) -> int:
        """
        Delete every existing page below the root parent.

        Returns:
            Number of pages deleted
        """
        root_parent = str(parent_id or self.root_parent_id)
        log_section(f"Cleaning pages under {root_parent}")

        deleted = 0
        for child in self.client.get_child_pages(root_parent):
            deleted += self._delete_tree(str(child['id']), child.get('title', ''))

        self.logger.info(f"Deleted {deleted} existing pages under {root_parent}")
        return deleted

    def _delete_tree(self, page_id: str, title: str) -> int:
        deleted = 0
        for child in self.client.get_child_pages(page_id):
            deleted += self._delete_tree(str(child['id']), child.get('title', ''))
        self.client.delete_page(page_id)
        self.logger.debug(f"Deleted page '{title}' ({page_id})")
        return deleted + 1

    def _ensure_page(self, page: WikiPage, parent_id: str, progress: ProgressTracker) -> None:
        title = self.title_for(page)

        try:
            existing = self.client.get_page_by_title(self.space_key, title)
            if existing:
                page_id = str(existing['id'])
                self.stats['placeholders']['reused'] += 1
                self.logger.info(f"Page '{title}' already exists ({page_id}), reusing it")
            else:
                created = self.client.create_page(title, self.space_key, parent_id, PLACEHOLDER_BODY)
                page_id = str(created['id'])
                self.stats['placeholders']['created'] += 1
                self.logger.info(f"Created placeholder '{title}' ({page_id}) under {parent_id}")
        except FATAL_ERRORS:
            raise
        except Exception as e:
            progress.increment(success=False)
            self._skip_subtree(page, title, 'placeholder', e)
            progress.skip(sum(1 for _ in page.walk()) - 1)
            return

        self.page_ids.register(title, page_id, aliases=(canonical_title(page.title),))
        progress.increment(success=True)

        for child in page.children:
            self._ensure_page(child, page_id, progress)

    def _publish_page(self, page: WikiPage, parent_id: str, progress: ProgressTracker) -> None:
        title = self.title_for(page)
        page_id = self.page_ids.get(title)

        if page_id is None:
            existing = self._lookup(title)
            if existing is None:
                self.stats['content']['skipped'] += sum(1 for _ in page.walk())
                progress.skip(sum(1 for _ in page.walk()))
                self.logger.warning(f"Skipping '{title}' and its children: page has no id")
                return
            page_id = str(existing['id'])
            self.page_ids.register(title, page_id, aliases=(canonical_title(page.title),))

        try:
            content = page.read_content()
            references = self.transformer.find_attachment_references(content)
            available: Set[str] = set()
            if references:
                available = self.uploader.upload_for_page(page_id, title, references, self.attachment_index)

            body = self.render_body(page, title, page_id, content, available)

            current = self.client.get_page_by_id(page_id, expand='version')
            version = int(current.get('version', {}).get('number', 1)) + 1
            self.client.update_page(page_id, title, body, version)

            self.stats['content']['updated'] += 1
            progress.increment(success=True)
            self.logger.info(f"Published '{title}' ({page_id}) at version {version}")
        except FATAL_ERRORS:
            raise
        except Exception as e:
            self.stats['content']['failed'] += 1
            progress.increment(success=False)
            self.failed_pages.append({
                'title': title,
                'path': page.relative_path,
                'phase': 'content',
                'error': str(e),
            })
            self.logger.error(f"Failed to publish content of '{title}': {e}")

        for child in page.children:
            self._publish_page(child, page_id, progress)

    def render_body(
        self,
        page: WikiPage,
        title: str,
        page_id: Optional[str],
        content: str,
        available: Set[str]
    ) -> str:
        """Storage-format body for a page."""
        if not content.strip() and (page.kind is PageKind.DIRECTORY or page.children):
            return self.macro_handler.children_display()

        body, stats = self.transformer.transform_with_stats(
            content,
            self.attachment_index,
            self.page_ids,
            page.relative_path,
            available,
            self._blob_url_resolver(page_id) if self.prefer_blob_urls and page_id else None,
        )

        for target in stats['broken_links']:
            self.stats['content']['broken_links'] += 1
            self.unresolved_links.append({'page': title, 'target': target})
        if stats['error']:
            self.stats['content']['content_errors'] += 1
            self.content_errors.append({'page': title, 'path': page.relative_path, 'error': stats['error']})
        return body

    def _blob_url_resolver(self, page_id: str) -> Callable[[str], Optional[str]]:
        cache: Dict[str, str] = {}

        def resolve(name: str) -> Optional[str]:
            if not cache:
                for attachment in self.client.get_attachments(page_id):
                    download = attachment.get('_links', {}).get('download')
                    if attachment.get('title') and download:
                        cache[attachment['title']] = f"{self.client.base_url}{self.client.context_path}{download}"
            return cache.get(name)

        return resolve

    def _lookup(self, title: str) -> Optional[Dict[str, Any]]:
        try:
            return self.client.get_page_by_title(self.space_key, title)
        except FATAL_ERRORS:
            raise
        except Exception as e:
            self.logger.warning(f"Could not look up '{title}': {e}")
            return None

    def _skip_subtree(self, page: WikiPage, title: str, phase: str, error: Exception) -> None:
        descendants = [self.title_for(child) for child in page.walk()][1:]
        self.stats['placeholders']['failed'] += 1
        self.stats['placeholders']['skipped'] += len(descendants)

        self.failed_pages.append({
            'title': title,
            'path': page.relative_path,
            'phase': phase,
            'error': str(error),
        })
        self.logger.error(f"Failed to create page '{title}': {error}")

        if descendants:
            self.skipped_subtrees.append({
                'title': title,
                'path': page.relative_path,
                'pages': descendants,
            })
            self.logger.warning(
                f"Skipping {len(descendants)} pages below '{title}' for manual follow-up: {', '.join(descendants)}"
            )

    def _start_phase(self, phase: str, counters: List[str]) -> None:
        # A retried pass starts over, so earlier records of the same phase are dropped
        self.stats[phase] = {name: 0 for name in counters}
        if phase == 'placeholders':
            self.failed_pages = [f for f in self.failed_pages if f['phase'] != 'placeholder']
            self.skipped_subtrees = []
        else:
            self.failed_pages = [f for f in self.failed_pages if f['phase'] != 'content']
            self.unresolved_links = []
            self.content_errors = []

    def summary(self) -> Dict[str, Any]:
        """Everything the report needs from this publisher."""
        return {
            'stats': {phase: dict(values) for phase, values in self.stats.items()},
            'attachments': dict(self.uploader.stats),
            'attachment_failures': list(self.uploader.failures),
            'failed_pages': list(self.failed_pages),
            'skipped_subtrees': list(self.skipped_subtrees),
            'unresolved_links': list(self.unresolved_links),
            'content_errors': list(self.content_errors),
            'pages_mapped': len(self.page_ids),
        }


__all__ = ['ConfluencePublisher', 'PLACEHOLDER_BODY']
