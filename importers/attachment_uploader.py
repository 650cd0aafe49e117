"""
Attachment uploader for Confluence pages.

This uploader:
1. Lists the attachments already present on the target page
2. Skips files whose clean name is already attached
3. Uploads the rest in parallel with a bounded worker pool
4. Reports which clean names are now available on the page
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, Iterable, List, Optional, Set

from tqdm import tqdm

from confluence_client import ConfluenceApiError, ConfluenceAuthError, ConfluenceRateLimitError
from models import AttachmentRecord

logger = logging.getLogger('wiki_confluence_migrator.importers.attachment_uploader')


class AttachmentUploader:
    """Uploads the attachments a page references, once."""

    def __init__(
        self,
        config: Dict[str, Any],
        client,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the attachment uploader.

        Args:
            config: Configuration dictionary
            client: ConfluenceClient instance
            logger: Logger instance
        """
        self.config = config
        self.client = client
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.importers.attachment_uploader')

        self.max_workers = max(1, int(config.get('migration', {}).get('upload_workers', 3)))
        self.show_progress = config.get('export', {}).get('progress_bars', True)

        self.stats = {
            'uploaded': 0,
            'skipped_existing': 0,
            'failed': 0,
            'missing': 0,
        }
        self.failures: List[Dict[str, str]] = []

        self.logger.debug(f"AttachmentUploader initialized with {self.max_workers} workers")

    def upload_for_page(
        self,
        page_id: str,
        page_title: str,
        names: Iterable[str],
        attachment_index
    ) -> Set[str]:
        """
        Make sure every referenced attachment exists on the page.

        Args:
            page_id: Target page id
            page_title: Page title, for log messages
            names: Clean attachment names the page references
            attachment_index: AttachmentIndex to resolve names to files

        Returns:
            Clean names known to be attached to the page afterwards
        """
        names = list(dict.fromkeys(names))
        if not names:
            return set()

        available = self.existing_attachment_names(page_id, page_title)

        to_upload: List[AttachmentRecord] = []
        for name in names:
            if name in available:
                self.stats['skipped_existing'] += 1
                self.logger.debug(f"Attachment '{name}' already on page '{page_title}', skipping upload")
                continue

            record = attachment_index.get(name) if attachment_index is not None else None
            if record is None:
                self.stats['missing'] += 1
                self.logger.warning(f"Attachment '{name}' referenced by '{page_title}' not found locally, skipping")
                continue
            to_upload.append(record)

        if to_upload:
            available.update(self.upload_batch(page_id, page_title, to_upload))

        return available

    def existing_attachment_names(self, page_id: str, page_title: str = '') -> Set[str]:
        """Titles of attachments already on the page (empty when listing fails)."""
        try:
            return {a.get('title') for a in self.client.get_attachments(page_id) if a.get('title')}
        except (ConfluenceAuthError, ConfluenceRateLimitError):
            raise
        except ConfluenceApiError as e:
            self.logger.warning(f"Could not list attachments of '{page_title or page_id}': {e}")
            return set()

    def upload_batch(self, page_id: str, page_title: str, records: List[AttachmentRecord]) -> Set[str]:
        """
        Upload ``records`` to ``page_id`` in parallel.

        Returns:
            Clean names that were uploaded or turned out to exist already
        """
        uploaded: Set[str] = set()

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            future_to_record = {
                executor.submit(self.upload_attachment, page_id, record): record
                for record in records
            }

            futures = list(future_to_record.keys())
            if self._should_show_progress(len(records)):
                futures = tqdm(futures, desc=f"Attachments for {page_title[:30]}", total=len(records), leave=False)

            for future in futures:
                record = future_to_record[future]
                try:
                    if future.result():
                        uploaded.add(record.clean_file_name)
                except (ConfluenceAuthError, ConfluenceRateLimitError):
                    raise
                except (ConfluenceApiError, OSError) as e:
                    self.stats['failed'] += 1
                    self.failures.append({
                        'page': page_title,
                        'attachment': record.clean_file_name,
                        'error': str(e),
                    })
                    self.logger.error(f"Failed to upload attachment '{record.clean_file_name}' to '{page_title}': {e}")

        return uploaded

    def upload_attachment(self, page_id: str, record: AttachmentRecord) -> bool:
        """
        Upload one attachment under its clean name.

        Confluence answers 400 both when a file of that name is already on
        the page and when it rejects the upload. Only the first counts as
        success, which is checked by listing the page's attachments again.
        """
        try:
            self.client.upload_attachment(
                page_id,
                record.filesystem_path,
                file_name=record.clean_file_name,
                mime_type=record.mime_type
            )
        except ConfluenceApiError as e:
            if e.status_code == 400 and record.clean_file_name in self.existing_attachment_names(page_id):
                self.stats['skipped_existing'] += 1
                self.logger.info(f"Attachment '{record.clean_file_name}' already exists on page {page_id}")
                return True
            raise

        self.stats['uploaded'] += 1
        self.logger.debug(f"Uploaded attachment: {record.clean_file_name} ({record.size_bytes} bytes)")
        return True

    def _should_show_progress(self, count: int) -> bool:
        return bool(self.show_progress) and count > 1


__all__ = ['AttachmentUploader']
