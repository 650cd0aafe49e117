"""Import package for publishing a parsed wiki to Confluence.

Package Structure:
- page_id_map: title -> Confluence page id map built during publication
- attachment_uploader: idempotent, bounded-parallel attachment upload
- confluence_publisher: two-phase (placeholder, then content) publication

Key Features:
- Placeholder pass so every link target has an id before content is resolved
- Existing pages are reused and updated rather than re-created
- Attachments already on a page are not uploaded again
- A failed page is reported without aborting the run

Configuration Referenced:
- confluence.*: space key and root parent page
- migration.*: upload workers, blob URL preference
- export.progress_bars: tqdm progress for attachment batches
"""

from .attachment_uploader import AttachmentUploader
from .confluence_publisher import ConfluencePublisher, PLACEHOLDER_BODY
from .page_id_map import PageIdMap

__all__ = [
    'AttachmentUploader',
    'ConfluencePublisher',
    'PageIdMap',
    'PLACEHOLDER_BODY'
]
