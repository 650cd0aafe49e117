"""Post-render cleanup of storage-format HTML."""

import logging
import re
from typing import Optional

from converters.macro_handler import MacroHandler
from converters.path_sanitizer import clean_attachment_name, decode_url_encoded, split_size_hint

logger = logging.getLogger('wiki_confluence_migrator.converters.htmlcleaner')


class HtmlCleaner:
    """Tidies renderer output and rewrites leftover attachment anchors."""

    ATTACHMENT_IMAGE_ANCHOR_RE = re.compile(
        r'<a[^>]*href=["\'](/\.attachments/[^"\']+?\.(?:png|jpe?g|gif|svg|bmp)[^"\']*)["\'][^>]*>(.*?)</a>',
        re.IGNORECASE | re.DOTALL
    )

    def __init__(self, macro_handler: Optional[MacroHandler] = None, logger: logging.Logger = None):
        """Initialize HTML cleaner with optional macro handler and logger."""
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.converters.htmlcleaner')
        self.macro_handler = macro_handler or MacroHandler()

    def clean(self, html: str) -> str:
        """
        Merge adjacent lists of the same type and squeeze blank lines.

        Args:
            html: Rendered HTML

        Returns:
            Cleaned HTML
        """
        if not html:
            return ''

        cleaned = re.sub(r'</ul>\n<ul>', '', html)
        cleaned = re.sub(r'</ol>\n<ol>', '', cleaned)
        cleaned = re.sub(r'\n\n+', '\n', cleaned)
        return cleaned.strip()

    def convert_attachment_anchors(self, html: str) -> str:
        """Turn ``<a href="/.attachments/x.png">`` anchors into image macros."""
        def replace(match: re.Match) -> str:
            path, text = match.group(1), match.group(2)
            segment, width, height = split_size_hint(decode_url_encoded(path.rsplit('/', 1)[-1]))
            if not width:
                _, width, height = split_size_hint(text)
            file_name = clean_attachment_name(segment)
            alt = re.sub(r'<[^>]+>', '', text).strip() or file_name
            self.logger.debug(f"Converting attachment link to image macro: {path}")
            return self.macro_handler.attachment_image(file_name, alt, width, height)

        return self.ATTACHMENT_IMAGE_ANCHOR_RE.sub(replace, html)
