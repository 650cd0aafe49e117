"""Converters package for Azure DevOps Wiki Markdown to Confluence storage format."""

import logging

from .content_transformer import ContentTransformer
from .html_cleaner import HtmlCleaner
from .link_processor import LinkProcessor
from .macro_handler import MacroHandler

logger = logging.getLogger('wiki_confluence_migrator.converters')


def convert_markdown(markdown_content, attachment_index=None, page_title_to_id=None, config=None):
    """
    Convenience function to convert one page's Markdown to storage format.

    This runs the full transformer pipeline:
    1. Code block and TOC extraction
    2. Table normalization
    3. Cross-page link resolution
    4. Image and attachment macros
    5. Markdown rendering and cleanup

    Args:
        markdown_content: Raw Markdown of a wiki page
        attachment_index: Optional AttachmentIndex for attachment lookups
        page_title_to_id: Optional map of Confluence title to page id
        config: Optional configuration dictionary (used for page link URLs)

    Returns:
        str: Confluence storage-format markup

    Example:
        >>> from converters import convert_markdown
        >>> convert_markdown('# Title\\n\\n[[Setup Guide]]')
        '<h1>Title</h1>\\n<p><a href="#Setup-Guide">Setup Guide</a></p>'
    """
    transformer = ContentTransformer.from_config(config) if config else ContentTransformer()
    return transformer.transform(markdown_content, attachment_index, page_title_to_id)


__all__ = [
    'convert_markdown',
    'ContentTransformer',
    'HtmlCleaner',
    'MacroHandler',
    'LinkProcessor'
]
