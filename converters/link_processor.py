"""Cross-page link resolution for wiki Markdown."""

import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from converters.path_sanitizer import canonical_title, map_wiki_title_to_confluence

logger = logging.getLogger('wiki_confluence_migrator.converters.linkprocessor')


MAX_CHARS_BETWEEN_BRACKETS = 1000  # Prevent catastrophic backtracking


def anchor_for(title: str) -> str:
    """Same-document anchor used when a link target has no page id yet."""
    return '#' + re.sub(r'\s+', '-', title.strip())


class LinkProcessor:
    """Rewrites wiki-style, absolute-path and ``_wiki`` URL links to Confluence pages."""

    def __init__(
        self,
        page_base_url: Optional[str] = None,
        link_builder: Optional[Callable[[str], str]] = None,
        logger: logging.Logger = None
    ):
        """
        Initialize link processor.

        Args:
            page_base_url: Space URL; resolved links become ``{page_base_url}/pages/{id}``
            link_builder: Optional callable mapping a page id to a URL (overrides page_base_url)
            logger: Optional logger instance
        """
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.converters.linkprocessor')
        self.page_base_url = (page_base_url or '').rstrip('/')
        self.link_builder = link_builder

        bracket = r'{1,' + str(MAX_CHARS_BETWEEN_BRACKETS) + r'}'
        self.wiki_link_with_text_pattern = re.compile(r'(?<!!)\[\[([^|\]]' + bracket + r')\|([^\]]' + bracket + r')\]\]')
        self.wiki_link_pattern = re.compile(r'(?<!!)\[\[([^|\]]' + bracket + r')\]\]')
        self.markdown_link_pattern = re.compile(
            r'(?<!!)\[([^\]]' + bracket + r')\]\(([^)\s]+)(\s+"[^"]*")?\)'
        )

    def page_url(self, page_id: str) -> str:
        if self.link_builder:
            return self.link_builder(page_id)
        return f"{self.page_base_url}/pages/{page_id}"

    def process_links(self, content: str, page_ids: Mapping[str, str]) -> Tuple[str, Dict[str, Any]]:
        """
        Resolve every cross-page link in ``content``.

        Links whose target is not in ``page_ids`` become same-document
        anchors and are reported in ``stats['broken_links']``.

        Args:
            content: Markdown with code blocks already extracted
            page_ids: Map of Confluence title to page id

        Returns:
            Tuple of (processed markdown, link stats)
        """
        stats = {
            'links_resolved': 0,
            'links_external': 0,
            'broken_links': [],
        }

        def resolve(target: str, text: str) -> str:
            title = canonical_title(target)
            page_id = page_ids.get(title)
            if page_id:
                stats['links_resolved'] += 1
                return f"[{text}]({self.page_url(page_id)})"
            self.logger.warning(f"No page ID found for '{title}'. Link will point to an anchor.")
            stats['broken_links'].append(title)
            return f"[{text}]({anchor_for(title)})"

        def replace_markdown_link(match: re.Match) -> str:
            text, url = match.group(1), match.group(2)

            if url.startswith(('http://', 'https://')):
                stats['links_external'] += 1
                if '_wiki' not in url:
                    return match.group(0)
                title = canonical_title(self._page_name_from_path(urlparse(url).path))
                page_id = page_ids.get(title)
                if page_id:
                    self.logger.debug(f"Converting Azure DevOps wiki link: {url}")
                    stats['links_resolved'] += 1
                    return f"[{text}]({self.page_url(page_id)})"
                return match.group(0)

            if '.attachments' in url or url.startswith(('#', 'mailto:')):
                return match.group(0)

            if url.startswith('/') or url.split('#', 1)[0].lower().endswith('.md'):
                return resolve(self._page_name_from_path(url), text)

            return match.group(0)

        content = self.markdown_link_pattern.sub(replace_markdown_link, content)

        content = self.wiki_link_with_text_pattern.sub(
            lambda m: resolve(m.group(1), m.group(2).strip()), content
        )
        content = self.wiki_link_pattern.sub(
            lambda m: resolve(m.group(1), m.group(1).strip()), content
        )

        self.logger.debug(f"Link processing complete: {stats}")
        return content, stats

    @staticmethod
    def _page_name_from_path(path: str) -> str:
        """Last path segment without query, fragment or ``.md`` suffix."""
        path = re.split(r'[?#]', path, maxsplit=1)[0].rstrip('/')
        name = path.rsplit('/', 1)[-1]
        if name.lower().endswith('.md'):
            name = name[:-3]
        return name


__all__ = ['LinkProcessor', 'anchor_for', 'canonical_title', 'map_wiki_title_to_confluence']
