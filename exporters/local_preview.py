"""
Offline preview of a converted wiki.

Every page goes through the same transformer the publisher uses, with links
pointing at local ``{slug}.html`` files instead of Confluence page ids. The
storage-format macros are then swapped for plain HTML so the result can be
opened in a browser without Confluence.
"""

import html
import logging
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from bs4 import BeautifulSoup

from converters.content_transformer import ContentTransformer
from converters.path_sanitizer import canonical_title, resolve_page_title
from models import PageKind, WikiPage, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.exporters.local_preview')

ATTACHMENTS_DIR = 'attachments'

CDATA_RE = re.compile(r'<!\[CDATA\[(.*?)\]\]>', re.DOTALL)
CODE_BODY_RE = re.compile(r'<ac:plain-text-body>(.*?)</ac:plain-text-body>', re.DOTALL)


def slugify(title: str) -> str:
    """File-system friendly page name."""
    slug = re.sub(r'[^\w]+', '-', title.lower(), flags=re.UNICODE).strip('-')
    return slug or 'page'


class LocalPreviewExporter:
    """Writes one HTML file per page plus an index and the attachments."""

    def __init__(
        self,
        config: Dict[str, Any],
        fixes: Optional[Dict[str, str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize the preview exporter.

        Args:
            config: Configuration dictionary (``local.output_directory``)
            fixes: Page name fixes, so previews use the published titles
            logger: Optional logger instance
        """
        self.config = config
        self.fixes = dict(fixes or {})
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.exporters.local_preview')
        self.output_dir = Path(config.get('local', {}).get('output_directory') or './local-output')

        self.transformer = ContentTransformer(link_builder=lambda slug: f"{slug}.html")

        self.stats = {
            'pages_written': 0,
            'attachments_copied': 0,
            'broken_links': 0,
            'content_errors': 0,
        }
        self.unresolved_links: List[Dict[str, str]] = []

    def export(self, tree: WikiTree, attachment_index=None) -> Dict[str, Any]:
        """
        Write the preview.

        Args:
            tree: Parsed wiki tree
            attachment_index: AttachmentIndex whose files are copied next to the pages

        Returns:
            Export statistics (with ``output_directory``)
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.logger.info(f"Writing local preview to {self.output_dir.resolve()}")

        self.page_slugs, link_slugs = self._assign_slugs(tree)

        for page in tree.walk():
            self._write_page(page, link_slugs, attachment_index)

        self._write_index(tree)

        if attachment_index is not None:
            self._copy_attachments(attachment_index)

        self.logger.info(
            f"Local preview complete: {self.stats['pages_written']} pages, "
            f"{self.stats['attachments_copied']} attachments"
        )
        return {**self.stats, 'output_directory': str(self.output_dir)}

    def _assign_slugs(self, tree: WikiTree) -> Tuple[Dict[str, str], Dict[str, str]]:
        """
        Unique slug per page.

        Returns:
            (relative path -> slug, published or canonical title -> slug of
            the first page with that title)
        """
        page_slugs: Dict[str, str] = {}
        link_slugs: Dict[str, str] = {}
        used = {'index'}
        for page in tree.walk():
            title = resolve_page_title(page, self.fixes)
            base = slugify(title)
            slug, suffix = base, 2
            while slug in used:
                slug = f"{base}-{suffix}"
                suffix += 1
            used.add(slug)
            page_slugs[page.relative_path] = slug
            link_slugs.setdefault(title, slug)
            link_slugs.setdefault(canonical_title(page.title), slug)
        return page_slugs, link_slugs

    def _write_page(self, page: WikiPage, link_slugs: Dict[str, str], attachment_index) -> None:
        title = resolve_page_title(page, self.fixes)
        slug = self.page_slugs[page.relative_path]
        content = page.read_content()

        if not content.strip() and (page.kind is PageKind.DIRECTORY or page.children):
            body = ''
        else:
            body, stats = self.transformer.transform_with_stats(
                content, attachment_index, link_slugs, page.relative_path
            )
            for target in stats['broken_links']:
                self.stats['broken_links'] += 1
                self.unresolved_links.append({'page': title, 'target': target})
            if stats['error']:
                self.stats['content_errors'] += 1

        children = [
            (resolve_page_title(child, self.fixes), self.page_slugs[child.relative_path])
            for child in page.children
        ]
        page_html = self.to_browser_html(body, children)
        if not body:
            page_html = self._child_list(children)

        document = (
            "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
            f"<title>{html.escape(title)}</title>\n</head>\n<body>\n"
            "<p><a href=\"index.html\">Index</a></p>\n"
            f"<h1>{html.escape(title)}</h1>\n{page_html}\n</body>\n</html>\n"
        )
        (self.output_dir / f"{slug}.html").write_text(document, encoding='utf-8')
        self.stats['pages_written'] += 1
        self.logger.debug(f"Wrote preview page {slug}.html")

    def to_browser_html(self, storage: str, children: Optional[List] = None) -> str:
        """Replace storage-format macros with plain HTML equivalents."""
        if not storage:
            return ''

        soup = BeautifulSoup(self._unwrap_cdata(storage), 'html.parser')

        for macro in soup.find_all('ac:structured-macro'):
            name = macro.get('ac:name')
            if name == 'code':
                macro.replace_with(self._code_block(soup, macro))
            elif name == 'toc':
                macro.replace_with(BeautifulSoup(self._toc(soup), 'html.parser'))
            elif name == 'children':
                macro.replace_with(BeautifulSoup(self._child_list(children or []), 'html.parser'))
            elif name == 'view-file':
                file_name = self._parameter(macro, 'name')
                macro.replace_with(BeautifulSoup(self._file_link(file_name, file_name), 'html.parser'))

        for image in soup.find_all('ac:image'):
            img = soup.new_tag('img')
            attachment = image.find('ri:attachment')
            url = image.find('ri:url')
            if attachment is not None:
                img['src'] = f"{ATTACHMENTS_DIR}/{quote(attachment.get('ri:filename', ''))}"
            elif url is not None:
                img['src'] = url.get('ri:value', '')
            if image.get('ac:alt'):
                img['alt'] = image['ac:alt']
            for dimension in ('width', 'height'):
                value = self._parameter(image, dimension)
                if value:
                    img[dimension] = value
            image.replace_with(img)

        for link in soup.find_all('ac:link'):
            attachment = link.find('ri:attachment')
            if attachment is None:
                continue
            file_name = attachment.get('ri:filename', '')
            text_node = link.find('ac:plain-text-link-body')
            text = text_node.get_text() if text_node is not None else file_name
            link.replace_with(BeautifulSoup(self._file_link(file_name, text), 'html.parser'))

        return str(soup)

    @staticmethod
    def _unwrap_cdata(storage: str) -> str:
        """
        Turn CDATA sections into ordinary element text.

        Code bodies are already HTML-escaped by the code macro, so only
        their CDATA markers are dropped; link bodies hold raw text and are
        escaped here.
        """
        storage = CODE_BODY_RE.sub(
            lambda m: '<ac:plain-text-body>' + CDATA_RE.sub(lambda c: c.group(1), m.group(1)) + '</ac:plain-text-body>',
            storage
        )
        return CDATA_RE.sub(lambda m: html.escape(m.group(1), quote=False), storage)

    @staticmethod
    def _parameter(macro, name: str) -> Optional[str]:
        for parameter in macro.find_all('ac:parameter'):
            if parameter.get('ac:name') == name:
                return parameter.get_text()
        return None

    def _code_block(self, soup: BeautifulSoup, macro):
        language = self._parameter(macro, 'language') or 'none'
        body = macro.find('ac:plain-text-body')
        code_text = body.get_text() if body is not None else ''

        pre = soup.new_tag('pre')
        code = soup.new_tag('code')
        code['class'] = f"language-{language}"
        code.string = code_text
        pre.append(code)
        return pre

    @staticmethod
    def _toc(soup: BeautifulSoup) -> str:
        items = []
        for heading in soup.find_all(['h1', 'h2', 'h3']):
            text = heading.get_text().strip()
            if not text:
                continue
            anchor = slugify(text)
            heading['id'] = anchor
            items.append(f'<li><a href="#{anchor}">{html.escape(text)}</a></li>')
        return f'<ul class="toc">{"".join(items)}</ul>'

    @staticmethod
    def _child_list(children: List) -> str:
        if not children:
            return '<p>No content available</p>'
        items = ''.join(
            f'<li><a href="{slug}.html">{html.escape(title)}</a></li>' for title, slug in children
        )
        return f'<ul class="children">{items}</ul>'

    @staticmethod
    def _file_link(file_name: str, text: str) -> str:
        return f'<a href="{ATTACHMENTS_DIR}/{quote(file_name or "")}">{html.escape(text or "")}</a>'

    def _write_index(self, tree: WikiTree) -> None:
        def render(pages: List[WikiPage]) -> str:
            if not pages:
                return ''
            items = []
            for page in pages:
                title = resolve_page_title(page, self.fixes)
                slug = self.page_slugs[page.relative_path]
                items.append(
                    f'<li><a href="{slug}.html">{html.escape(title)}</a>{render(page.children)}</li>'
                )
            return f"<ul>{''.join(items)}</ul>"

        document = (
            "<!DOCTYPE html>\n<html>\n<head>\n<meta charset=\"utf-8\">\n"
            "<title>Wiki Preview</title>\n</head>\n<body>\n"
            f"<h1>Wiki Preview</h1>\n<p>{tree.count_pages()} pages</p>\n{render(tree.pages)}\n</body>\n</html>\n"
        )
        (self.output_dir / 'index.html').write_text(document, encoding='utf-8')

    def _copy_attachments(self, attachment_index) -> None:
        target_dir = self.output_dir / ATTACHMENTS_DIR
        target_dir.mkdir(parents=True, exist_ok=True)

        for record in attachment_index.records():
            try:
                shutil.copy2(record.filesystem_path, target_dir / record.clean_file_name)
                self.stats['attachments_copied'] += 1
            except OSError as e:
                self.logger.warning(f"Could not copy attachment {record.filesystem_path}: {e}")


__all__ = ['LocalPreviewExporter', 'slugify']
