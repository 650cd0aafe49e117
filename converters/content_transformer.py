"""
Markdown to Confluence storage-format conversion.

The transformer runs a fixed pipeline over a page's Markdown:

1. fenced code blocks are pulled out into placeholder tokens
2. ``[[_TOC_]]`` becomes the table-of-contents macro
3. table rows get their cell padding normalized
4. cross-page links are resolved against the title -> id map
5. image and attachment references (Markdown, wiki embeds, ``<img>``,
   bare ``!file.png``) are resolved against the attachment index
6. the result is rendered to HTML with python-markdown
7. code blocks and macros are restored from their tokens
8. list fragments and blank lines produced by the renderer are cleaned up

Every macro is stashed behind a token before rendering so the Markdown
renderer never sees (and never escapes) storage-format markup.
"""

import html
import logging
import re
from typing import Any, Callable, Dict, List, Mapping, Optional, Set, Tuple

import markdown as md
from bs4 import BeautifulSoup

from converters.html_cleaner import HtmlCleaner
from converters.link_processor import LinkProcessor
from converters.macro_handler import MacroHandler
from converters.path_sanitizer import (
    clean_attachment_name,
    decode_url_encoded,
    get_mime_type,
    split_size_hint,
)

logger = logging.getLogger('wiki_confluence_migrator.converters.content_transformer')

NO_CONTENT_HTML = '<p>No content available</p>'
ERROR_SOURCE_LIMIT = 1000

CODE_BLOCK_RE = re.compile(r'```([\w+#.-]*)[^\n]*\n([\s\S]*?)```', re.MULTILINE)
TOC_RE = re.compile(r'\[\[_TOC_\]\]', re.IGNORECASE)
TABLE_ROW_RE = re.compile(r'^[ \t]*\|.*\|[ \t]*$', re.MULTILINE)
SIMPLE_IMAGE_RE = re.compile(r'(?<![\w/\[(!])!([\w.-]+\.(?:png|jpe?g|gif|svg|bmp))\b', re.IGNORECASE)
MARKDOWN_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\(([^)]+)\)')
WIKI_EMBED_RE = re.compile(r'!\[\[([^|\]]+)(?:\|([^\]]*))?\]\]')
HTML_IMG_RE = re.compile(r'<img\b[^>]*>', re.IGNORECASE)
ATTACHMENT_LINK_RE = re.compile(r'(?<!!)\[([^\]]+)\]\(([^)\s]*\.attachments/[^)]*)\)')
LINK_TITLE_RE = re.compile(r'\s+"[^"]*"\s*$')
EXTERNAL_PREFIXES = ('http://', 'https://', 'data:')

TOKEN_FORMAT = 'ZZWIKIMACRO{index}ZZ'
BLOCK_TOKEN_RE = re.compile(r'<p>\s*ZZWIKIMACRO(\d+)ZZ\s*</p>')
TOKEN_RE = re.compile(r'ZZWIKIMACRO(\d+)ZZ')


class ContentTransformer:
    """Converts wiki Markdown into Confluence storage format."""

    def __init__(
        self,
        page_base_url: Optional[str] = None,
        link_builder: Optional[Callable[[str], str]] = None,
        logger: Optional[logging.Logger] = None
    ):
        """
        Initialize content transformer.

        Args:
            page_base_url: Space URL used for resolved page links
            link_builder: Optional page id -> URL callable (local preview)
            logger: Optional logger instance (defaults to module logger)
        """
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.converters.content_transformer')
        self.macro_handler = MacroHandler()
        self.link_processor = LinkProcessor(page_base_url=page_base_url, link_builder=link_builder)
        self.html_cleaner = HtmlCleaner(macro_handler=self.macro_handler)

        self.md = md.Markdown(
            extensions=[
                'extra',           # Tables, fenced code, attribute lists
                'nl2br',           # Convert newlines to <br>
                'sane_lists'       # Better list handling
            ]
        )

        self.logger.debug("Initialized ContentTransformer with markdown extensions")

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'ContentTransformer':
        """Build a transformer whose page links point at the configured space."""
        confluence = config.get('confluence', {})
        base_url = (confluence.get('base_url') or '').rstrip('/')
        context_path = confluence.get('context_path', '/wiki') or ''
        space_key = confluence.get('space_key', '')
        return cls(page_base_url=f"{base_url}{context_path}/spaces/{space_key}")

    def transform(
        self,
        markdown_content: Optional[str],
        attachment_index: Optional[Any] = None,
        page_title_to_id: Optional[Mapping[str, str]] = None,
        current_page_path: Optional[str] = None,
        available_attachments: Optional[Set[str]] = None,
        blob_url_resolver: Optional[Callable[[str], Optional[str]]] = None
    ) -> str:
        """
        Convert one page's Markdown to storage format.

        Args:
            markdown_content: Raw Markdown of the page
            attachment_index: AttachmentIndex (or mapping of clean name -> AttachmentRecord)
            page_title_to_id: Map of Confluence title -> page id known so far
            current_page_path: Source path, used in log messages
            available_attachments: Clean names known to exist on the target page
            blob_url_resolver: Optional callable returning a download URL for an attachment

        Returns:
            Storage-format markup; never raises
        """
        storage, _ = self.transform_with_stats(
            markdown_content,
            attachment_index,
            page_title_to_id,
            current_page_path,
            available_attachments,
            blob_url_resolver,
        )
        return storage

    def transform_with_stats(
        self,
        markdown_content: Optional[str],
        attachment_index: Optional[Any] = None,
        page_title_to_id: Optional[Mapping[str, str]] = None,
        current_page_path: Optional[str] = None,
        available_attachments: Optional[Set[str]] = None,
        blob_url_resolver: Optional[Callable[[str], Optional[str]]] = None
    ) -> Tuple[str, Dict[str, Any]]:
        """Same as :meth:`transform` but also returns link and attachment stats."""
        stats = {
            'code_blocks': 0,
            'links_resolved': 0,
            'broken_links': [],
            'attachments_referenced': [],
            'missing_attachments': [],
            'error': None,
        }
        page_label = current_page_path or '<unknown page>'

        if not markdown_content or not markdown_content.strip():
            self.logger.warning(f"No markdown content provided for page at {page_label}")
            return NO_CONTENT_HTML, stats

        self.logger.info(f"Converting markdown for page at {page_label}")

        try:
            stash: List[str] = []
            content = self._extract_code_blocks(markdown_content, stash, stats)
            content = TOC_RE.sub(lambda _: self._stash(stash, self.macro_handler.table_of_contents(), block=True), content)
            content = self._normalize_tables(content)

            content, link_stats = self.link_processor.process_links(content, page_title_to_id or {})
            stats['links_resolved'] = link_stats['links_resolved']
            stats['broken_links'] = link_stats['broken_links']

            content = self._convert_images(
                content, stash, stats, attachment_index, available_attachments, blob_url_resolver
            )

            self.md.reset()
            rendered = self.md.convert(content)

            # Cleanup runs while macros are still tokens so code bodies keep their blank lines
            rendered = self.html_cleaner.clean(rendered)
            rendered = self._restore(rendered, stash)
            rendered = self.html_cleaner.convert_attachment_anchors(rendered)

            self.logger.debug(
                f"Converted {len(markdown_content)} chars of markdown to {len(rendered)} chars of storage format"
            )
            return rendered, stats

        except Exception as e:
            self.logger.error(f"Error converting markdown for page at {page_label}: {e}", exc_info=True)
            stats['error'] = str(e)
            return self.error_block(str(e), markdown_content), stats

    def find_attachment_references(self, markdown_content: Optional[str]) -> List[str]:
        """
        Clean names of every local attachment a page refers to.

        References inside fenced code blocks are ignored. Order of first
        appearance is preserved.
        """
        if not markdown_content:
            return []

        content = CODE_BLOCK_RE.sub('', markdown_content)
        sources: List[str] = []

        sources.extend(m.group(1) for m in SIMPLE_IMAGE_RE.finditer(content))
        sources.extend(self._strip_link_title(m.group(2)) for m in MARKDOWN_IMAGE_RE.finditer(content))
        sources.extend(m.group(1) for m in WIKI_EMBED_RE.finditer(content))
        sources.extend(m.group(2) for m in ATTACHMENT_LINK_RE.finditer(content))
        for tag in HTML_IMG_RE.findall(content):
            src = self._parse_img_tag(tag).get('src')
            if src:
                sources.append(src)

        names: List[str] = []
        for source in sources:
            source = source.strip()
            if not source or source.startswith(EXTERNAL_PREFIXES):
                continue
            path, _, _ = split_size_hint(source)
            name = clean_attachment_name(path.rsplit('/', 1)[-1])
            if name and name not in names:
                names.append(name)
        return names

    def render_markdown(self, content: str) -> str:
        """Render plain Markdown to HTML with the configured extensions."""
        self.md.reset()
        return self.md.convert(content or '')

    @staticmethod
    def error_block(message: str, raw: str) -> str:
        """Visible in-page error with the (truncated) source that failed to convert."""
        source = html.escape((raw or '')[:ERROR_SOURCE_LIMIT])
        return f"<p>Error converting content: {html.escape(message)}</p><pre>{source}...</pre>"

    def _extract_code_blocks(self, content: str, stash: List[str], stats: Dict[str, Any]) -> str:
        def replace(match: re.Match) -> str:
            language = match.group(1).strip() or 'none'
            code = match.group(2).strip('\n').rstrip()
            stats['code_blocks'] += 1
            return self._stash(stash, self.macro_handler.code_block(code, language), block=True)

        return CODE_BLOCK_RE.sub(replace, content)

    @staticmethod
    def _normalize_tables(content: str) -> str:
        """Collapse cell padding in ``| a  |  b |`` rows."""
        def normalize_row(match: re.Match) -> str:
            row = match.group(0).strip()
            cells = re.split(r'(?<!\\)\|', row.strip('|'))
            return '| ' + ' | '.join(cell.strip() for cell in cells) + ' |'

        return TABLE_ROW_RE.sub(normalize_row, content)

    def _convert_images(
        self,
        content: str,
        stash: List[str],
        stats: Dict[str, Any],
        attachment_index: Optional[Any],
        available: Optional[Set[str]],
        blob_url_resolver: Optional[Callable[[str], Optional[str]]]
    ) -> str:
        def resolve(src: str, alt: str = '', width: Optional[str] = None, height: Optional[str] = None) -> str:
            macro = self.resolve_reference(
                src, alt, width, height, attachment_index, available, blob_url_resolver, stats
            )
            return self._stash(stash, macro)

        # Bare "!diagram.png" references are shorthand for the attachments folder
        content = SIMPLE_IMAGE_RE.sub(lambda m: f"![{m.group(1)}](/.attachments/{m.group(1)})", content)

        content = MARKDOWN_IMAGE_RE.sub(
            lambda m: resolve(self._strip_link_title(m.group(2)), m.group(1)), content
        )

        def replace_embed(match: re.Match) -> str:
            params = match.group(2) or ''
            _, width, height = split_size_hint(params)
            width_param = re.search(r'width\s*=\s*(\d+)', params, re.IGNORECASE)
            if width_param:
                width = width_param.group(1)
            path = match.group(1)
            return resolve(path, '', width, height)

        content = WIKI_EMBED_RE.sub(replace_embed, content)

        def replace_img(match: re.Match) -> str:
            attrs = self._parse_img_tag(match.group(0))
            src = attrs.get('src')
            if not src:
                return match.group(0)
            return resolve(src, attrs.get('alt', ''), attrs.get('width'), attrs.get('height'))

        content = HTML_IMG_RE.sub(replace_img, content)

        def replace_attachment_link(match: re.Match) -> str:
            text, target = match.group(1), match.group(2)
            path, width, height = split_size_hint(decode_url_encoded(target))
            name = clean_attachment_name(path.rsplit('/', 1)[-1])
            self._track_reference(name, attachment_index, available, stats)
            if get_mime_type(name).startswith('image/'):
                macro = self.macro_handler.attachment_image(name, text, width, height)
            else:
                macro = self.macro_handler.attachment_link(name, text)
            return self._stash(stash, macro)

        return ATTACHMENT_LINK_RE.sub(replace_attachment_link, content)

    def resolve_reference(
        self,
        src: str,
        alt: str = '',
        width: Optional[str] = None,
        height: Optional[str] = None,
        attachment_index: Optional[Any] = None,
        available: Optional[Set[str]] = None,
        blob_url_resolver: Optional[Callable[[str], Optional[str]]] = None,
        stats: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Storage markup for one image or file reference.

        External and ``data:`` URLs become URL images. Anything else is
        treated as an attachment: its clean name is looked up in the index
        and the MIME type picks between file preview, image and download
        link macros. Unknown attachments are still referenced by name.
        """
        src = (src or '').strip()
        if src.startswith(EXTERNAL_PREFIXES):
            path, hint_width, hint_height = split_size_hint(src)
            return self.macro_handler.url_image(path, None, width or hint_width, height or hint_height)

        path, hint_width, hint_height = split_size_hint(src)
        width = width or hint_width
        height = height or hint_height
        name = clean_attachment_name(path.rsplit('/', 1)[-1])

        record = self._track_reference(name, attachment_index, available, stats)
        mime_type = record.mime_type if record else get_mime_type(name)

        if blob_url_resolver and mime_type.startswith('image/'):
            try:
                blob_url = blob_url_resolver(name)
                if blob_url:
                    return self.macro_handler.url_image(blob_url, alt or name, width, height)
            except Exception as e:
                self.logger.warning(f"Error getting blob URL for {name}, using attachment reference: {e}")

        return self.macro_handler.for_attachment(name, mime_type, alt or name, width, height)

    def _track_reference(
        self,
        name: str,
        attachment_index: Optional[Any],
        available: Optional[Set[str]],
        stats: Optional[Dict[str, Any]]
    ):
        record = attachment_index.get(name) if attachment_index is not None else None
        if stats is not None and name not in stats['attachments_referenced']:
            stats['attachments_referenced'].append(name)

        if attachment_index is not None and record is None:
            self.logger.warning(f"Attachment '{name}' not found in the attachment index; referencing it by name")
            if stats is not None:
                stats['missing_attachments'].append(name)
        elif available is not None and name not in available:
            self.logger.warning(f"Attachment '{name}' is not on the target page; referencing it by name")
        return record

    @staticmethod
    def _parse_img_tag(tag: str) -> Dict[str, str]:
        img = BeautifulSoup(tag, 'lxml').find('img')
        if img is None:
            return {}
        return {key: img.get(key) for key in ('src', 'alt', 'width', 'height') if img.get(key)}

    @staticmethod
    def _strip_link_title(src: str) -> str:
        return LINK_TITLE_RE.sub('', src)

    @staticmethod
    def _stash(stash: List[str], markup: str, block: bool = False) -> str:
        token = TOKEN_FORMAT.format(index=len(stash))
        stash.append(markup)
        return f"\n\n{token}\n\n" if block else token

    @staticmethod
    def _restore(rendered: str, stash: List[str]) -> str:
        # Block macros replace their whole paragraph, inline ones only the token
        rendered = BLOCK_TOKEN_RE.sub(lambda m: stash[int(m.group(1))], rendered)
        return TOKEN_RE.sub(lambda m: stash[int(m.group(1))], rendered)
