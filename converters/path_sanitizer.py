"""Title and attachment-name normalization shared by every pipeline stage.

All functions are pure. The validator, the publisher, the page id map and
the link resolver all derive page titles through :func:`canonical_title`,
which wraps :func:`map_wiki_title_to_confluence`, so a title always maps to
the same Confluence title no matter which stage asks.
"""

import logging
import re
from typing import Any, Dict, Optional
from urllib.parse import unquote

logger = logging.getLogger('wiki_confluence_migrator.converters.path_sanitizer')

MAX_TITLE_LENGTH = 250

# Export artifacts appended after the real extension, e.g. "a.png%20%3D750x"
TRAILING_ARTIFACT_RE = re.compile(
    r'^(?P<name>.+?\.[A-Za-z][A-Za-z0-9]{1,4})[\s%](?!.*\.[A-Za-z][A-Za-z0-9]{1,4}$).*$',
    re.DOTALL
)
SIZE_SUFFIX_RE = re.compile(r'(?:%20|\s)*(?:%3D|=)[0-9]+x[0-9]*$', re.IGNORECASE)
GUID_SUFFIX_RE = re.compile(
    r'[-_]?[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}'
    r'(?=(?:\.[A-Za-z0-9]+)?$)'
)
CONTROL_CHARS_RE = re.compile(r'[\x00-\x1f\x7f-\x9f]')

MIME_TYPES = {
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'png': 'image/png',
    'gif': 'image/gif',
    'bmp': 'image/bmp',
    'svg': 'image/svg+xml',
    'pdf': 'application/pdf',
    'doc': 'application/msword',
    'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
}
DEFAULT_MIME_TYPE = 'application/octet-stream'
DOCUMENT_MIME_TYPES = {
    MIME_TYPES['pdf'],
    MIME_TYPES['doc'],
    MIME_TYPES['docx'],
}


def decode_url_encoded(value: str) -> str:
    """
    Decode percent-escapes, keeping the raw value when it is not valid UTF-8.

    Args:
        value: Possibly URL-encoded string

    Returns:
        Decoded string, or ``value`` unchanged if decoding fails
    """
    if not value:
        return value
    try:
        return unquote(value, errors='strict')
    except UnicodeDecodeError as e:
        logger.warning(f"Could not decode '{value}': {e}")
        return value


def map_wiki_title_to_confluence(wiki_title: str) -> str:
    """
    Map a wiki page title (or link target) to its Confluence title.

    URL-decodes, then replaces path separators with ``-``, characters that
    are illegal in file names with ``_``, ``%`` with ``-``, ``&`` with
    ``and`` and ``+`` with a space.

    Args:
        wiki_title: Title as found in the wiki (file name, link target)

    Returns:
        Confluence-safe title
    """
    if not wiki_title:
        return ''

    title = decode_url_encoded(wiki_title)
    title = re.sub(r'[\\/]', '-', title)
    title = re.sub(r'[<>:"|?*]', '_', title)
    title = title.replace('%', '-')
    title = title.replace('&', 'and')
    title = title.replace('+', ' ')
    return title.strip()


def sanitize_page_title(title: str) -> str:
    """Trim, collapse whitespace, drop control characters and cap the length."""
    if not title:
        return ''

    sanitized = re.sub(r'\s+', ' ', title.strip())
    sanitized = CONTROL_CHARS_RE.sub('', sanitized)

    if len(sanitized) > MAX_TITLE_LENGTH:
        logger.warning(f"Title truncated from {len(sanitized)} to {MAX_TITLE_LENGTH} chars: '{sanitized[:40]}...'")
        sanitized = sanitized[:MAX_TITLE_LENGTH].rstrip()

    return sanitized


def canonical_title(wiki_title: str) -> str:
    """Confluence title for a wiki title, before any name fixes are applied."""
    return sanitize_page_title(map_wiki_title_to_confluence(wiki_title))


def resolve_page_title(page: Any, fixes: Optional[Dict[str, str]] = None) -> str:
    """
    Final Confluence title for a page, honouring persisted name fixes.

    Fixes are looked up by the page's source-relative path first (used for
    duplicates inside the wiki, which share a title), then by canonical
    title (used for collisions with pages already in the target space).

    Args:
        page: WikiPage with ``title`` and ``relative_path``
        fixes: Map of fix key to fixed title

    Returns:
        Title to publish under
    """
    canonical = canonical_title(page.title)
    if not fixes:
        return canonical

    relative_path = getattr(page, 'relative_path', '')
    if relative_path and relative_path in fixes:
        return fixes[relative_path]
    return fixes.get(canonical) or fixes.get(page.title) or canonical


def is_fixed(page: Any, fixes: Optional[Dict[str, str]]) -> bool:
    """Whether a name fix applies to ``page``."""
    if not fixes:
        return False
    canonical = canonical_title(page.title)
    return any(key in fixes for key in (getattr(page, 'relative_path', ''), canonical, page.title) if key)


def normalize_order_key(name: str) -> str:
    """Key used to match ``.order`` entries against file and folder names."""
    return re.sub(r'\W', '-', decode_url_encoded(name or '').strip())


def clean_attachment_name(file_name: str) -> str:
    """
    Canonical attachment name for an export-artifact file name.

    Steps, in order: drop query/fragment parts, strip anything after the
    first whitespace or ``%`` following the extension, strip a trailing
    ``=750x`` / ``%3D750x`` size hint, strip a GUID suffix (before or after
    the extension), then URL-decode. The steps repeat until the name stops
    changing, so applying it twice gives the same result as applying it once.

    Args:
        file_name: Raw file name or path segment

    Returns:
        Clean file name used as the attachment index key
    """
    if not file_name:
        return ''

    name = re.split(r'[?#]', file_name, maxsplit=1)[0].strip()

    # Double-encoded names (%2520) need more than one round
    previous = None
    while name != previous:
        previous = name

        match = TRAILING_ARTIFACT_RE.match(name)
        if match:
            name = match.group('name')

        name = SIZE_SUFFIX_RE.sub('', name)
        name = GUID_SUFFIX_RE.sub('', name)
        name = decode_url_encoded(name).strip()

    return name


def split_size_hint(reference: str):
    """
    Split an image reference into path and size hint.

    Handles ``path =750x``, ``path=750x``, ``path=750x400`` and the
    URL-encoded ``path%20%3D750x`` form.

    Returns:
        Tuple of (path, width or None, height or None)
    """
    match = re.search(r'(?:\s|%20)*(?:=|%3D)(\d+)x(\d*)\s*$', reference, re.IGNORECASE)
    if not match:
        return reference.strip(), None, None

    width = match.group(1) or None
    height = match.group(2) or None
    return reference[:match.start()].strip(), width, height


def get_mime_type(file_name: str) -> str:
    """MIME type derived from the file extension."""
    extension = file_name.rsplit('.', 1)[-1].lower() if '.' in file_name else ''
    return MIME_TYPES.get(extension, DEFAULT_MIME_TYPE)


__all__ = [
    'canonical_title',
    'clean_attachment_name',
    'decode_url_encoded',
    'get_mime_type',
    'is_fixed',
    'map_wiki_title_to_confluence',
    'normalize_order_key',
    'resolve_page_title',
    'sanitize_page_title',
    'split_size_hint',
]
