"""Data models for the Azure DevOps Wiki to Confluence migration pipeline."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

logger = logging.getLogger('wiki_confluence_migrator')


class PageKind(Enum):
    """How a wiki page is backed on disk."""
    LEAF = "leaf"
    DIRECTORY = "directory"
    MERGED = "merged"


class DuplicateReason(Enum):
    """Why a page title cannot be published as-is."""
    DUPLICATE_IN_SOURCE = "duplicate-in-source"
    EXISTS_IN_TARGET = "exists-in-target"


@dataclass
class WikiPage:
    """A node in the parsed wiki tree."""

    title: str
    original_title: str
    source_path: str
    kind: PageKind = PageKind.LEAF
    order: int = 0
    relative_path: str = ''
    content_path: Optional[str] = None
    children: List['WikiPage'] = field(default_factory=list)
    is_attachment_directory: bool = False

    def read_content(self) -> str:
        """
        Read the Markdown backing this page.

        Pages without a content file (plain directories) and files that
        cannot be read yield an empty string; the failure is logged.
        """
        if not self.content_path:
            return ''
        try:
            return Path(self.content_path).read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read page content '{self.content_path}': {e}")
            return ''

    @property
    def has_content(self) -> bool:
        return self.content_path is not None

    def add_child(self, child: 'WikiPage') -> None:
        """Add a child page."""
        self.children.append(child)

    def walk(self) -> Iterator['WikiPage']:
        """Yield this page and all descendants in pre-order."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize page to dictionary."""
        return {
            'title': self.title,
            'original_title': self.original_title,
            'source_path': self.source_path,
            'kind': self.kind.value,
            'order': self.order,
            'relative_path': self.relative_path,
            'content_path': self.content_path,
            'children': [child.to_dict() for child in self.children],
        }


@dataclass
class WikiTree:
    """The complete parsed wiki: publishable pages plus attachment folders."""

    root_dir: str
    pages: List[WikiPage] = field(default_factory=list)
    attachment_directories: List[WikiPage] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        """Initialize default metadata if empty."""
        if not self.metadata:
            self.metadata = {
                'parsed_at': datetime.now().isoformat(),
                'root_dir': self.root_dir,
            }

    def walk(self) -> Iterator[WikiPage]:
        """Yield every publishable page in pre-order."""
        for page in self.pages:
            yield from page.walk()

    def count_pages(self) -> int:
        return sum(1 for _ in self.walk())

    def find_page(self, title: str) -> Optional[WikiPage]:
        """Find the first page (pre-order) whose title or raw title matches."""
        for page in self.walk():
            if title in (page.title, page.original_title):
                return page
        return None

    def subtree(self, page: WikiPage) -> 'WikiTree':
        """Return a tree containing only ``page`` and its descendants."""
        return WikiTree(
            root_dir=self.root_dir,
            pages=[page],
            attachment_directories=list(self.attachment_directories),
            metadata=dict(self.metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize tree to dictionary."""
        return {
            'root_dir': self.root_dir,
            'pages': [page.to_dict() for page in self.pages],
            'attachment_directories': [d.source_path for d in self.attachment_directories],
            'metadata': self.metadata,
        }


@dataclass
class AttachmentRecord:
    """One file found under an ``.attachments`` directory."""

    file_name: str
    clean_file_name: str
    filesystem_path: str
    size_bytes: int
    mime_type: str

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith('image/')

    def to_dict(self) -> Dict[str, Any]:
        """Serialize attachment to dictionary."""
        return {
            'file_name': self.file_name,
            'clean_file_name': self.clean_file_name,
            'filesystem_path': self.filesystem_path,
            'size_bytes': self.size_bytes,
            'mime_type': self.mime_type,
        }


@dataclass
class DuplicateRecord:
    """A page title that collides in the source tree or in the target space."""

    title: str
    reason: DuplicateReason
    path: str
    remote_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'title': self.title,
            'reason': self.reason.value,
            'path': self.path,
        }
        if self.remote_id:
            data['remoteId'] = self.remote_id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DuplicateRecord':
        """Deserialize from the persisted queue format."""
        return cls(
            title=data['title'],
            reason=DuplicateReason(data['reason']),
            path=data.get('path', ''),
            remote_id=data.get('remoteId'),
        )


__all__ = [
    'AttachmentRecord',
    'DuplicateReason',
    'DuplicateRecord',
    'PageKind',
    'WikiPage',
    'WikiTree',
]
