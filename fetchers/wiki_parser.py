"""Wiki tree parser for Azure DevOps Wiki exports on the local filesystem."""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from converters.path_sanitizer import decode_url_encoded, normalize_order_key
from models import PageKind, WikiPage, WikiTree

logger = logging.getLogger('wiki_confluence_migrator.fetchers.wiki_parser')

ATTACHMENTS_DIR_NAME = '.attachments'
ORDER_FILE_NAME = '.order'
MARKDOWN_SUFFIX = '.md'

# Rank given to entries a .order file does not list
UNORDERED_RANK = 1_000_000

DEFAULT_EXCLUDED_NAMES = frozenset({
    'node_modules',
    'dist',
    'build',
    '.git',
    'coverage',
    'logs',
    'tmp',
    'temp',
    '.github',
    '.vscode',
    '.vs',
    'bin',
    'obj',
    'src',
    'local-output',
    'test-output',
    'ado-wiki-to-confluence',
})


class WikiTreeParser:
    """Builds a :class:`WikiTree` from a wiki directory."""

    def __init__(self, config: Optional[Dict[str, Any]] = None, logger: logging.Logger = None):
        """
        Initialize wiki parser.

        Args:
            config: Configuration dictionary (``wiki.exclude`` adds names to skip)
            logger: Optional logger instance
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.fetchers.wiki_parser')

        extra = self.config.get('wiki', {}).get('exclude') or []
        self.excluded_names = DEFAULT_EXCLUDED_NAMES | set(extra)

        self.stats = {
            'directories': 0,
            'markdown_files': 0,
            'merged_pages': 0,
            'empty_directories': 0,
            'excluded': 0,
        }

    def parse(self, root_dir: str) -> WikiTree:
        """
        Parse the wiki rooted at ``root_dir``.

        Args:
            root_dir: Wiki root directory

        Returns:
            WikiTree with ordered publishable pages and attachment directories

        Raises:
            FileNotFoundError: If the root directory does not exist
        """
        root = Path(root_dir).expanduser().resolve()
        if not root.is_dir():
            raise FileNotFoundError(f"Wiki root directory not found: {root}")

        self.logger.info(f"Parsing wiki at {root}")

        tree = WikiTree(root_dir=str(root))
        tree.pages = self._parse_directory(root, root, tree)
        tree.metadata['stats'] = dict(self.stats)

        self.logger.info(
            f"Wiki parsing complete - found {tree.count_pages()} pages, "
            f"{self.stats['directories']} folders, "
            f"{len(tree.attachment_directories)} attachment directories"
        )
        return tree

    def _parse_directory(
        self,
        directory: Path,
        root: Path,
        tree: WikiTree,
        content_file: Optional[Path] = None
    ) -> List[WikiPage]:
        """Pages for the entries of one directory, ordered by ``.order`` then title."""
        try:
            entries = sorted(directory.iterdir(), key=lambda p: p.name)
        except OSError as e:
            self.logger.warning(f"Cannot list directory {directory}: {e}")
            return []

        rank = self._read_order(directory)
        directories: Dict[str, Path] = {}
        markdown_files: Dict[str, Path] = {}

        for entry in entries:
            name = entry.name
            try:
                is_dir = entry.is_dir()
                is_file = entry.is_file()
            except OSError as e:
                self.logger.warning(f"Skipping unreadable entry {entry}: {e}")
                continue

            if name == ATTACHMENTS_DIR_NAME and is_dir:
                tree.attachment_directories.append(WikiPage(
                    title=name,
                    original_title=name,
                    source_path=str(entry),
                    kind=PageKind.DIRECTORY,
                    relative_path=entry.relative_to(root).as_posix(),
                    is_attachment_directory=True,
                ))
                self.logger.debug(f"Found attachments directory: {entry}")
                continue

            if name.startswith('.') or name in self.excluded_names:
                self.stats['excluded'] += 1
                self.logger.debug(f"Excluding {entry}")
                continue

            if is_dir:
                directories[name] = entry
            elif is_file and name.lower().endswith(MARKDOWN_SUFFIX):
                if content_file is not None and entry == content_file:
                    continue
                markdown_files[name[:-len(MARKDOWN_SUFFIX)]] = entry

        pages: List[WikiPage] = []

        for stem, path in markdown_files.items():
            if stem in directories:
                # Becomes the content of the same-named directory page
                continue
            self.stats['markdown_files'] += 1
            pages.append(WikiPage(
                title=decode_url_encoded(stem),
                original_title=stem,
                source_path=str(path),
                kind=PageKind.LEAF,
                relative_path=path.relative_to(root).as_posix(),
                content_path=str(path),
            ))

        for name, path in directories.items():
            page = self._parse_page_directory(path, name, markdown_files.get(name), root, tree)
            if page is not None:
                pages.append(page)

        for page in pages:
            page.order = rank.get(normalize_order_key(page.original_title), UNORDERED_RANK)

        pages.sort(key=lambda p: (p.order, p.title.lower(), p.title))
        return pages

    def _parse_page_directory(
        self,
        path: Path,
        name: str,
        sibling_file: Optional[Path],
        root: Path,
        tree: WikiTree
    ) -> Optional[WikiPage]:
        """Directory page, merged with its content file when one exists."""
        content_file = sibling_file
        inner_content = None
        if content_file is None:
            for candidate in (path / 'index.md', path / f"{name}{MARKDOWN_SUFFIX}"):
                if candidate.is_file():
                    content_file = inner_content = candidate
                    break

        children = self._parse_directory(path, root, tree, content_file=inner_content)

        if not children and content_file is None:
            self.stats['empty_directories'] += 1
            self.logger.debug(f"Dropping directory without pages: {path}")
            return None

        self.stats['directories'] += 1
        if content_file is not None:
            self.stats['merged_pages'] += 1
            self.logger.debug(f"Merged {content_file.name} into directory page {name}")

        return WikiPage(
            title=decode_url_encoded(name),
            original_title=name,
            source_path=str(path),
            kind=PageKind.MERGED if content_file is not None else PageKind.DIRECTORY,
            relative_path=path.relative_to(root).as_posix(),
            content_path=str(content_file) if content_file is not None else None,
            children=children,
        )

    def _read_order(self, directory: Path) -> Dict[str, int]:
        """Map of normalized ``.order`` entry to rank; empty when there is no file."""
        order_path = directory / ORDER_FILE_NAME
        if not order_path.is_file():
            return {}

        try:
            lines = order_path.read_text(encoding='utf-8').splitlines()
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Error reading .order file {order_path}: {e}")
            return {}

        rank: Dict[str, int] = {}
        for line in lines:
            entry = line.strip()
            if not entry:
                continue
            rank.setdefault(normalize_order_key(decode_url_encoded(entry)), len(rank))

        self.logger.debug(f"Found .order file in {directory} with {len(rank)} entries")
        return rank


__all__ = ['WikiTreeParser', 'DEFAULT_EXCLUDED_NAMES', 'UNORDERED_RANK']
