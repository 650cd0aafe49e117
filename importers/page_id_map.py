"""
Title to Confluence page id map built during publication.

The placeholder pass registers every page before its children are created,
so by the time content is resolved every page that can be linked to has an
id here. The map lives only for the duration of one run.
"""

import logging
from typing import Dict, Iterable, Iterator, Optional, Tuple

logger = logging.getLogger('wiki_confluence_migrator.importers.page_id_map')


class PageIdMap:
    """Tracks Confluence page ids by published title."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize page id map.

        Args:
            logger: Optional logger instance (defaults to module logger)
        """
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.importers.page_id_map')

        # Published title -> page id
        self._ids: Dict[str, str] = {}

        # Page id -> published title
        self._titles: Dict[str, str] = {}

        self.logger.debug("Initialized PageIdMap")

    def register(self, title: str, page_id: str, aliases: Iterable[str] = ()) -> None:
        """
        Record the id of a published page.

        Aliases (for example the canonical title of a page published under a
        fixed name) resolve to the same id unless another page already owns
        them.

        Args:
            title: Title the page is published under
            page_id: Confluence page id
            aliases: Extra titles that should resolve to this page
        """
        page_id = str(page_id)
        previous = self._ids.get(title)
        if previous and previous != page_id:
            self.logger.warning(f"Title '{title}' remapped from page {previous} to {page_id}")

        self._ids[title] = page_id
        self._titles[page_id] = title

        for alias in aliases:
            if alias and alias != title:
                self._ids.setdefault(alias, page_id)

        self.logger.debug(f"Mapped '{title}' -> {page_id}")

    def get(self, title: str, default: Optional[str] = None) -> Optional[str]:
        return self._ids.get(title, default)

    def title_for(self, page_id: str) -> Optional[str]:
        return self._titles.get(str(page_id))

    def as_dict(self) -> Dict[str, str]:
        """Snapshot of title -> id, including aliases."""
        return dict(self._ids)

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(self._ids.items())

    def __contains__(self, title: object) -> bool:
        return title in self._ids

    def __getitem__(self, title: str) -> str:
        return self._ids[title]

    def __len__(self) -> int:
        return len(self._titles)


__all__ = ['PageIdMap']
