"""Index of wiki attachment files keyed by their clean file name."""

import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Union

from converters.path_sanitizer import clean_attachment_name, get_mime_type
from models import AttachmentRecord

logger = logging.getLogger('wiki_confluence_migrator.fetchers.attachment_index')


class AttachmentIndex:
    """
    Lookup table of attachment files.

    Raw export names (``diagram.png%20%3D750x``, GUID-suffixed copies) are
    reduced with :func:`clean_attachment_name`; when two files reduce to the
    same clean name the one indexed last wins.
    """

    def __init__(self, logger: logging.Logger = None):
        self.logger = logger or logging.getLogger('wiki_confluence_migrator.fetchers.attachment_index')
        self._records: Dict[str, AttachmentRecord] = {}
        self.stats = {
            'files_indexed': 0,
            'collisions': 0,
            'directories': 0,
        }

    @classmethod
    def build(
        cls,
        attachment_dirs: Union[str, Path, Iterable[Union[str, Path]], None],
        recursive: bool = True,
        logger: logging.Logger = None
    ) -> 'AttachmentIndex':
        """
        Scan one or more attachment directories.

        Args:
            attachment_dirs: Directory or directories to scan (missing ones are skipped)
            recursive: Also index files in nested folders
            logger: Optional logger instance

        Returns:
            Populated AttachmentIndex
        """
        index = cls(logger=logger)
        if attachment_dirs is None:
            return index
        if isinstance(attachment_dirs, (str, Path)):
            attachment_dirs = [attachment_dirs]

        for directory in attachment_dirs:
            index.add_directory(directory, recursive=recursive)

        index.logger.info(
            f"Indexed {len(index)} attachments from {index.stats['directories']} directories "
            f"({index.stats['collisions']} name collisions)"
        )
        return index

    def add_directory(self, directory: Union[str, Path], recursive: bool = True) -> None:
        """Index every file under ``directory``."""
        path = Path(directory)
        if not path.is_dir():
            self.logger.debug(f"Attachment directory not found, skipping: {path}")
            return

        self.stats['directories'] += 1
        pattern = '**/*' if recursive else '*'
        for file_path in sorted(path.glob(pattern)):
            if file_path.is_file() and not file_path.name.startswith('.'):
                self.add_file(file_path)

    def add_file(self, file_path: Union[str, Path]) -> Optional[AttachmentRecord]:
        """Index a single file; returns its record, or None if it cannot be read."""
        path = Path(file_path)
        try:
            size = path.stat().st_size
        except OSError as e:
            self.logger.warning(f"Cannot stat attachment {path}: {e}")
            return None

        clean_name = clean_attachment_name(path.name)
        record = AttachmentRecord(
            file_name=path.name,
            clean_file_name=clean_name,
            filesystem_path=str(path),
            size_bytes=size,
            mime_type=get_mime_type(clean_name),
        )

        previous = self._records.get(clean_name)
        if previous is not None and previous.filesystem_path != record.filesystem_path:
            self.stats['collisions'] += 1
            self.logger.debug(
                f"Attachment name collision on '{clean_name}': "
                f"{previous.file_name} replaced by {record.file_name}"
            )

        self._records[clean_name] = record
        self.stats['files_indexed'] += 1
        return record

    def get(self, name: str, default: Optional[AttachmentRecord] = None) -> Optional[AttachmentRecord]:
        """Record for a raw or clean file name."""
        if not name:
            return default
        record = self._records.get(name)
        if record is None:
            record = self._records.get(clean_attachment_name(name))
        return record if record is not None else default

    def records(self) -> List[AttachmentRecord]:
        return list(self._records.values())

    def names(self) -> List[str]:
        return list(self._records.keys())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)


__all__ = ['AttachmentIndex']
