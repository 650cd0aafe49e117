"""Fetchers package for reading an Azure DevOps Wiki export from disk."""

from .attachment_index import AttachmentIndex
from .wiki_parser import WikiTreeParser

__all__ = [
    'AttachmentIndex',
    'WikiTreeParser'
]
