"""Local export package.

Package Structure:
- local_preview: offline HTML preview of the converted wiki

Key Features:
- Same content pipeline as publication, with links to local ``{slug}.html`` files
- Storage-format macros rendered as plain HTML (code, images, TOC, children)
- Attachments copied next to the pages

Configuration Referenced:
- local.output_directory: Base output path for the preview
"""

from .local_preview import LocalPreviewExporter, slugify

__all__ = [
    'LocalPreviewExporter',
    'slugify'
]
