"""Tests for the attachment index."""

import pytest

from fetchers.attachment_index import AttachmentIndex


@pytest.fixture
def attachments(tmp_path):
    directory = tmp_path / '.attachments'
    directory.mkdir()
    (directory / 'logo.png=300x').write_bytes(b'logo')
    (directory / 'photo-3fa85f64-5717-4562-b3fc-2c963f66afa6.jpg').write_bytes(b'photo')
    (directory / 'spec.pdf').write_bytes(b'%PDF')
    (directory / '.DS_Store').write_bytes(b'')
    nested = directory / 'nested'
    nested.mkdir()
    (nested / 'deep.gif').write_bytes(b'gif')
    return directory


def test_files_are_keyed_by_clean_name(attachments):
    index = AttachmentIndex.build(attachments)

    assert sorted(index.names()) == ['deep.gif', 'logo.png', 'photo.jpg', 'spec.pdf']
    record = index.get('logo.png')
    assert record.file_name == 'logo.png=300x'
    assert record.size_bytes == 4
    assert record.mime_type == 'image/png'
    assert record.is_image


def test_lookup_by_raw_name(attachments):
    index = AttachmentIndex.build(attachments)

    assert index.get('logo.png%20%3D300x').clean_file_name == 'logo.png'
    assert 'photo-3fa85f64-5717-4562-b3fc-2c963f66afa6.jpg' in index
    assert index.get('missing.png') is None
    assert 'missing.png' not in index


def test_non_recursive_scan(attachments):
    index = AttachmentIndex.build(attachments, recursive=False)

    assert 'deep.gif' not in index
    assert len(index) == 3


def test_collisions_last_write_wins(tmp_path):
    directory = tmp_path / '.attachments'
    directory.mkdir()
    (directory / 'diagram.png').write_bytes(b'a')
    (directory / 'diagram.png%20%3D750x').write_bytes(b'bb')

    index = AttachmentIndex.build(directory)

    assert len(index) == 1
    assert index.get('diagram.png').file_name == 'diagram.png%20%3D750x'
    assert index.stats['collisions'] == 1
    assert index.stats['files_indexed'] == 2


def test_multiple_and_missing_directories(tmp_path, attachments):
    other = tmp_path / 'Guide' / '.attachments'
    other.mkdir(parents=True)
    (other / 'install.png').write_bytes(b'png')

    index = AttachmentIndex.build([attachments, other, tmp_path / 'nope'])

    assert 'install.png' in index
    assert 'logo.png' in index
    assert index.stats['directories'] == 2


def test_build_without_directories():
    index = AttachmentIndex.build(None)

    assert len(index) == 0
    assert list(index) == []
