"""Tests for two-phase publication against an in-memory Confluence."""

import pytest

from converters.macro_handler import MacroHandler
from fake_confluence import FakeConfluence
from fetchers.attachment_index import AttachmentIndex
from fetchers.wiki_parser import WikiTreeParser
from importers.confluence_publisher import PLACEHOLDER_BODY, ConfluencePublisher


CONFIG = {
    'confluence': {'space_key': 'DOC', 'parent_page_id': '1000'},
    'migration': {'upload_workers': 1},
    'export': {'progress_bars': False},
}


def write(path, text=''):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')


@pytest.fixture
def wiki(tmp_path):
    write(tmp_path / 'A.md', '# A')
    write(tmp_path / 'A' / 'B.md', '# B')
    write(tmp_path / 'A' / 'B' / 'C.md', '# C')
    write(tmp_path / 'Links.md', 'See [[C]]\n\n![[logo.png]]')
    write(tmp_path / '.attachments' / 'logo.png', 'png')
    return tmp_path


@pytest.fixture
def tree(wiki):
    return WikiTreeParser().parse(str(wiki))


@pytest.fixture
def index(wiki):
    return AttachmentIndex.build(wiki / '.attachments')


@pytest.fixture
def confluence():
    return FakeConfluence()


@pytest.fixture
def publisher(confluence, index):
    return ConfluencePublisher(confluence, CONFIG, index)


class TestPlaceholders:

    def test_parents_are_created_before_children(self, confluence, publisher, tree):
        stats = publisher.create_placeholders(tree, '1000')

        assert confluence.created_titles() == ['A', 'B', 'C', 'Links']
        a, b, c = (confluence.by_title(t) for t in ('A', 'B', 'C'))
        assert a['parent'] == '1000'
        assert b['parent'] == a['id']
        assert c['parent'] == b['id']
        assert a['body'] == PLACEHOLDER_BODY
        assert stats['created'] == 4
        assert publisher.page_ids.get('C') == c['id']

    def test_existing_page_is_reused(self, confluence, publisher, tree):
        existing = confluence.add_page('A', '1000')

        stats = publisher.create_placeholders(tree, '1000')

        assert stats['reused'] == 1
        assert 'A' not in confluence.created_titles()
        assert confluence.by_title('B')['parent'] == existing

    def test_failed_page_skips_its_subtree(self, confluence, publisher, tree):
        confluence.fail_create.add('B')

        stats = publisher.create_placeholders(tree, '1000')

        assert confluence.created_titles() == ['A', 'B', 'Links']
        assert stats == {'created': 2, 'reused': 0, 'failed': 1, 'skipped': 1}
        assert publisher.failed_pages[0]['title'] == 'B'
        assert publisher.failed_pages[0]['phase'] == 'placeholder'
        assert publisher.skipped_subtrees == [{'title': 'B', 'path': 'A/B', 'pages': ['C']}]

    def test_create_response_without_id_skips_subtree(self, confluence, publisher, tree, monkeypatch):
        create_page = confluence.create_page

        def no_id_for_b(title, space_key, parent_id, body):
            created = create_page(title, space_key, parent_id, body)
            return {'title': title} if title == 'B' else created

        monkeypatch.setattr(confluence, 'create_page', no_id_for_b)

        stats = publisher.create_placeholders(tree, '1000')

        assert stats['failed'] == 1
        assert stats['skipped'] == 1
        assert publisher.page_ids.get('Links') == confluence.by_title('Links')['id']
        assert publisher.skipped_subtrees == [{'title': 'B', 'path': 'A/B', 'pages': ['C']}]

    def test_fixed_titles_are_used(self, confluence, index, tree):
        publisher = ConfluencePublisher(confluence, CONFIG, index, fixes={'A/B/C.md': 'Proj - C'})

        publisher.create_placeholders(tree, '1000')

        assert 'Proj - C' in confluence.created_titles()
        assert publisher.page_ids.get('C') == confluence.by_title('Proj - C')['id']


class TestContent:

    def test_links_resolve_to_placeholder_ids(self, confluence, publisher, tree):
        publisher.create_placeholders(tree, '1000')
        stats = publisher.publish_content(tree, '1000')

        c_id = confluence.by_title('C')['id']
        links = confluence.by_title('Links')
        assert stats['updated'] == 4
        assert f'href="https://confluence.example.com/wiki/spaces/DOC/pages/{c_id}"' in links['body']
        assert links['version'] == 2
        assert publisher.unresolved_links == []

    def test_referenced_attachment_is_uploaded(self, confluence, publisher, tree):
        publisher.create_placeholders(tree, '1000')
        publisher.publish_content(tree, '1000')

        links_id = confluence.by_title('Links')['id']
        assert ('upload_attachment', links_id, 'logo.png') in confluence.calls
        assert '<ri:attachment ri:filename="logo.png" />' in confluence.pages[links_id]['body']
        assert publisher.uploader.stats['uploaded'] == 1

    def test_attachment_already_on_page_is_not_uploaded(self, confluence, publisher, tree):
        publisher.create_placeholders(tree, '1000')
        links_id = confluence.by_title('Links')['id']
        confluence.attachments[links_id] = [{'id': 'att1', 'title': 'logo.png'}]

        publisher.publish_content(tree, '1000')

        assert not any(call[0] == 'upload_attachment' for call in confluence.calls)
        assert publisher.uploader.stats['skipped_existing'] == 1

    def test_pages_without_id_fall_back_to_anchors(self, confluence, publisher, tree):
        confluence.fail_create.add('B')
        publisher.create_placeholders(tree, '1000')

        stats = publisher.publish_content(tree, '1000')

        assert stats['updated'] == 2
        assert stats['skipped'] == 2
        assert stats['broken_links'] == 1
        assert 'href="#C"' in confluence.by_title('Links')['body']
        assert publisher.unresolved_links == [{'page': 'Links', 'target': 'C'}]

    def test_failed_update_does_not_stop_children(self, confluence, publisher, tree):
        confluence.fail_update.add('A')
        publisher.create_placeholders(tree, '1000')

        stats = publisher.publish_content(tree, '1000')

        assert stats['failed'] == 1
        assert confluence.by_title('C')['version'] == 2
        assert [f['title'] for f in publisher.failed_pages] == ['A']
        assert publisher.failed_pages[0]['phase'] == 'content'

    def test_unexpected_page_error_does_not_stop_the_pass(self, confluence, publisher, tree, monkeypatch):
        publisher.create_placeholders(tree, '1000')
        a_id = confluence.by_title('A')['id']
        get_page_by_id = confluence.get_page_by_id

        def broken_for_a(page_id, expand='version'):
            if page_id == a_id:
                raise ValueError('Expecting value: line 1 column 1 (char 0)')
            return get_page_by_id(page_id, expand)

        monkeypatch.setattr(confluence, 'get_page_by_id', broken_for_a)

        stats = publisher.publish_content(tree, '1000')

        assert stats['failed'] == 1
        assert stats['updated'] == 3
        assert confluence.by_title('Links')['version'] == 2
        assert publisher.failed_pages == [{
            'title': 'A',
            'path': 'A',
            'phase': 'content',
            'error': 'Expecting value: line 1 column 1 (char 0)',
        }]

    def test_rerun_updates_existing_pages(self, confluence, index, tree):
        ConfluencePublisher(confluence, CONFIG, index).publish(tree, '1000')
        summary = ConfluencePublisher(confluence, CONFIG, index).publish(tree, '1000')

        assert summary['placeholders']['reused'] == 4
        assert summary['placeholders']['created'] == 0
        assert confluence.by_title('A')['version'] == 3


def test_directory_page_lists_children(tmp_path, confluence):
    write(tmp_path / 'Section' / 'Page.md', '# Page')
    tree = WikiTreeParser().parse(str(tmp_path))
    publisher = ConfluencePublisher(confluence, CONFIG, AttachmentIndex.build(None))

    publisher.publish(tree, '1000')

    assert confluence.by_title('Section')['body'] == MacroHandler().children_display()


def test_clean_parent_deletes_existing_tree(confluence, publisher):
    old = confluence.add_page('Old', '1000')
    confluence.add_page('Old child', old)

    assert publisher.clean_parent('1000') == 2
    assert list(confluence.pages) == ['1000']


def test_summary_collects_phase_records(confluence, publisher, tree):
    confluence.fail_create.add('B')
    publisher.publish(tree, '1000')

    summary = publisher.summary()

    assert summary['stats']['placeholders']['failed'] == 1
    assert summary['skipped_subtrees'][0]['pages'] == ['C']
    assert summary['pages_mapped'] == 2
