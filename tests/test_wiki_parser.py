"""Tests for building the page tree from a wiki directory."""

import pytest

from fetchers.wiki_parser import UNORDERED_RANK, WikiTreeParser
from models import PageKind


def write(path, text=''):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')
    return path


def titles(pages):
    return [page.title for page in pages]


@pytest.fixture
def parser():
    return WikiTreeParser()


class TestOrdering:

    def test_order_file_subset_then_alphabetical(self, tmp_path, parser):
        for name in ('delta', 'alpha', 'charlie', 'bravo'):
            write(tmp_path / f'{name}.md', f'# {name}')
        write(tmp_path / '.order', 'charlie\nalpha\n')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['charlie', 'alpha', 'bravo', 'delta']
        assert tree.pages[0].order == 0
        assert tree.pages[1].order == 1
        assert tree.pages[2].order == UNORDERED_RANK

    def test_order_entries_match_encoded_file_names(self, tmp_path, parser):
        write(tmp_path / 'Q%26A.md')
        write(tmp_path / 'Getting-Started.md')
        write(tmp_path / 'Zebra.md')
        write(tmp_path / '.order', 'Zebra\nQ%26A\nGetting Started\n')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['Zebra', 'Q&A', 'Getting-Started']

    def test_first_occurrence_in_order_file_wins(self, tmp_path, parser):
        write(tmp_path / 'a.md')
        write(tmp_path / 'b.md')
        write(tmp_path / '.order', 'b\na\nb\n')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['b', 'a']

    def test_order_applies_per_directory(self, tmp_path, parser):
        write(tmp_path / 'Guide.md')
        write(tmp_path / 'Guide' / 'one.md')
        write(tmp_path / 'Guide' / 'two.md')
        write(tmp_path / 'Guide' / '.order', 'two\none')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages[0].children) == ['two', 'one']


class TestMerging:

    def test_sibling_file_merges_into_directory(self, tmp_path, parser):
        write(tmp_path / 'Foo.md', 'Foo content')
        write(tmp_path / 'Foo' / 'Bar.md', 'Bar content')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['Foo']
        foo = tree.pages[0]
        assert foo.kind is PageKind.MERGED
        assert titles(foo.children) == ['Bar']
        assert foo.read_content() == 'Foo content'
        assert foo.children[0].read_content() == 'Bar content'

    def test_same_named_file_inside_directory(self, tmp_path, parser):
        write(tmp_path / 'Home.md', '# Home')
        write(tmp_path / 'Guide' / 'Guide.md', '# Guide')
        write(tmp_path / 'Guide' / 'Install.md', '# Install')
        write(tmp_path / '.attachments' / 'logo.png=300x', 'png')

        tree = parser.parse(str(tmp_path))

        assert tree.count_pages() == 3
        assert titles(tree.pages) == ['Guide', 'Home']
        guide = tree.pages[0]
        assert guide.kind is PageKind.MERGED
        assert guide.read_content() == '# Guide'
        assert titles(guide.children) == ['Install']
        assert len(tree.attachment_directories) == 1
        assert tree.attachment_directories[0].is_attachment_directory

    def test_sibling_file_takes_precedence_over_index(self, tmp_path, parser):
        write(tmp_path / 'Foo.md', 'sibling')
        write(tmp_path / 'Foo' / 'index.md', 'index')

        tree = parser.parse(str(tmp_path))

        foo = tree.pages[0]
        assert foo.read_content() == 'sibling'
        assert titles(foo.children) == ['index']

    def test_index_file_becomes_directory_content(self, tmp_path, parser):
        write(tmp_path / 'Foo' / 'index.md', 'index')
        write(tmp_path / 'Foo' / 'Child.md', 'child')

        tree = parser.parse(str(tmp_path))

        foo = tree.pages[0]
        assert foo.read_content() == 'index'
        assert titles(foo.children) == ['Child']

    def test_directory_without_content(self, tmp_path, parser):
        write(tmp_path / 'Section' / 'Page.md')

        tree = parser.parse(str(tmp_path))

        section = tree.pages[0]
        assert section.kind is PageKind.DIRECTORY
        assert section.read_content() == ''
        assert not section.has_content


class TestFiltering:

    def test_excluded_and_hidden_entries_are_skipped(self, tmp_path, parser):
        write(tmp_path / 'Page.md')
        write(tmp_path / 'node_modules' / 'pkg.md')
        write(tmp_path / '.git' / 'HEAD.md')
        write(tmp_path / '.hidden.md')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['Page']
        assert parser.stats['excluded'] >= 3

    def test_configured_exclusions(self, tmp_path):
        write(tmp_path / 'Page.md')
        write(tmp_path / 'drafts' / 'Draft.md')

        tree = WikiTreeParser({'wiki': {'exclude': ['drafts']}}).parse(str(tmp_path))

        assert titles(tree.pages) == ['Page']

    def test_directory_without_markdown_is_dropped(self, tmp_path, parser):
        write(tmp_path / 'Page.md')
        write(tmp_path / 'images' / 'notes.txt', 'not a page')

        tree = parser.parse(str(tmp_path))

        assert titles(tree.pages) == ['Page']
        assert parser.stats['empty_directories'] == 1

    def test_duplicate_titles_across_branches_are_kept(self, tmp_path, parser):
        write(tmp_path / 'A' / 'Setup.md')
        write(tmp_path / 'B' / 'Setup.md')

        tree = parser.parse(str(tmp_path))

        assert [p.title for p in tree.walk()] == ['A', 'Setup', 'B', 'Setup']
        assert [p.relative_path for p in tree.walk()] == ['A', 'A/Setup.md', 'B', 'B/Setup.md']

    def test_titles_are_url_decoded(self, tmp_path, parser):
        write(tmp_path / 'Release%20Notes.md')

        tree = parser.parse(str(tmp_path))

        assert tree.pages[0].title == 'Release Notes'
        assert tree.pages[0].original_title == 'Release%20Notes'


def test_missing_root_raises(tmp_path, parser):
    with pytest.raises(FileNotFoundError):
        parser.parse(str(tmp_path / 'does-not-exist'))


def test_stats_are_recorded_in_metadata(tmp_path, parser):
    write(tmp_path / 'Foo.md')
    write(tmp_path / 'Foo' / 'Bar.md')

    tree = parser.parse(str(tmp_path))

    assert tree.metadata['stats']['merged_pages'] == 1
    assert tree.metadata['stats']['markdown_files'] == 1
