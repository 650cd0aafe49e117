"""Tests for the offline HTML preview."""

import pytest

from converters.macro_handler import MacroHandler
from exporters.local_preview import LocalPreviewExporter, slugify
from fetchers.attachment_index import AttachmentIndex
from fetchers.wiki_parser import WikiTreeParser


def write(path, text=''):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding='utf-8')


@pytest.fixture
def wiki(tmp_path):
    root = tmp_path / 'wiki'
    write(root / 'Home.md', '# Welcome\n\nSee [[Install]] and [[Missing Page]].\n\n![[logo.png=300x]]')
    write(root / 'Guide' / 'Install.md', "```bash\necho '<ok>'\n```\n")
    write(root / 'A' / 'Setup.md', 'first')
    write(root / 'B' / 'Setup.md', 'second')
    write(root / '.attachments' / 'logo.png=300x', 'png')
    return root


@pytest.fixture
def exported(wiki, tmp_path):
    output = tmp_path / 'out'
    exporter = LocalPreviewExporter({'local': {'output_directory': str(output)}})
    tree = WikiTreeParser().parse(str(wiki))
    stats = exporter.export(tree, AttachmentIndex.build(wiki / '.attachments'))
    return exporter, stats, output


def test_one_file_per_page(exported):
    _, stats, output = exported

    assert stats['pages_written'] == 7
    assert stats['output_directory'] == str(output)
    assert sorted(p.name for p in output.glob('*.html')) == [
        'a.html', 'b.html', 'guide.html', 'home.html', 'index.html',
        'install.html', 'setup-2.html', 'setup.html',
    ]
    assert 'first' in (output / 'setup.html').read_text(encoding='utf-8')
    assert 'second' in (output / 'setup-2.html').read_text(encoding='utf-8')


def test_links_point_at_local_files(exported):
    exporter, stats, output = exported
    home = (output / 'home.html').read_text(encoding='utf-8')

    assert 'href="install.html"' in home
    assert 'href="#Missing-Page"' in home
    assert stats['broken_links'] == 1
    assert exporter.unresolved_links == [{'page': 'Home', 'target': 'Missing Page'}]


def test_attachments_are_copied_and_shown(exported):
    _, stats, output = exported
    home = (output / 'home.html').read_text(encoding='utf-8')

    assert (output / 'attachments' / 'logo.png').read_text(encoding='utf-8') == 'png'
    assert stats['attachments_copied'] == 1
    assert '<img' in home
    assert 'src="attachments/logo.png"' in home
    assert 'width="300"' in home
    assert 'ac:image' not in home


def test_code_blocks_become_pre(exported):
    _, _, output = exported
    install = (output / 'install.html').read_text(encoding='utf-8')

    assert '<pre><code class="language-bash">echo \'&lt;ok&gt;\'</code></pre>' in install


def test_directory_pages_list_children(exported):
    _, _, output = exported
    guide = (output / 'guide.html').read_text(encoding='utf-8')

    assert '<ul class="children"><li><a href="install.html">Install</a></li></ul>' in guide


def test_index_lists_the_tree(exported):
    _, _, output = exported
    index = (output / 'index.html').read_text(encoding='utf-8')

    assert '<a href="guide.html">Guide</a><ul><li><a href="install.html">Install</a></li></ul>' in index
    assert '7 pages' in index


def test_fixed_titles_are_used(wiki, tmp_path):
    output = tmp_path / 'fixed'
    exporter = LocalPreviewExporter(
        {'local': {'output_directory': str(output)}}, fixes={'B/Setup.md': 'Proj - Setup'}
    )

    exporter.export(WikiTreeParser().parse(str(wiki)))

    assert (output / 'proj-setup.html').exists()
    assert not (output / 'setup-2.html').exists()


class TestBrowserHtml:

    def setup_method(self):
        self.exporter = LocalPreviewExporter({'local': {'output_directory': 'unused'}})
        self.macros = MacroHandler()

    def test_attachment_link(self):
        result = self.exporter.to_browser_html(self.macros.attachment_link('data.csv', 'Data & more'))

        assert result == '<a href="attachments/data.csv">Data &amp; more</a>'

    def test_view_file(self):
        result = self.exporter.to_browser_html(self.macros.view_file('spec.pdf'))

        assert result == '<a href="attachments/spec.pdf">spec.pdf</a>'

    def test_code_with_cdata_terminator(self):
        result = self.exporter.to_browser_html(self.macros.code_block('a ]]> b', 'text'))

        assert '<code class="language-text">a ]]&gt; b</code>' in result

    def test_toc_links_headings(self):
        storage = self.macros.table_of_contents() + '<h1>Intro</h1><h2>Next Steps</h2>'

        result = self.exporter.to_browser_html(storage)

        assert '<a href="#intro">Intro</a>' in result
        assert '<h2 id="next-steps">Next Steps</h2>' in result

    def test_url_image(self):
        result = self.exporter.to_browser_html(self.macros.url_image('https://example.com/a.png', 'A'))

        assert result == '<img src="https://example.com/a.png" alt="A"/>'


def test_slugify():
    assert slugify('Setup Guide: Linux') == 'setup-guide-linux'
    assert slugify('???') == 'page'
