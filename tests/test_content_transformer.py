"""Tests for Markdown to storage-format conversion."""

import unittest
from unittest.mock import patch

from bs4 import BeautifulSoup

from converters import convert_markdown
from converters.content_transformer import NO_CONTENT_HTML, ContentTransformer
from models import AttachmentRecord


def record(name, mime_type, file_name=None):
    return AttachmentRecord(
        file_name=file_name or name,
        clean_file_name=name,
        filesystem_path=f'/wiki/.attachments/{file_name or name}',
        size_bytes=10,
        mime_type=mime_type,
    )


class TestContentTransformer(unittest.TestCase):

    def setUp(self):
        self.transformer = ContentTransformer(page_base_url='https://confluence.example.com/wiki/spaces/DOC')
        self.index = {
            'logo.png': record('logo.png', 'image/png', 'logo.png=300x'),
            'spec.pdf': record('spec.pdf', 'application/pdf'),
            'diagram.png': record('diagram.png', 'image/png'),
            'data.csv': record('data.csv', 'application/octet-stream'),
        }

    def test_wiki_embed_with_size_hint(self):
        html = self.transformer.transform('![[logo.png=300x]]', self.index)

        self.assertIn('<ri:attachment ri:filename="logo.png" />', html)
        self.assertIn('<ac:parameter ac:name="width">300</ac:parameter>', html)
        self.assertNotIn('=300x', html)

    def test_markdown_image_with_spaced_size_hint(self):
        html = self.transformer.transform('![Logo](/.attachments/logo.png =300x)', self.index)

        self.assertIn('ac:alt="Logo"', html)
        self.assertIn('<ri:attachment ri:filename="logo.png" />', html)
        self.assertIn('<ac:parameter ac:name="width">300</ac:parameter>', html)

    def test_html_img_tag_keeps_attributes(self):
        html = self.transformer.transform(
            'See <img src="/.attachments/diagram.png" alt="Flow" width="500" height="200">', self.index
        )

        self.assertIn('ac:alt="Flow"', html)
        self.assertIn('<ri:attachment ri:filename="diagram.png" />', html)
        self.assertIn('<ac:parameter ac:name="width">500</ac:parameter>', html)
        self.assertIn('<ac:parameter ac:name="height">200</ac:parameter>', html)

    def test_bare_image_reference(self):
        html = self.transformer.transform('Our logo: !logo.png', self.index)

        self.assertIn('<ri:attachment ri:filename="logo.png" />', html)

    def test_document_gets_file_preview(self):
        html = self.transformer.transform('![Spec](/.attachments/spec.pdf)', self.index)

        self.assertIn('<ac:structured-macro ac:name="view-file"', html)
        self.assertIn('<ac:parameter ac:name="name">spec.pdf</ac:parameter>', html)

    def test_other_files_get_download_link(self):
        html = self.transformer.transform('[Data](/.attachments/data.csv)', self.index)

        self.assertIn('<ac:link><ri:attachment ri:filename="data.csv" />', html)
        self.assertIn('<![CDATA[Data]]>', html)

    def test_unknown_attachment_is_still_referenced(self):
        html, stats = self.transformer.transform_with_stats('![x](/.attachments/missing.png)', self.index)

        self.assertIn('<ri:attachment ri:filename="missing.png" />', html)
        self.assertEqual(stats['missing_attachments'], ['missing.png'])

    def test_external_images_pass_through(self):
        html = self.transformer.transform('![badge](https://img.example.com/badge.svg)', self.index)

        self.assertIn('<ri:url ri:value="https://img.example.com/badge.svg" />', html)
        self.assertNotIn('ri:attachment', html)

    def test_attachment_anchor_becomes_image(self):
        html = self.transformer.transform('<a href="/.attachments/diagram.png">diagram</a>', self.index)

        self.assertIn('<ri:attachment ri:filename="diagram.png" />', html)
        self.assertNotIn('href="/.attachments', html)

    def test_code_block_is_protected_and_escaped(self):
        content = (
            "Intro\n\n"
            "```python\n"
            "if a < b and c | d:\n"
            "    print('[x](y)', '![[logo.png]]')\n"
            "```\n"
        )
        html, stats = self.transformer.transform_with_stats(content, self.index)

        self.assertEqual(stats['code_blocks'], 1)
        self.assertIn('<ac:structured-macro ac:name="code"', html)
        self.assertIn('<ac:parameter ac:name="language">python</ac:parameter>', html)
        self.assertIn('<ac:parameter ac:name="linenumbers">true</ac:parameter>', html)
        self.assertIn('if a &lt; b and c | d:', html)
        self.assertIn("print('[x](y)', '![[logo.png]]')", html)
        self.assertNotIn('<p><ac:structured-macro ac:name="code"', html)
        self.assertEqual(stats['attachments_referenced'], [])

    def test_code_block_without_language(self):
        html = self.transformer.transform('```\nplain\n```', self.index)

        self.assertIn('<ac:parameter ac:name="language">none</ac:parameter>', html)

    def test_toc_macro(self):
        html = self.transformer.transform('[[_TOC_]]\n\n# Title\n\nBody', self.index)

        self.assertIn('<ac:structured-macro ac:name="toc"', html)
        self.assertNotIn('[[_TOC_]]', html)
        self.assertIn('<h1>Title</h1>', html)

    def test_tables_render(self):
        content = "| Name   |   Value |\n|---|---|\n|  a  | b |\n"
        html = self.transformer.transform(content, self.index)

        soup = BeautifulSoup(html, 'lxml')
        self.assertEqual([th.get_text() for th in soup.find_all('th')], ['Name', 'Value'])
        self.assertEqual([td.get_text() for td in soup.find_all('td')], ['a', 'b'])

    def test_resolved_page_link(self):
        html = self.transformer.transform('See [[Install]]', self.index, {'Install': '42'})

        self.assertIn('href="https://confluence.example.com/wiki/spaces/DOC/pages/42"', html)

    def test_unresolved_link_falls_back_to_anchor(self):
        html, stats = self.transformer.transform_with_stats('Read [[Setup Guide]] first', self.index, {})

        self.assertIn('<a href="#Setup-Guide">Setup Guide</a>', html)
        self.assertEqual(stats['broken_links'], ['Setup Guide'])

    def test_empty_content(self):
        self.assertEqual(self.transformer.transform('   \n'), NO_CONTENT_HTML)
        self.assertEqual(self.transformer.transform(None), NO_CONTENT_HTML)

    def test_failure_renders_error_block(self):
        with patch.object(self.transformer.md, 'convert', side_effect=RuntimeError('boom')):
            html, stats = self.transformer.transform_with_stats('# Title <b>', self.index)

        self.assertTrue(html.startswith('<p>Error converting content: boom</p>'))
        self.assertIn('<pre># Title &lt;b&gt;...</pre>', html)
        self.assertEqual(stats['error'], 'boom')

    def test_blob_urls_for_images(self):
        html = self.transformer.transform(
            '![Logo](/.attachments/logo.png)', self.index,
            blob_url_resolver=lambda name: f'https://blob.example.com/{name}'
        )

        self.assertIn('<ri:url ri:value="https://blob.example.com/logo.png" />', html)

    def test_blob_url_failure_falls_back_to_attachment(self):
        def failing(name):
            raise RuntimeError('no blob')

        html = self.transformer.transform('![Logo](/.attachments/logo.png)', self.index, blob_url_resolver=failing)

        self.assertIn('<ri:attachment ri:filename="logo.png" />', html)

    def test_inline_macro_keeps_paragraph(self):
        html = self.transformer.transform('Logo ![[logo.png]] here', self.index)

        self.assertTrue(html.startswith('<p>Logo <ac:image'))
        self.assertTrue(html.endswith('here</p>'))


class TestFindAttachmentReferences(unittest.TestCase):

    def test_collects_clean_names_outside_code(self):
        content = (
            "![a](/.attachments/one.png =200x)\n"
            "```\n![b](/.attachments/two.png)\n```\n"
            "![[three.png%20%3D750x]]\n"
            "![ext](https://example.com/y.png)\n"
            "[Spec](/.attachments/spec-3fa85f64-5717-4562-b3fc-2c963f66afa6.pdf)\n"
            "<img src=\"/.attachments/four.gif\">\n"
            "![again](/.attachments/one.png)\n"
        )

        names = ContentTransformer().find_attachment_references(content)

        self.assertEqual(names, ['one.png', 'three.png', 'spec.pdf', 'four.gif'])

    def test_no_content(self):
        self.assertEqual(ContentTransformer().find_attachment_references(''), [])


def test_convert_markdown_helper():
    html = convert_markdown('# Title\n\n[[Setup Guide]]')

    assert '<h1>Title</h1>' in html
    assert 'href="#Setup-Guide"' in html


if __name__ == '__main__':
    unittest.main()
