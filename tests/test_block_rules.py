"""Tests for quote and list block rules."""

import unittest

from converters.block_rules import rewrite_lists, rewrite_quotes
from converters.markdown_converter import MarkdownConverter
from converters.placeholder_vault import PlaceholderVault
from converters.rewrite_rules import TranscodeContext


class TestQuoteRule(unittest.TestCase):
    def setUp(self):
        self.context = TranscodeContext(vault=PlaceholderVault(strict=True), converter=MarkdownConverter())

    def render(self, text):
        return self.context.vault.apply(rewrite_quotes(text, self.context))

    def test_simple_quote(self):
        self.assertEqual(self.render('<QUOTE><p>hello</p></QUOTE>'), '\n\n> hello\n\n')

    def test_typed_marker_is_removed(self):
        self.assertEqual(self.render('<QUOTE><i>> </i><p>hello</p></QUOTE>'), '\n\n> hello\n\n')

    def test_content_is_converted_to_markdown(self):
        result = self.render('<QUOTE><p>so <b>very</b> true</p></QUOTE>')
        self.assertIn('> so **very** true', result)

    def test_nested_quotes(self):
        result = self.render('<QUOTE><p>outer</p><QUOTE><p>inner</p></QUOTE></QUOTE>')
        self.assertEqual(result, '\n\n> outer\n>\n> > inner\n\n')

    def test_empty_quote_disappears(self):
        self.assertEqual(self.render('a<QUOTE></QUOTE>b'), 'ab')

    def test_multiple_paragraphs_keep_blank_quote_lines(self):
        result = self.render('<QUOTE><p>one</p><p>two</p></QUOTE>')
        self.assertEqual(result, '\n\n> one\n>\n> two\n\n')


class TestListRule(unittest.TestCase):
    def setUp(self):
        self.context = TranscodeContext(vault=PlaceholderVault(strict=True), converter=MarkdownConverter())

    def render(self, text):
        return self.context.vault.apply(rewrite_lists(text, self.context))

    def test_unordered_list(self):
        self.assertEqual(self.render('<LIST><LI>one</LI><LI>two</LI></LIST>'), '\n\n- one\n- two\n\n')

    def test_ordered_list(self):
        result = self.render('<LIST type="decimal"><LI>first</LI><LI>second</LI></LIST>')
        self.assertEqual(result, '\n\n1. first\n2. second\n\n')

    def test_disc_list_is_unordered(self):
        result = self.render('<LIST type="disc"><LI>x</LI></LIST>')
        self.assertEqual(result, '\n\n- x\n\n')

    def test_nested_list_is_indented(self):
        result = self.render('<LIST><LI>a<LIST><LI>b</LI></LIST></LI></LIST>')
        self.assertEqual(result, '\n\n- a\n\n  - b\n\n')

    def test_list_without_items_keeps_content(self):
        self.assertEqual(self.render('<LIST>loose text</LIST>'), 'loose text')

    def test_item_content_is_converted(self):
        result = self.render('<LIST><LI><b>bold</b> item</LI></LIST>')
        self.assertIn('- **bold** item', result)


if __name__ == '__main__':
    unittest.main()
