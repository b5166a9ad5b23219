"""Generic HTML to Markdown pass for legacy forum bodies."""

import logging
import re
from typing import Any, Dict

from bs4 import BeautifulSoup
from markdownify import MarkdownConverter as MarkdownifyConverter

logger = logging.getLogger('forum_import.converters.markdownconverter')

_TRAILING_SPACE = re.compile(r'[ \t]+$', re.MULTILINE)
_EXCESS_BLANK_LINES = re.compile(r'\n{3,}')


class MarkdownConverter(MarkdownifyConverter):
    """
    Converts whatever HTML is left in a body after the legacy rewrite passes.

    This class extends markdownify.MarkdownConverter with:
    - lxml parsing so malformed legacy markup degrades to text
    - handlers for the few inline tags forum exports leave behind
    - whitespace cleanup of the result
    """

    def __init__(self, logger: logging.Logger = None, config: Dict[str, Any] = None, **kwargs):
        """Initialize markdown converter with logger and configuration."""
        markdownify_options = {
            'heading_style': 'ATX',
            'bullets': '-',
            'escape_asterisks': False,
            'escape_underscores': False,
            'escape_misc': False,
            'wrap': False
        }
        markdownify_options.update(kwargs)

        super().__init__(**markdownify_options)

        self.logger = logger or logging.getLogger('forum_import.converters.markdownconverter')
        self.config = config or {}

    def to_markdown(self, html_content: str) -> str:
        """
        Convert an HTML fragment to markdown.

        Args:
            html_content: HTML (or plain text) fragment

        Returns:
            Markdown with trailing whitespace and blank line runs cleaned up
        """
        if not html_content or not html_content.strip():
            return ''

        soup = self._parse_html(html_content)
        markdown = super().convert(str(soup))
        return self._clean_markdown(markdown)

    def _parse_html(self, html_content: str) -> BeautifulSoup:
        """Parse HTML content with BeautifulSoup."""
        return BeautifulSoup(html_content, 'lxml')

    def _clean_markdown(self, markdown: str) -> str:
        """Clean up markdown formatting issues."""
        markdown = _TRAILING_SPACE.sub('', markdown)
        markdown = _EXCESS_BLANK_LINES.sub('\n\n', markdown)
        return markdown.strip()

    def convert_span(self, el, text, parent_tags=None, **kwargs):
        """Spans carry no meaning in forum bodies; keep their text."""
        return text

    def convert_code(self, el, text, parent_tags=None, **kwargs):
        """Handle inline code and code blocks."""
        parent = el.parent
        if parent and parent.name == 'pre':
            return text
        if not text:
            return ''
        return f"`{text}`"

    def convert_img(self, el, text, parent_tags=None, **kwargs):
        """Handle images."""
        src = el.get('src', '')
        alt = el.get('alt', '')
        title = el.get('title', '')

        if not alt and title:
            alt = title
        if not src:
            return alt

        return f'![{alt}]({src})'


__all__ = ['MarkdownConverter']
