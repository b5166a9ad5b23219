"""Block rules: quotes and lists whose content is converted before templating."""

import logging
import re
from typing import List

from .rewrite_rules import RewriteRule, TranscodeContext, innermost_pattern, parse_attributes, substitute_nested

logger = logging.getLogger('forum_import.converters.blockrules')

_QUOTE = innermost_pattern('quote')
_LIST = innermost_pattern('list')
_LIST_ITEM = re.compile(r'<li(?:\s[^>]*)?>(.*?)</li>', re.IGNORECASE | re.DOTALL)
# s9e keeps the "> " typed by the author inside quotes as <i>&gt; </i>
_QUOTE_MARKER = re.compile(r'<i>\s*>\s*</i>', re.IGNORECASE)
_EXCESS_BLANK_LINES = re.compile(r'\n{3,}')

UNORDERED_LIST_TYPES = {'', 'disc', 'circle', 'square'}


def _convert_fragment(fragment: str, context: TranscodeContext) -> str:
    """Convert a fragment and lay out any blocks nested inside it."""
    markdown = context.vault.expand(context.converter.to_markdown(fragment))
    return _EXCESS_BLANK_LINES.sub('\n\n', markdown).strip()


def rewrite_quotes(text: str, context: TranscodeContext) -> str:
    def replace(match: re.Match) -> str:
        content = _QUOTE_MARKER.sub('', match.group('content'))
        markdown = _convert_fragment(content, context)
        if not markdown:
            return ''

        lines = [f'> {line}' if line.strip() else '>' for line in markdown.split('\n')]
        return context.vault.store('\n\n' + '\n'.join(lines) + '\n\n')

    return substitute_nested(_QUOTE, replace, text)


def rewrite_lists(text: str, context: TranscodeContext) -> str:
    def replace(match: re.Match) -> str:
        list_type = parse_attributes(match.group('attrs')).get('type', '').lower()
        ordered = list_type not in UNORDERED_LIST_TYPES

        items: List[str] = []
        for index, item in enumerate(_LIST_ITEM.findall(match.group('content')), start=1):
            marker = f'{index}.' if ordered else '-'
            indent = ' ' * (len(marker) + 1)
            lines = _convert_fragment(item, context).split('\n')
            body = [f'{marker} {lines[0]}']
            body.extend(f'{indent}{line}' if line.strip() else '' for line in lines[1:])
            items.append('\n'.join(body))

        if not items:
            return match.group('content')

        return context.vault.store('\n\n' + '\n'.join(items) + '\n\n')

    return substitute_nested(_LIST, replace, text)


def block_rules() -> List[RewriteRule]:
    return [
        RewriteRule('quotes', rewrite_quotes, 'quote blocks to > prefixed markdown'),
        RewriteRule('lists', rewrite_lists, 'list blocks to ordered or bulleted markdown'),
    ]


__all__ = ['block_rules', 'rewrite_lists', 'rewrite_quotes', 'UNORDERED_LIST_TYPES']
