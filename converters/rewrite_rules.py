"""
Rewrite rules for legacy forum markup.

Each rule is a named text-to-text function operating on one body. Rules that
emit markdown or BBCode which the generic HTML pass must not touch hand the
fragment to the body's placeholder vault and splice the returned key instead.
"""

import html
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional

from models import TopicThread
from .markdown_converter import MarkdownConverter
from .placeholder_vault import PlaceholderVault

logger = logging.getLogger('forum_import.converters.rewriterules')

# Nested tags are rewritten innermost first; this bounds the rounds
MAX_NESTING = 20

ThreadLookup = Callable[[str], Optional[TopicThread]]

_ATTRIBUTE = re.compile(r'([\w-]+)\s*=\s*"([^"]*)"')


@dataclass
class TranscodeContext:
    """Per-body state shared by the rewrite rules."""

    vault: PlaceholderVault
    converter: MarkdownConverter
    thread_lookup: Optional[ThreadLookup] = None
    source_id: Optional[str] = None
    reply_to_post_number: Optional[int] = None
    mentions: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class RewriteRule:
    """One ordered transcoding pass."""

    name: str
    apply: Callable[[str, TranscodeContext], str]
    description: str = ''

    def __call__(self, text: str, context: TranscodeContext) -> str:
        return self.apply(text, context)


def parse_attributes(raw: str) -> Dict[str, str]:
    """Parse `key="value"` pairs of a pseudo-XML tag (keys lower-cased)."""
    return {key.lower(): value for key, value in _ATTRIBUTE.findall(raw or '')}


def innermost_pattern(tag: str, attributes: bool = True) -> re.Pattern:
    """
    Build a regex matching a `<tag ...>content</tag>` pair whose content
    holds no further opening `<tag`; applied repeatedly it rewrites nested
    constructs from the inside out.
    """
    attrs = r'(?P<attrs>\s[^>]*)?' if attributes else ''
    return re.compile(
        rf'<{tag}{attrs}>(?P<content>(?:(?!<{tag}[\s>]).)*?)</{tag}>',
        re.IGNORECASE | re.DOTALL
    )


def substitute_nested(pattern: re.Pattern, replace: Callable[[re.Match], str], text: str) -> str:
    """Apply a replacement until the text stops changing."""
    for _ in range(MAX_NESTING):
        rewritten = pattern.sub(replace, text)
        if rewritten == text:
            break
        text = rewritten
    return text


def protect_bbcode(vault: PlaceholderVault, tag: str, content: str, value: Optional[str] = None) -> str:
    """Wrap content in vault-protected `[tag]...[/tag]` (content stays convertible)."""
    opening = f'[{tag}={value}]' if value else f'[{tag}]'
    return f'{vault.store(opening)}{content}{vault.store(f"[/{tag}]")}'


# Pass 1: entities

# An escaped "<" is text the author typed; decoding it must not open a tag
_ESCAPED_LT = re.compile(r'&(?:lt|LT|#0*60|#[xX]0*3[cC]);')


def decode_entities(text: str, context: TranscodeContext) -> str:
    text = _ESCAPED_LT.sub(lambda match: context.vault.store('<'), text)
    return html.unescape(text)


# Pass 2: wrappers

def make_strip_wrappers(
    drop_tags: Iterable[str] = ('s', 'e'),
    unwrap_tags: Iterable[str] = ('r', 't')
) -> Callable[[str, TranscodeContext], str]:
    """
    Build the wrapper stripping pass.

    Args:
        drop_tags: Tags removed together with their content. Matched
            case-sensitively: in s9e output only lower-case <s>/<e> are
            markup markers.
        unwrap_tags: Outer document wrappers whose content is kept
    """
    drop_patterns = [
        re.compile(rf'<{re.escape(tag)}(?:\s[^>]*)?>.*?</{re.escape(tag)}>', re.DOTALL)
        for tag in drop_tags
    ]
    unwrap_patterns = [
        re.compile(rf'<{re.escape(tag)}(?:\s[^>]*)?>(.*)</{re.escape(tag)}>', re.DOTALL)
        for tag in unwrap_tags
    ]

    def strip_wrappers(text: str, context: TranscodeContext) -> str:
        for pattern in drop_patterns:
            text = pattern.sub('', text)
        for pattern in unwrap_patterns:
            text = pattern.sub(r'\1', text)
        return text

    return strip_wrappers


# Pass 3: inline constructs

_CODE = re.compile(r'<(?P<tag>c|code)(?:\s[^>]*)?>(?P<content>.*?)</(?P=tag)>', re.IGNORECASE | re.DOTALL)
_PLAIN_URL = re.compile(r'<url>(?P<content>.*?)</url>', re.IGNORECASE | re.DOTALL)
_ATTR_URL = re.compile(r'<url(?P<attrs>\s[^>]*)>(?P<content>.*?)</url>', re.IGNORECASE | re.DOTALL)
_UNDERLINE = innermost_pattern('u', attributes=False)

VIDEO_PROVIDERS = {
    'youtube': 'https://www.youtube.com/watch?v={id}',
    'vimeo': 'https://vimeo.com/{id}',
}

_STYLE_TAGS = {
    'size': 'size',
    'color': 'color',
    'center': None,
    'left': None,
    'right': None,
}


def rewrite_code(text: str, context: TranscodeContext) -> str:
    def replace(match: re.Match) -> str:
        content = match.group('content')
        body = content.strip('\n')
        if '\n' in body:
            return context.vault.store(f"\n\n```\n{body}\n```\n\n")
        return context.vault.store(f"`{content}`")

    return _CODE.sub(replace, text)


def rewrite_links(text: str, context: TranscodeContext) -> str:
    text = _PLAIN_URL.sub(lambda match: match.group('content'), text)

    def replace(match: re.Match) -> str:
        url = parse_attributes(match.group('attrs')).get('url')
        label = match.group('content')
        if not url:
            return match.group(0)
        if not label.strip() or label.strip() == url:
            return url
        return f'[{label}]({url})'

    return _ATTR_URL.sub(replace, text)


def rewrite_underline(text: str, context: TranscodeContext) -> str:
    return substitute_nested(
        _UNDERLINE,
        lambda match: protect_bbcode(context.vault, 'u', match.group('content')),
        text
    )


def rewrite_video_embeds(text: str, context: TranscodeContext) -> str:
    for provider, url_template in VIDEO_PROVIDERS.items():
        bracket = re.compile(rf'\[{provider}\](.*?)\[/{provider}\]', re.IGNORECASE | re.DOTALL)
        text = bracket.sub(lambda match: url_template.format(id=match.group(1).strip()), text)

        tagged = re.compile(
            rf'<{provider}(?P<attrs>\s[^>]*)?>(?P<content>.*?)</{provider}>',
            re.IGNORECASE | re.DOTALL
        )

        def replace(match: re.Match, url_template=url_template) -> str:
            attrs = parse_attributes(match.group('attrs'))
            if attrs.get('id'):
                return url_template.format(id=attrs['id'])
            content = match.group('content').strip()
            if content.startswith('http'):
                return content
            if content:
                return url_template.format(id=content)
            return match.group(0)

        text = tagged.sub(replace, text)
    return text


def rewrite_styles(text: str, context: TranscodeContext) -> str:
    for tag, attribute in _STYLE_TAGS.items():
        pattern = innermost_pattern(tag)

        def replace(match: re.Match, tag=tag, attribute=attribute) -> str:
            value = None
            if attribute:
                value = parse_attributes(match.group('attrs')).get(attribute)
                if not value:
                    return match.group('content')
            return protect_bbcode(context.vault, tag, match.group('content'), value)

        text = substitute_nested(pattern, replace, text)
    return text


# Legacy tags the rules above rewrite when they come in pairs
LEGACY_TAGS = (
    'url', 'c', 'code', 'u', 'size', 'color', 'center', 'left', 'right',
    'quote', 'list', 'mention', 'postmention', 'youtube', 'vimeo'
)
_UNMATCHED_TAG = re.compile(
    rf'</?(?:{"|".join(LEGACY_TAGS)})\b[^>]*>',
    re.IGNORECASE
)


def keep_unmatched_tags(text: str, context: TranscodeContext) -> str:
    """
    Keep legacy tags that are still left as literal text.

    Runs after every pairing rule, so any legacy tag still present was never
    closed (or never opened) and the generic pass would silently drop it.
    """
    return _UNMATCHED_TAG.sub(lambda match: context.vault.store(match.group(0)), text)


def inline_rules() -> List[RewriteRule]:
    """Self-contained inline rules; code goes first so its content is left alone."""
    return [
        RewriteRule('code', rewrite_code, 'code wrappers to backtick spans or fenced blocks'),
        RewriteRule('links', rewrite_links, 'url wrappers to plain URLs or [text](url)'),
        RewriteRule('underline', rewrite_underline, 'underline to [u] BBCode'),
        RewriteRule('video_embeds', rewrite_video_embeds, 'video short-tags to plain URLs'),
        RewriteRule('styles', rewrite_styles, 'size, color and alignment to BBCode'),
    ]


__all__ = [
    'RewriteRule',
    'ThreadLookup',
    'TranscodeContext',
    'VIDEO_PROVIDERS',
    'decode_entities',
    'LEGACY_TAGS',
    'inline_rules',
    'innermost_pattern',
    'keep_unmatched_tags',
    'make_strip_wrappers',
    'parse_attributes',
    'protect_bbcode',
    'rewrite_code',
    'rewrite_links',
    'rewrite_styles',
    'rewrite_underline',
    'rewrite_video_embeds',
    'substitute_nested'
]
