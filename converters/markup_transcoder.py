"""
Markup transcoder for legacy forum bodies.

Turns the pseudo-XML / BBCode dialect stored by legacy forums (s9e-formatted
Flarum bodies in particular) into markdown plus the BBCode the target
platform understands. Passes run in a fixed order over a per-body context;
anything a pass builds by hand goes through the body's placeholder vault so
the generic HTML pass cannot mangle it.
"""

import html
import logging
import re
from typing import Any, Dict, List, Optional

from models import TranscodedBody
from .block_rules import block_rules
from .markdown_converter import MarkdownConverter
from .mention_resolver import MentionResolver
from .placeholder_vault import LeftoverPlaceholderError, PlaceholderVault
from .rewrite_rules import (
    RewriteRule,
    ThreadLookup,
    TranscodeContext,
    decode_entities,
    inline_rules,
    keep_unmatched_tags,
    make_strip_wrappers,
)

logger = logging.getLogger('forum_import.converters.markuptranscoder')

TITLE_MAX_LENGTH = 255
DEFAULT_FALLBACK_TITLE = 'Untitled'

_CONTROL_CHARACTERS = re.compile(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]')
_EXCESS_BLANK_LINES = re.compile(r'\n{3,}')
_TRAILING_SPACE = re.compile(r'[ \t]+$', re.MULTILINE)


class MarkupTranscoder:
    """
    Runs the ordered rewrite passes over one body at a time.

    Pass order:
        1. decode_entities
        2. strip_wrappers
        3. inline rules (code, links, underline, video_embeds, styles)
        4. mentions
        5. block rules (quotes, lists)
        6. unmatched_tags
        7. html_to_markdown
        8. vault drain

    Escaped "<" in the source is protected while entities are decoded, so
    text such as "&lt;b&gt;" stays literal instead of becoming markup. Legacy
    tags left unpaired by the rules are kept verbatim; any other HTML goes
    through the generic pass, which keeps text and drops unknown tags.
    """

    def __init__(
        self,
        thread_lookup: Optional[ThreadLookup] = None,
        config: Dict[str, Any] = None,
        logger: logging.Logger = None
    ):
        """
        Initialize the transcoder.

        Args:
            thread_lookup: Callable resolving a post source id to its
                TopicThread (usually IdentityMap.resolve_thread)
            config: Full configuration dictionary; the `transcoder` and
                `migration` sections are read
            logger: Optional logger instance
        """
        self.config = config or {}
        self.logger = logger or logging.getLogger('forum_import.converters.markuptranscoder')
        self.thread_lookup = thread_lookup

        transcoder_config = self.config.get('transcoder', {})
        self.strict = self.config.get('migration', {}).get('strict_placeholders', False)
        self.fallback_title = transcoder_config.get('fallback_title', DEFAULT_FALLBACK_TITLE)

        self.converter = MarkdownConverter(logger=self.logger, config=transcoder_config)
        self.mention_resolver = MentionResolver(thread_lookup=thread_lookup, logger=self.logger)
        self.rules = self._build_rules(transcoder_config)

    def _build_rules(self, transcoder_config: Dict[str, Any]) -> List[RewriteRule]:
        strip_wrappers = make_strip_wrappers(
            drop_tags=transcoder_config.get('drop_tags', ('s', 'e')),
            unwrap_tags=transcoder_config.get('unwrap_tags', ('r', 't'))
        )

        rules = [
            RewriteRule('decode_entities', decode_entities, 'HTML entities to characters'),
            RewriteRule('strip_wrappers', strip_wrappers, 'drop markup markers, unwrap document wrappers'),
        ]
        rules.extend(inline_rules())
        rules.append(RewriteRule('mentions', self.mention_resolver, 'post mentions to quote blocks'))
        rules.extend(block_rules())
        rules.append(RewriteRule('unmatched_tags', keep_unmatched_tags, 'unpaired legacy tags kept as text'))
        rules.append(RewriteRule(
            'html_to_markdown',
            lambda text, context: context.converter.to_markdown(text),
            'generic HTML to markdown'
        ))
        return rules

    @property
    def rule_names(self) -> List[str]:
        return [rule.name for rule in self.rules]

    def transcode(self, raw: Optional[str], source_id: Optional[str] = None) -> TranscodedBody:
        """
        Transcode one body.

        Malformed markup never raises: unmatched tags are left as text.

        Args:
            raw: Body in the legacy dialect
            source_id: Source id of the record, used in log messages

        Returns:
            TranscodedBody with the final text and mention metadata

        Raises:
            LeftoverPlaceholderError: In strict mode, when a vault key
                survives the drain
        """
        if not raw or not raw.strip():
            return TranscodedBody(text='')

        context = TranscodeContext(
            vault=PlaceholderVault(strict=self.strict, logger=self.logger),
            converter=self.converter,
            thread_lookup=self.thread_lookup,
            source_id=source_id
        )

        text = raw
        for rule in self.rules:
            text = rule(text, context)
            self.logger.debug(f"Record {source_id}: pass '{rule.name}' done")

        try:
            text = context.vault.apply(text)
        except LeftoverPlaceholderError:
            self.logger.error(f"Placeholder keys survived transcoding of record {source_id}")
            raise

        text = _TRAILING_SPACE.sub('', text)
        text = _EXCESS_BLANK_LINES.sub('\n\n', text).strip()

        return TranscodedBody(
            text=text,
            reply_to_post_number=context.reply_to_post_number,
            mentions=context.mentions
        )

    def transcode_title(self, title: Optional[str]) -> str:
        """
        Clean a topic title.

        Entities are decoded before truncation so the stored title never
        exceeds TITLE_MAX_LENGTH characters.
        """
        text = html.unescape(title or '')
        text = _CONTROL_CHARACTERS.sub('', text).replace('\r', ' ').replace('\n', ' ').replace('\t', ' ')
        text = text.strip()[:TITLE_MAX_LENGTH].strip()
        return text or self.fallback_title


__all__ = ['DEFAULT_FALLBACK_TITLE', 'MarkupTranscoder', 'TITLE_MAX_LENGTH']
