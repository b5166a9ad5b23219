"""Converters package for legacy forum markup to markdown transcoding."""

import logging

from .markdown_converter import MarkdownConverter
from .markup_transcoder import MarkupTranscoder, TITLE_MAX_LENGTH
from .mention_resolver import MentionResolver
from .placeholder_vault import (
    LeftoverPlaceholderError,
    PlaceholderVault,
    VaultAlreadyAppliedError,
    VaultError,
)
from .rewrite_rules import RewriteRule, TranscodeContext

logger = logging.getLogger('forum_import.converters')


def transcode_body(raw, thread_lookup=None, config=None, logger=None):
    """
    Convenience function to transcode a single body.

    Args:
        raw: Body in the legacy forum dialect
        thread_lookup: Optional callable resolving post source ids to
            TopicThread objects
        config: Optional configuration dictionary
        logger: Optional logger instance (uses module logger if not provided)

    Returns:
        TranscodedBody

    Example:
        >>> from converters import transcode_body
        >>> transcode_body('<t><u>hi</u></t>').text
        '[u]hi[/u]'
    """
    if logger is None:
        logger = logging.getLogger('forum_import.converters')

    transcoder = MarkupTranscoder(thread_lookup=thread_lookup, config=config, logger=logger)
    return transcoder.transcode(raw)


__all__ = [
    'transcode_body',
    'LeftoverPlaceholderError',
    'MarkdownConverter',
    'MarkupTranscoder',
    'MentionResolver',
    'PlaceholderVault',
    'RewriteRule',
    'TITLE_MAX_LENGTH',
    'TranscodeContext',
    'VaultAlreadyAppliedError',
    'VaultError'
]
