"""Cross-post mention resolution for legacy forum bodies."""

import logging
import re
from typing import Any, Dict, Optional

from .rewrite_rules import ThreadLookup, TranscodeContext, parse_attributes

logger = logging.getLogger('forum_import.converters.mentionresolver')

_MENTION = re.compile(
    r'<(?P<tag>postmention|mention)(?P<attrs>\s[^>]*)?>(?P<content>.*?)</(?P=tag)>',
    re.IGNORECASE | re.DOTALL
)


class MentionResolver:
    """
    Rewrites post mention tags into quote blocks.

    A mention tag carries the mentioned post's source id, a display name and
    its visible text. Mentions of imported posts become
    `[quote="name, post:N, topic:T"]` blocks. The post number of the last
    resolved mention is reported as the body's reply-to post number; earlier
    mentions still become quotes but do not set the reply link.
    """

    def __init__(self, thread_lookup: Optional[ThreadLookup] = None, logger: logging.Logger = None):
        self.thread_lookup = thread_lookup
        self.logger = logger or logging.getLogger('forum_import.converters.mentionresolver')

    def __call__(self, text: str, context: TranscodeContext) -> str:
        return self.resolve(text, context)

    def resolve(self, text: str, context: TranscodeContext) -> str:
        lookup = context.thread_lookup or self.thread_lookup

        def replace(match: re.Match) -> str:
            attrs = parse_attributes(match.group('attrs'))
            visible = match.group('content').strip()
            post_id = attrs.get('id')
            name = attrs.get('displayname') or attrs.get('username') or ''

            if not post_id or lookup is None:
                return visible

            thread = lookup(post_id)
            if thread is None:
                self.logger.debug(
                    f"Mention of unknown post {post_id} in record {context.source_id}; keeping text"
                )
                return visible

            context.mentions.append(self._mention_metadata(post_id, name, thread))
            context.reply_to_post_number = thread.post_number

            quote = f'\n\n[quote="{name}, post:{thread.post_number}, topic:{thread.topic_id}"]\n'
            if visible:
                quote += f'{visible}\n'
            quote += '[/quote]\n\n'
            return context.vault.store(quote)

        return _MENTION.sub(replace, text)

    @staticmethod
    def _mention_metadata(post_id: str, name: str, thread: Any) -> Dict[str, Any]:
        return {
            'source_post_id': post_id,
            'display_name': name,
            'topic_id': thread.topic_id,
            'post_number': thread.post_number
        }


__all__ = ['MentionResolver']
