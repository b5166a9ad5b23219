"""Tests for the full markup transcoding pipeline using Flarum-style bodies."""

import pytest

from converters import transcode_body
from converters.markup_transcoder import TITLE_MAX_LENGTH, MarkupTranscoder
from models import TopicThread

THREADS = {
    '5': TopicThread(topic_id=9, post_number=2, next_post_number=3),
}


class TestTranscodeBody:
    """End-to-end body transcoding."""

    def test_blank_body(self):
        transcoder = MarkupTranscoder()

        assert transcoder.transcode('').text == ''
        assert transcoder.transcode(None).text == ''
        assert transcoder.transcode('   \n').text == ''

    def test_plain_text_document(self):
        assert transcode_body('<t>Hello there</t>').text == 'Hello there'

    def test_underline_convenience_example(self):
        assert transcode_body('<t><u>hi</u></t>').text == '[u]hi[/u]'

    def test_formatting_markers_are_dropped(self):
        body = '<r><p>Hello <STRONG><s>**</s>world<e>**</e></STRONG></p></r>'
        assert transcode_body(body).text == 'Hello **world**'

    def test_entities_are_decoded(self):
        assert transcode_body('<t>Fish &amp; chips</t>').text == 'Fish & chips'

    def test_quote_followed_by_text(self):
        body = '<r><QUOTE><i>&gt; </i><p>quoted</p></QUOTE><p>reply</p></r>'
        assert transcode_body(body).text == '> quoted\n\nreply'

    def test_code_content_is_not_converted(self):
        body = '<r><p>Run <C>rm -rf *_tmp</C> now</p></r>'
        assert transcode_body(body).text == 'Run `rm -rf *_tmp` now'

    def test_link_inside_list(self):
        body = '<r><LIST><LI><s>* </s><URL url="https://example.com">docs</URL></LI></LIST></r>'
        assert transcode_body(body).text == '- [docs](https://example.com)'

    def test_mention_becomes_quote_and_reply(self):
        body = '<r><POSTMENTION displayname="Bob" id="5" number="2">@&quot;Bob&quot;#p5</POSTMENTION> thanks</r>'
        result = MarkupTranscoder(thread_lookup=THREADS.get).transcode(body, source_id='6')

        assert result.text.startswith('[quote="Bob, post:2, topic:9"]\n@"Bob"#p5\n[/quote]')
        assert result.text.endswith('thanks')
        assert result.reply_to_post_number == 2
        assert result.mentions[0]['topic_id'] == 9

    def test_plain_mention_tag(self):
        threads = {'31': TopicThread(topic_id=8, post_number=3, next_post_number=4)}
        body = 'Hello <mention id="31" displayname="meg">@meg#31</mention>'
        result = MarkupTranscoder(thread_lookup=threads.get).transcode(body)

        assert '[quote="meg, post:3, topic:8"]' in result.text
        assert result.text.startswith('Hello')
        assert result.reply_to_post_number == 3

    def test_unknown_mention_is_kept_as_text(self):
        body = '<r><POSTMENTION displayname="Bob" id="77">@Bob</POSTMENTION> hi</r>'
        result = MarkupTranscoder(thread_lookup=THREADS.get).transcode(body)

        assert result.text == '@Bob hi'
        assert result.reply_to_post_number is None

    def test_no_keys_survive(self):
        body = '<r><QUOTE><p><U>a</U> <SIZE size="9">b</SIZE></p></QUOTE><LIST><LI>c</LI></LIST></r>'
        transcoder = MarkupTranscoder(config={'migration': {'strict_placeholders': True}})
        result = transcoder.transcode(body)

        assert result.text == '> [u]a[/u] [size=9]b[/size]\n\n- c'

    def test_malformed_markup_degrades_to_text(self):
        result = transcode_body('<r><QUOTE><p>never closed</p></r>')
        assert 'never closed' in result.text

    def test_escaped_markup_stays_text(self):
        body = '<t>x &lt;script&gt;alert(1)&lt;/script&gt; y</t>'
        assert transcode_body(body).text == 'x <script>alert(1)</script> y'

    def test_unclosed_legacy_tag_is_kept(self):
        assert transcode_body('<t>broken <u>unclosed tag</t>').text == 'broken <u>unclosed tag'

    def test_rule_order(self):
        assert MarkupTranscoder().rule_names == [
            'decode_entities',
            'strip_wrappers',
            'code',
            'links',
            'underline',
            'video_embeds',
            'styles',
            'mentions',
            'quotes',
            'lists',
            'unmatched_tags',
            'html_to_markdown',
        ]


class TestTranscodeTitle:
    """Topic title cleanup."""

    @pytest.fixture
    def transcoder(self):
        return MarkupTranscoder()

    def test_entities_and_whitespace(self, transcoder):
        assert transcoder.transcode_title('  Tom &amp; Jerry\n') == 'Tom & Jerry'

    def test_control_characters_removed(self, transcoder):
        assert transcoder.transcode_title('Bad\x00Title\x07') == 'BadTitle'

    def test_truncated_to_max_length(self, transcoder):
        title = transcoder.transcode_title('x' * 300)
        assert len(title) == TITLE_MAX_LENGTH

    def test_truncated_after_decoding(self, transcoder):
        title = transcoder.transcode_title('&amp;' * 300)
        assert title == '&' * TITLE_MAX_LENGTH

    def test_empty_title_uses_fallback(self, transcoder):
        assert transcoder.transcode_title('') == 'Untitled'
        assert transcoder.transcode_title(None) == 'Untitled'

    def test_configured_fallback(self):
        transcoder = MarkupTranscoder(config={'transcoder': {'fallback_title': 'No title'}})
        assert transcoder.transcode_title(' \t ') == 'No title'
