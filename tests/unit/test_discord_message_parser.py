import unittest

from discord_message_parser import DiscordMessageParser, MessageKind
from discord_types import (
    DiscordAuthor,
    DiscordEmbed,
    DiscordEmbedAuthor,
    DiscordEmbedField,
    DiscordEmbedFooter,
    DiscordEmbedImage,
    DiscordGuild,
    DiscordMessage,
    DiscordRole,
)
from fake_directory import FakeDiscordDirectory
from null_telemetry import NullTelemetry

GUILD = DiscordGuild(id="1234", roles={"123456": DiscordRole(id="123456", name="Fox Lover", color=0x123456)})


def get_message(content, bot=False, mention_everyone=False, embeds=(), **kwargs):
    kwargs.setdefault("author", DiscordAuthor(id="12345", username="Foxer", bot=bot))
    return DiscordMessage(
        id=kwargs.pop("id", "1"),
        content=content,
        embeds=tuple(embeds),
        mention_everyone=mention_everyone,
        guild=GUILD,
        **kwargs,
    )


class DiscordMessageParserTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.directory = FakeDiscordDirectory()
        self.parser = DiscordMessageParser(NullTelemetry())

    async def format(self, msg, **kwargs):
        return await self.parser.format_message(self.directory, msg, **kwargs)


class TestFormatMessage(DiscordMessageParserTestCase):
    async def test_plain_text(self):
        result = await self.format(get_message("hello world!"))
        self.assertEqual(result.body, "hello world!")
        self.assertEqual(result.formatted_body, "hello world!")

    async def test_markdown(self):
        result = await self.format(get_message("Hello *World*!"))
        self.assertEqual(result.body, "Hello *World*!")
        self.assertEqual(result.formatted_body, "Hello <em>World</em>!")

    async def test_non_discord_markdown_is_escaped(self):
        result = await self.format(get_message(">inb4 tests"))
        self.assertEqual(result.body, ">inb4 tests")
        self.assertEqual(result.formatted_body, "&gt;inb4 tests")

    async def test_masked_links_are_not_parsed_for_users(self):
        result = await self.format(get_message("[test](http://example.com)"))
        self.assertEqual(result.body, "[test](http://example.com)")
        self.assertEqual(result.formatted_body, '[test](<a href="http://example.com">http://example.com</a>)')

    async def test_masked_links_are_parsed_for_bots(self):
        result = await self.format(get_message("[test](http://example.com)", bot=True))
        self.assertEqual(result.body, "[test](http://example.com)")
        self.assertEqual(result.formatted_body, '<a href="http://example.com">test</a>')

    async def test_underscore_emphasis(self):
        result = await self.format(get_message("_ italic _"))
        self.assertEqual(result.body, "_ italic _")
        self.assertEqual(result.formatted_body, "<em> italic </em>")

    async def test_everyone(self):
        result = await self.format(get_message("hey @everyone!"))
        self.assertEqual(result.body, "hey @everyone!")
        self.assertEqual(result.formatted_body, "hey @everyone!")

        result = await self.format(get_message("hey @everyone!", mention_everyone=True))
        self.assertEqual(result.body, "hey @room!")
        self.assertEqual(result.formatted_body, "hey @room!")

    async def test_here(self):
        result = await self.format(get_message("hey @here!"))
        self.assertEqual(result.body, "hey @here!")
        self.assertEqual(result.formatted_body, "hey @here!")

        result = await self.format(get_message("hey @here!", mention_everyone=True))
        self.assertEqual(result.body, "hey @room!")
        self.assertEqual(result.formatted_body, "hey @room!")

    async def test_blockquotes(self):
        result = await self.format(get_message("> quote\nfox"))
        self.assertEqual(result.body, "> quote\nfox")
        self.assertEqual(result.formatted_body, "<blockquote>quote<br></blockquote>fox")

        result = await self.format(get_message("text\n>>> quote\nmultiline"))
        self.assertEqual(result.body, "text\n>>> quote\nmultiline")
        self.assertEqual(result.formatted_body, "text<br><blockquote>quote<br>multiline</blockquote>")

    async def test_code_is_kept_verbatim_in_body(self):
        result = await self.format(get_message("`<@12345>` and ```js\nlet a = 1;\n```"))
        self.assertEqual(result.body, "`<@12345>` and ```js\nlet a = 1;\n```")
        self.assertEqual(
            result.formatted_body,
            '<code>&lt;@12345&gt;</code> and <pre><code class="language-js">let a = 1;</code></pre>',
        )
        self.assertEqual(self.directory.calls, [])

    async def test_backslash_escapes(self):
        result = await self.format(get_message("\\*not italic\\*"))
        self.assertEqual(result.body, "\\*not italic\\*")
        self.assertEqual(result.formatted_body, "*not italic*")

    async def test_shrug_is_kept(self):
        result = await self.format(get_message("¯\\_(ツ)_/¯"))
        self.assertEqual(result.formatted_body, "¯\\_(ツ)_/¯")

    async def test_message_kind(self):
        result = await self.format(get_message("no bot"))
        self.assertEqual(result.msgtype, MessageKind.NORMAL.value)
        self.assertEqual(result.msgtype, "m.text")

        result = await self.format(get_message("a bot", bot=True))
        self.assertEqual(result.msgtype, "m.notice")


class TestDiscordReplacements(DiscordMessageParserTestCase):
    async def test_members(self):
        result = await self.format(get_message("<@12345>"))
        self.assertEqual(result.body, "foxies (@_discord_12345:localhost)")
        self.assertEqual(result.formatted_body, '<a href="https://matrix.to/#/@_discord_12345:localhost">foxies</a>')

    async def test_nickname_mentions(self):
        result = await self.format(get_message("<@!12345>"))
        self.assertEqual(result.body, "foxies (@_discord_12345:localhost)")

    async def test_unknown_members(self):
        result = await self.format(get_message("<@123>"))
        self.assertEqual(result.body, "<@123>")
        self.assertEqual(result.formatted_body, "&lt;@123&gt;")

    async def test_unknown_roles(self):
        result = await self.format(get_message("<@&1234>"))
        self.assertEqual(result.body, "<@&1234>")
        self.assertEqual(result.formatted_body, "&lt;@&amp;1234&gt;")

    async def test_known_roles(self):
        result = await self.format(get_message("<@&123456>"))
        self.assertEqual(result.body, "@Fox Lover")
        self.assertEqual(
            result.formatted_body,
            '<span data-mx-color="#123456"><strong>@Fox Lover</strong></span>',
        )

    async def test_spoilers(self):
        result = await self.format(get_message("||foxies||"))
        self.assertEqual(result.body, "(Spoiler: foxies)")
        self.assertEqual(result.formatted_body, "<span data-mx-spoiler>foxies</span>")

    async def test_unknown_emoji(self):
        result = await self.format(get_message("<:unknown:1234>"))
        self.assertEqual(result.body, "<:unknown:1234>")
        self.assertEqual(result.formatted_body, "&lt;:unknown:1234&gt;")

    async def test_emoji(self):
        result = await self.format(get_message("<:fox:1234>"))
        self.assertEqual(result.body, ":fox:")
        self.assertEqual(
            result.formatted_body,
            '<img alt=":fox:" title=":fox:" height="32" src="mxc://localhost/fox" data-mx-emoticon />',
        )

    async def test_double_emoji(self):
        result = await self.format(get_message("<:fox:1234> <a:fox:1234>"))
        self.assertEqual(result.body, ":fox: :fox:")
        img = '<img alt=":fox:" title=":fox:" height="32" src="mxc://localhost/fox" data-mx-emoticon />'
        self.assertEqual(result.formatted_body, f"{img} {img}")

    async def test_unknown_channel(self):
        result = await self.format(get_message("<#123>"))
        self.assertEqual(result.body, "<#123>")
        self.assertEqual(result.formatted_body, "&lt;#123&gt;")

    async def test_multiple_channels(self):
        result = await self.format(get_message("<#12345> <#12345>"))
        self.assertEqual(result.body, "#foxies #foxies")
        link = '<a href="https://matrix.to/#/#_discord_1234_12345:localhost">#foxies</a>'
        self.assertEqual(result.formatted_body, f"{link} {link}")

    async def test_lookups_run_in_sweep_order(self):
        await self.format(get_message("<#12345> <@12345> <:fox:1> <@123>"))
        sweep = [("emoji", "fox"), ("user", "12345"), ("user", "123"), ("channel", "12345")]
        self.assertEqual(self.directory.calls, sweep + sweep)

    async def test_lookup_errors_propagate(self):
        class BrokenDirectory(FakeDiscordDirectory):
            async def get_user(self, user_id):
                raise RuntimeError("directory down")

        with self.assertRaises(RuntimeError):
            await self.parser.format_message(BrokenDirectory(), get_message("<@12345>"))


class TestReplies(DiscordMessageParserTestCase):
    async def test_reply_is_quoted(self):
        original = get_message("original *msg*", id="99")
        self.directory.references["99"] = original

        result = await self.format(get_message("answer", reference="99"))

        self.assertEqual(result.body, ">  original *msg*\n\nanswer")
        self.assertEqual(
            result.formatted_body,
            '<mx-reply><blockquote><a>In reply to</a> '
            '<a href="https://matrix.to/#/@_discord_12345:localhost">foxies</a>'
            '<br>original <em>msg</em></blockquote></mx-reply>answer',
        )

    async def test_webhook_reply_uses_username(self):
        original = get_message("hooked", id="99", webhook_id="42", author=DiscordAuthor(id="7", username="Hook<er>"))
        self.directory.references["99"] = original

        result = await self.format(get_message("answer", reference="99"))

        self.assertEqual(
            result.formatted_body,
            "<mx-reply><blockquote><a>In reply to</a> Hook&lt;er&gt;<br>hooked</blockquote></mx-reply>answer",
        )
        self.assertNotIn(("user", "7"), self.directory.calls)

    async def test_reply_expands_one_level_only(self):
        self.directory.references["98"] = get_message("first", id="98")
        self.directory.references["99"] = get_message("second", id="99", reference="98")

        result = await self.format(get_message("third", reference="99"))

        self.assertEqual(result.body, ">  second\n\nthird")
        self.assertEqual([call for call in self.directory.calls if call[0] == "reference"], [("reference", "99")])

    async def test_missing_reply_is_ignored(self):
        result = await self.format(get_message("answer", reference="404"))
        self.assertEqual(result.body, "answer")
        self.assertEqual(result.formatted_body, "answer")

    async def test_replying_skips_reference(self):
        self.directory.references["99"] = get_message("original", id="99")
        result = await self.format(get_message("answer", reference="99"), replying=True)
        self.assertEqual(result.body, "answer")


class TestEmbeds(DiscordMessageParserTestCase):
    async def test_titled_embed(self):
        embed = DiscordEmbed(title="Title", description="Description", url="http://example.com")
        result = await self.format(get_message("message", embeds=[embed]))
        self.assertEqual(result.body, "message\n\n----\n##### [Title](http://example.com)\nDescription")
        self.assertEqual(
            result.formatted_body,
            'message<hr><h5><a href="http://example.com">Title</a></h5><p>Description</p>',
        )

    async def test_same_url_embeds_are_skipped(self):
        for url in ("http://example.com", "http://example.com/"):
            with self.subTest(url=url):
                embed = DiscordEmbed(title="Title", description="Description", url=url)
                result = await self.format(get_message("message http://example.com", embeds=[embed]))
                self.assertEqual(result.body, "message http://example.com")
                self.assertEqual(
                    result.formatted_body,
                    'message <a href="http://example.com">http://example.com</a>',
                )

    async def test_youtube_short_links_are_skipped(self):
        embed = DiscordEmbed(title="Title", description="Description", url="https://www.youtube.com/watch?v=blah")
        result = await self.format(get_message("message https://youtu.be/blah blubb", embeds=[embed]))
        self.assertEqual(result.body, "message https://youtu.be/blah blubb")
        self.assertEqual(
            result.formatted_body,
            'message <a href="https://youtu.be/blah">https://youtu.be/blah</a> blubb',
        )

    async def test_youtube_rule_can_be_disabled(self):
        parser = DiscordMessageParser(NullTelemetry(), embed_url_rules=())
        embed = DiscordEmbed(title="Title", url="https://www.youtube.com/watch?v=blah")
        result = await parser.format_message(self.directory, get_message("https://youtu.be/blah", embeds=[embed]))
        self.assertIn("##### [Title]", result.body)

    async def test_embed_without_content(self):
        result = await self.format(get_message("", embeds=[DiscordEmbed(description="TestDescription")]))
        self.assertEqual(result.body, "\n\n----\nTestDescription")
        self.assertEqual(result.formatted_body, "<hr><p>TestDescription</p>")

    async def test_urlless_embed(self):
        embed = DiscordEmbed(title="TestTitle", description="TestDescription")
        result = await self.format(get_message("", embeds=[embed]))
        self.assertEqual(result.body, "\n\n----\n##### TestTitle\nTestDescription")
        self.assertEqual(result.formatted_body, "<hr><h5>TestTitle</h5><p>TestDescription</p>")

    async def test_empty_embeds_are_rejected(self):
        result = await self.format(get_message("Some content...", embeds=[DiscordEmbed(url="testurl")]))
        self.assertEqual(result.body, "Some content...")
        self.assertEqual(result.formatted_body, "Some content...")

    async def test_multiple_embeds(self):
        embeds = [
            DiscordEmbed(title="TestTitle", description="TestDescription", url="testurl"),
            DiscordEmbed(title="TestTitle2", description="TestDescription2", url="testurl2"),
        ]
        result = await self.format(get_message("", embeds=embeds))
        self.assertEqual(
            result.body,
            "\n\n----\n##### [TestTitle](testurl)\nTestDescription"
            "\n\n----\n##### [TestTitle2](testurl2)\nTestDescription2",
        )
        self.assertEqual(
            result.formatted_body,
            '<hr><h5><a href="testurl">TestTitle</a></h5><p>TestDescription</p>'
            '<hr><h5><a href="testurl2">TestTitle2</a></h5><p>TestDescription2</p>',
        )

    async def test_full_embed(self):
        embed = DiscordEmbed(
            title="TestTitle",
            description="TestDescription",
            url="testurl",
            author=DiscordEmbedAuthor(name="Fox & Co"),
            fields=(DiscordEmbedField(name="fox", value="floof"),),
            image=DiscordEmbedImage(url="http://example.com"),
            footer=DiscordEmbedFooter(text="footer"),
        )
        result = await self.format(get_message("Content that goes in the message", embeds=[embed]))
        self.assertEqual(
            result.body,
            "Content that goes in the message\n\n----\n##### [TestTitle](testurl)\n**Fox & Co**"
            "\nTestDescription\n**fox**\nfloof\nImage: http://example.com\nfooter",
        )
        self.assertEqual(
            result.formatted_body,
            'Content that goes in the message<hr><h5><a href="testurl">TestTitle</a></h5>'
            "<strong>Fox &amp; Co</strong><br><p>TestDescription</p>"
            "<p><strong>fox</strong><br>floof</p>"
            '<p>Image: <a href="http://example.com">http://example.com</a></p><p>footer</p>',
        )

    async def test_embed_content_allows_links_and_mentions(self):
        embed = DiscordEmbed(description="see [docs](http://docs.example) by <@12345>")
        result = await self.format(get_message("", embeds=[embed]))
        self.assertEqual(
            result.body,
            "\n\n----\nsee [docs](http://docs.example) by foxies (@_discord_12345:localhost)",
        )
        self.assertEqual(
            result.formatted_body,
            '<hr><p>see <a href="http://docs.example">docs</a> by '
            '<a href="https://matrix.to/#/@_discord_12345:localhost">foxies</a></p>',
        )


class TestFormatEdit(DiscordMessageParserTestCase):
    async def edit(self, old, new, link=None):
        return await self.parser.format_edit(self.directory, get_message(old), get_message(new), link)

    async def test_basic_edit(self):
        result = await self.edit("a", "b")
        self.assertEqual(result.body, "*edit:* ~~a~~ -> b")
        self.assertEqual(result.formatted_body, "<em>edit:</em> <del>a</del> -&gt; b")

    async def test_markdown_heavy_edit(self):
        result = await self.edit("a slice of **cake**", "*a* slice of cake")
        self.assertEqual(result.body, "*edit:* ~~a slice of **cake**~~ -> *a* slice of cake")
        self.assertEqual(
            result.formatted_body,
            "<em>edit:</em> <del>a slice of <strong>cake</strong></del> -&gt; <em>a</em> slice of cake",
        )

    async def test_broken_markdown_edit(self):
        result = await self.edit("~~fail~", "~~fail~~")
        self.assertEqual(result.body, "*edit:* ~~~~fail~~~ -> ~~fail~~")
        self.assertEqual(result.formatted_body, "<em>edit:</em> <del>~~fail~</del> -&gt; <del>fail</del>")

    async def test_multiline_edit(self):
        result = await self.edit("multi\nline", "multi\nline\nfoxies")
        self.assertEqual(result.body, "*edit:* ~~multi\nline~~ -> multi\nline\nfoxies")
        self.assertEqual(
            result.formatted_body,
            "<p><em>edit:</em></p><p><del>multi<br>line</del></p><hr><p>multi<br>line<br>foxies</p>",
        )

    async def test_long_edit_is_stacked(self):
        result = await self.edit("short", "x" * 51)
        self.assertTrue(result.formatted_body.startswith("<p><em>edit:</em></p>"))

    async def test_edit_at_length_limit_stays_inline(self):
        result = await self.edit("short", "x" * 50)
        self.assertEqual(result.formatted_body, f"<em>edit:</em> <del>short</del> -&gt; {'x' * 50}")

    async def test_edit_links_to_old_message(self):
        result = await self.edit("fox", "foxies", link="https://matrix.to/#/old")
        self.assertEqual(result.body, "*edit:* ~~fox~~ -> foxies")
        self.assertEqual(
            result.formatted_body,
            '<a href="https://matrix.to/#/old"><em>edit:</em></a> <del>fox</del> -&gt; foxies',
        )

    async def test_old_embeds_are_dropped(self):
        old = get_message("a", embeds=[DiscordEmbed(description="old embed")])
        new = get_message("b", bot=True)
        result = await self.parser.format_edit(self.directory, old, new)
        self.assertEqual(result.body, "*edit:* ~~a~~ -> b")
        self.assertEqual(result.msgtype, "m.notice")
        self.assertEqual(len(old.embeds), 1)


if __name__ == "__main__":
    unittest.main()
