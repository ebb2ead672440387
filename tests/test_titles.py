import unittest

from linkpulse.enrichment.titles import (
    clean_story_title,
    decode_html_entities,
    format_url_as_title,
    strip_publication_suffix,
)


class TestTitles(unittest.TestCase):
    def test_decode_entities(self):
        self.assertEqual(decode_html_entities("Tom &amp; Jerry&#39;s &#x201C;show&#x201D;"), "Tom & Jerry's “show”")
        self.assertEqual(decode_html_entities("AT&amp;amp;T"), "AT&T")
        self.assertEqual(decode_html_entities(None), "")

    def test_strip_publication_suffix(self):
        self.assertEqual(strip_publication_suffix("Markets rally on rate cut hopes - CNN"), "Markets rally on rate cut hopes")
        self.assertEqual(strip_publication_suffix("Markets rally on rate cut hopes | The Wall Street Journal"), "Markets rally on rate cut hopes")
        self.assertEqual(strip_publication_suffix("Markets rally — Reuters"), "Markets rally")

    def test_strip_publication_suffix_keeps_long_tails(self):
        title = "Why it matters - the rate decision explained in more than five words here"
        self.assertEqual(strip_publication_suffix(title), title)
        self.assertEqual(strip_publication_suffix("No suffix at all"), "No suffix at all")

    def test_clean_story_title(self):
        self.assertEqual(clean_story_title("Oil &amp; gas prices spike - BBC News"), "Oil & gas prices spike")

    def test_format_url_as_title(self):
        self.assertEqual(
            format_url_as_title("https://example.com/2024/05/fed-holds-rates-steady.html"),
            "Fed Holds Rates Steady",
        )
        self.assertEqual(format_url_as_title("https://example.com/news/ai_policy_update/12345"), "Ai Policy Update")
        self.assertEqual(format_url_as_title("https://www.example.com/"), "example.com")


if __name__ == "__main__":
    unittest.main()
