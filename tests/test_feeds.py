import unittest
from datetime import datetime, timezone

from fakes import FakeResponse, FakeSession, InMemoryLinkStore
from linkpulse.config import PipelineConfig
from linkpulse.ingestion.feeds import extract_links_from_html, fetch_feed_links, should_skip_url
from linkpulse.pipeline import build_pipeline
from linkpulse.storage.records import Source


FEED_URL = "https://linkblog.example.org/feed.xml"

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>Link Blog</title>
  <link>https://linkblog.example.org</link>
  <item>
    <title>Monday links</title>
    <link>https://linkblog.example.org/monday</link>
    <description><![CDATA[
      <p><a href="https://news.example.com/story-one">One</a>
      <a href="https://substackcdn.com/image/fetch/x.png">img</a>
      <a href="https://research.example.edu/paper?utm_source=linkblog">Paper</a></p>
    ]]></description>
  </item>
  <item>
    <title>Just a pointer</title>
    <link>https://elsewhere.example.net/only-link</link>
    <description>No links in this one.</description>
  </item>
</channel>
</rss>
"""


class TestLinkExtraction(unittest.TestCase):
    def test_skip_patterns(self):
        for url in (
            "https://cdn.example.com/banner.PNG",
            "https://example.substack.com/subscribe",
            "https://www.linkedin.com/in/someone",
            "https://twitter.com/someone",
            "https://mailchi.mp/abc/newsletter",
        ):
            with self.subTest(url=url):
                self.assertTrue(should_skip_url(url))
        self.assertFalse(should_skip_url("https://twitter.com/someone/status/123"))
        self.assertFalse(should_skip_url("https://news.example.com/story"))

    def test_extract_links_dedupes_and_keeps_order(self):
        html = (
            '<a href="https://b.example.com/x">b</a>'
            "<a href='https://a.example.com/y'>a</a>"
            '<a href="https://b.example.com/x">again</a>'
            '<a href="mailto:me@example.com">mail</a>'
        )
        self.assertEqual(extract_links_from_html(html), ["https://b.example.com/x", "https://a.example.com/y"])
        self.assertEqual(extract_links_from_html(None), [])


class TestFetchFeedLinks(unittest.TestCase):
    source = Source(id="linkblog", name="Link Blog", url=FEED_URL, kind="rss")

    def test_entry_bodies_are_mined_for_links(self):
        session = FakeSession({("GET", FEED_URL): FakeResponse(200, body=RSS)})
        result = fetch_feed_links(self.source, session=session)
        self.assertTrue(result.success)
        self.assertEqual(result.entries, 2)
        self.assertEqual(
            [(c.url, c.context) for c in result.links],
            [
                ("https://news.example.com/story-one", "Monday links"),
                ("https://research.example.edu/paper?utm_source=linkblog", "Monday links"),
                ("https://elsewhere.example.net/only-link", "Just a pointer"),
            ],
        )

    def test_limit(self):
        session = FakeSession({("GET", FEED_URL): FakeResponse(200, body=RSS)})
        self.assertEqual(len(fetch_feed_links(self.source, limit=1, session=session).links), 1)

    def test_http_error_is_reported(self):
        session = FakeSession({("GET", FEED_URL): FakeResponse(500)})
        result = fetch_feed_links(self.source, session=session)
        self.assertFalse(result.success)
        self.assertIn("500", result.error)

    def test_missing_url(self):
        result = fetch_feed_links(Source(id="x", name="X", url="", kind="rss"), session=FakeSession())
        self.assertEqual(result.error, "missing_feed_url")


class TestFetchRssSources(unittest.TestCase):
    def test_polls_active_rss_sources_and_ingests(self):
        store = InMemoryLinkStore()
        store.upsert_source(Source(id="linkblog", name="Link Blog", url=FEED_URL, kind="rss"))
        store.upsert_source(Source(id="broken", name="Broken", url="https://broken.example.org/rss", kind="rss"))
        store.upsert_source(Source(id="paused", name="Paused", url="https://paused.example.org/rss", kind="rss", active=False))
        store.upsert_source(Source(id="letter", name="Letter", url="https://letter.example.org", kind="newsletter"))
        session = FakeSession(
            {
                ("GET", FEED_URL): FakeResponse(200, body=RSS),
                ("GET", "https://broken.example.org/rss"): FakeResponse(404),
            }
        )
        pipeline = build_pipeline(PipelineConfig(jina_enabled=False), store, session=session)

        out = pipeline.fetch_rss_sources(now=datetime(2025, 3, 1, tzinfo=timezone.utc))
        self.assertEqual(out["total_feeds"], 2)
        self.assertEqual(out["successful_feeds"], 1)
        self.assertEqual(out["failed_feeds"], 1)
        self.assertEqual(out["total_links_found"], 3)
        self.assertEqual(out["total_links_added"], 3)
        self.assertIn("https://research.example.edu/paper", {l.canonical_url for l in store.links.values()})
        self.assertEqual([sid for sid, _ in store.fetch_log], ["broken", "linkblog"])

    def test_offline_pipeline_skips_network(self):
        store = InMemoryLinkStore()
        store.upsert_source(Source(id="linkblog", name="Link Blog", url=FEED_URL, kind="rss"))
        session = FakeSession()
        pipeline = build_pipeline(PipelineConfig(offline=True), store, session=session)
        self.assertEqual(pipeline.fetch_rss_sources()["total_feeds"], 0)
        self.assertEqual(session.calls, [])


if __name__ == "__main__":
    unittest.main()
