import unittest
from datetime import datetime, timedelta, timezone

from fakes import InMemoryLinkStore
from linkpulse.scoring.velocity import (
    VelocityScorer,
    is_trending,
    score_mentions,
    time_weight,
)
from linkpulse.storage.records import MentionObservation, Source


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)
WEEK_AGO = NOW - timedelta(days=7)


class TestWeights(unittest.TestCase):
    def test_step_boundaries(self):
        self.assertEqual(time_weight(timedelta(hours=0)), 1.0)
        self.assertEqual(time_weight(timedelta(hours=24)), 1.0)
        self.assertEqual(time_weight(timedelta(hours=24, seconds=1)), 0.7)
        self.assertEqual(time_weight(timedelta(hours=48)), 0.7)
        self.assertEqual(time_weight(timedelta(hours=72)), 0.4)
        self.assertEqual(time_weight(timedelta(hours=73)), 0.2)

    def test_four_sources_of_different_ages(self):
        obs = [
            MentionObservation(f"s{i}", f"Source {i}", NOW - timedelta(hours=h))
            for i, h in enumerate((1, 30, 60, 100))
        ]
        velocity, weighted = score_mentions(obs, now=NOW)
        self.assertEqual(velocity, 4)
        self.assertAlmostEqual(weighted, 2.3)
        self.assertTrue(is_trending(velocity, weighted))

    def test_repeat_mentions_use_latest_per_source(self):
        obs = [
            MentionObservation("a", "A", NOW - timedelta(hours=100)),
            MentionObservation("a", "A", NOW - timedelta(hours=2)),
        ]
        self.assertEqual(score_mentions(obs, now=NOW), (1, 1.0))

    def test_trending_thresholds(self):
        self.assertFalse(is_trending(1, 5.0))
        self.assertFalse(is_trending(2, 1.4))
        self.assertTrue(is_trending(2, 1.5))


class TestVelocityScorer(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryLinkStore()
        for sid in ("a", "b", "c", "d"):
            self.store.upsert_source(Source(id=sid, name=f"Source {sid.upper()}", url=f"https://{sid}-news.com"))
        self.store.upsert_source(Source(id="hidden", name="Hidden", url="https://hidden.com", show_on_dashboard=False))
        self.scorer = VelocityScorer(self.store)

    def _link(self, path, *, title="Some title", first_seen=None, domain="example.com", **fields):
        first_seen = first_seen or NOW - timedelta(hours=2)
        url = f"https://{domain}/{path}"
        return self.store.add_link(
            canonical_url=url, original_url=url, domain=domain, first_seen_at=first_seen, last_seen_at=first_seen, title=title, **fields
        )

    def _mention(self, link, source_id, hours_ago):
        self.store.add_mention(link.id, source_id, seen_at=NOW - timedelta(hours=hours_ago), batch_id=f"{source_id}-{hours_ago}")

    def test_ranking_and_tiebreaks(self):
        older = self._link("older", first_seen=NOW - timedelta(hours=10))
        newer = self._link("newer", first_seen=NOW - timedelta(hours=3))
        top = self._link("top", first_seen=NOW - timedelta(hours=90))
        twin = self._link("twin", first_seen=NOW - timedelta(hours=3))
        for link in (older, newer, twin):
            self._mention(link, "a", 1)
        for sid, h in (("a", 1), ("b", 30), ("c", 60), ("d", 80)):
            self._mention(top, sid, h)

        ranked = self.scorer.get_velocity_links(WEEK_AGO, 10, now=NOW)
        self.assertEqual([r.link.id for r in ranked], [top.id, twin.id, newer.id, older.id])
        self.assertEqual(ranked[0].velocity, 4)
        self.assertEqual(ranked[0].source_names, ["Source A", "Source B", "Source C", "Source D"])
        self.assertAlmostEqual(ranked[0].hours_since_first_mention, 80.0)

    def test_first_mention_is_earliest_not_latest_repeat(self):
        link = self._link("repeat", first_seen=NOW - timedelta(hours=70))
        self.store.add_mention(link.id, "a", seen_at=NOW - timedelta(hours=60), batch_id="b1")
        self.store.add_mention(link.id, "a", seen_at=NOW - timedelta(hours=1), batch_id="b2")
        ranked = self.scorer.get_velocity_links(WEEK_AGO, 10, now=NOW)
        self.assertEqual(len(ranked), 1)
        self.assertEqual(ranked[0].velocity, 1)
        self.assertEqual(ranked[0].weighted_velocity, 1.0)
        self.assertAlmostEqual(ranked[0].hours_since_first_mention, 60.0)

    def test_blocked_and_untitled_links_never_rank(self):
        blocked = self._link("cf", title="Just a moment...", is_blocked=True)
        untitled = self._link("untitled", title=None)
        blank = self._link("blank", title="   ", fallback_title=" ")
        fallback = self._link("fallback-only", title="  ", fallback_title="Fallback Only")
        for link in (blocked, untitled, blank, fallback):
            self._mention(link, "a", 1)
            self._mention(link, "b", 1)
        ranked = self.scorer.get_velocity_links(WEEK_AGO, 10, now=NOW)
        self.assertEqual([r.link.id for r in ranked], [fallback.id])
        self.assertEqual(ranked[0].link.display_title, "Fallback Only")

    def test_window_and_hidden_sources(self):
        old = self._link("old", first_seen=NOW - timedelta(days=9))
        self._mention(old, "a", 1)
        quiet = self._link("quiet")
        self._mention(quiet, "hidden", 1)
        self.assertEqual(self.scorer.get_velocity_links(WEEK_AGO, 10, now=NOW), [])

    def test_filters_and_paging(self):
        links = [self._link(f"p{i}", first_seen=NOW - timedelta(hours=i + 1)) for i in range(5)]
        other = self._link("elsewhere", domain="other.org")
        for link in links:
            self._mention(link, "a", 1)
        self._mention(links[0], "b", 1)
        self._mention(other, "c", 1)

        page = self.scorer.get_velocity_links(WEEK_AGO, 2, offset=1, now=NOW)
        self.assertEqual([r.link.id for r in page], [other.id, links[1].id])

        by_domain = self.scorer.get_velocity_links(WEEK_AGO, 10, {"domain": "other.org"}, now=NOW)
        self.assertEqual([r.link.id for r in by_domain], [other.id])

        by_source = self.scorer.get_velocity_links(WEEK_AGO, 10, {"source_id": "b"}, now=NOW)
        self.assertEqual([r.link.id for r in by_source], [links[0].id])
        self.assertEqual(by_source[0].velocity, 2)

        multi = self.scorer.get_velocity_links(WEEK_AGO, 10, {"min_velocity": 2}, now=NOW)
        self.assertEqual([r.link.id for r in multi], [links[0].id])

    def test_trending_links(self):
        hot = self._link("hot")
        cold = self._link("cold")
        self._mention(hot, "a", 1)
        self._mention(hot, "b", 2)
        self._mention(cold, "a", 1)
        trending = self.scorer.get_trending_links(now=NOW)
        self.assertEqual([r.link.id for r in trending], [hot.id])
        self.assertTrue(trending[0].to_dict()["is_trending"])


if __name__ == "__main__":
    unittest.main()
