import unittest
from datetime import datetime, timezone

import httpx

from channel_dvr.db.models import Video
from channel_dvr.services.errors import FetchError, NetworkError, ParseError
from channel_dvr.services.feed import (
    FEED_URL,
    extract_channel_id,
    extract_video_id,
    fetch_feed,
    is_short,
    parse_feed,
)
from dvr_testing import build_feed, feed_entry

CHANNEL_ID = "UCabcdefghijklmnopqrstuv"


def _candidate(title: str, url: str = "https://www.youtube.com/watch?v=abc12345678") -> Video:
    return Video(
        id=None,
        video_id="abc12345678",
        channel_id=None,
        title=title,
        published_at=datetime(2024, 3, 5, tzinfo=timezone.utc),
        video_url=url,
    )


class ParseFeedTestCase(unittest.TestCase):
    def test_parses_entries_in_feed_order(self) -> None:
        document = build_feed(
            [
                feed_entry(
                    "vid00000001",
                    "First upload",
                    published="2024-03-05T08:07:09+00:00",
                    thumbnail="https://i4.ytimg.com/vi/vid00000001/hqdefault.jpg",
                    description="All about the first one",
                ),
                feed_entry("vid00000002", "Second upload", published="2024-03-04T10:00:00+00:00"),
                feed_entry("vid00000003", "Third upload", published="2024-03-03T10:00:00+00:00"),
            ]
        )

        videos = parse_feed(document)

        self.assertEqual([v.video_id for v in videos], ["vid00000001", "vid00000002", "vid00000003"])
        first = videos[0]
        self.assertEqual(first.title, "First upload")
        self.assertEqual(first.description, "All about the first one")
        self.assertEqual(first.published_at, datetime(2024, 3, 5, 8, 7, 9, tzinfo=timezone.utc))
        self.assertEqual(first.thumbnail_url, "https://i4.ytimg.com/vi/vid00000001/hqdefault.jpg")
        self.assertEqual(first.video_url, "https://www.youtube.com/watch?v=vid00000001")

    def test_missing_thumbnail_is_derived_from_video_id(self) -> None:
        videos = parse_feed(build_feed([feed_entry("vid00000002", "No thumb")]))
        self.assertEqual(videos[0].thumbnail_url, "https://img.youtube.com/vi/vid00000002/hqdefault.jpg")

    def test_entry_without_video_id_is_skipped(self) -> None:
        document = build_feed(
            [
                "<entry><title>Playlist, not a video</title>"
                "<published>2024-03-05T08:07:09+00:00</published></entry>",
                feed_entry("vid00000001", "Real video"),
            ]
        )
        self.assertEqual([v.video_id for v in parse_feed(document)], ["vid00000001"])

    def test_empty_feed_yields_no_candidates(self) -> None:
        self.assertEqual(parse_feed(build_feed([])), [])

    def test_malformed_document_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            parse_feed("<feed><entry>")

    def test_non_feed_document_raises_parse_error(self) -> None:
        with self.assertRaises(ParseError):
            parse_feed("<html><body>Not found</body></html>")

    def test_bad_timestamp_fails_the_whole_feed(self) -> None:
        document = build_feed(
            [
                feed_entry("vid00000001", "Fine"),
                feed_entry("vid00000002", "Broken", published="yesterday"),
            ]
        )
        with self.assertRaises(ParseError):
            parse_feed(document)

    def test_shorts_filtered_only_when_enabled(self) -> None:
        document = build_feed(
            [
                feed_entry("vid00000001", "Funny cats #shorts"),
                feed_entry(
                    "abc12345678",
                    "Quick clip",
                    link="https://www.youtube.com/shorts/abc12345678",
                ),
                feed_entry("vid00000003", "Full length documentary"),
            ]
        )

        filtered = parse_feed(document, filter_shorts=True)
        unfiltered = parse_feed(document, filter_shorts=False)

        self.assertEqual([v.video_id for v in filtered], ["vid00000003"])
        self.assertEqual(len(unfiltered), 3)


class ShortsHeuristicTestCase(unittest.TestCase):
    def test_title_patterns(self) -> None:
        for title in ["Funny cats #shorts", "#SHORTS compilation", "Shorts: best moments", "#123", "my shorts"]:
            with self.subTest(title=title):
                self.assertTrue(is_short(_candidate(title)))

    def test_regular_titles_pass(self) -> None:
        for title in ["Episode #12 recap", "Shortstop highlights", "How to cook rice"]:
            with self.subTest(title=title):
                self.assertFalse(is_short(_candidate(title)))

    def test_shorts_url(self) -> None:
        self.assertTrue(is_short(_candidate("Normal title", "https://www.youtube.com/shorts/abc12345678")))


class ExtractIdentifierTestCase(unittest.TestCase):
    def test_channel_id_from_bare_id_or_url(self) -> None:
        self.assertEqual(extract_channel_id(CHANNEL_ID), CHANNEL_ID)
        self.assertEqual(extract_channel_id(f"https://www.youtube.com/channel/{CHANNEL_ID}/videos"), CHANNEL_ID)
        self.assertIsNone(extract_channel_id("https://www.youtube.com/@somehandle"))

    def test_video_id_from_urls(self) -> None:
        self.assertEqual(extract_video_id("https://youtu.be/dQw4w9WgXcQ"), "dQw4w9WgXcQ")
        self.assertEqual(extract_video_id("https://www.youtube.com/shorts/abc12345678"), "abc12345678")
        self.assertIsNone(extract_video_id("https://example.com/watch"))


class FetchFeedTestCase(unittest.IsolatedAsyncioTestCase):
    async def test_returns_body_on_success(self) -> None:
        requested = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(str(request.url))
            return httpx.Response(200, text="<feed/>")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            body = await fetch_feed(CHANNEL_ID, client)

        self.assertEqual(body, "<feed/>")
        self.assertEqual(requested, [FEED_URL.format(channel_id=CHANNEL_ID)])

    async def test_non_success_status_raises_fetch_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with self.assertRaises(FetchError) as ctx:
                await fetch_feed(CHANNEL_ID, client)

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(ctx.exception.reason, "Not Found")

    async def test_connection_failure_raises_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with self.assertRaises(NetworkError):
                await fetch_feed(CHANNEL_ID, client)


if __name__ == "__main__":
    unittest.main()
