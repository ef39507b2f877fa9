import sqlite3
import threading
import unittest
from datetime import datetime, timezone
from unittest.mock import patch

from channel_dvr.config import Config
from channel_dvr.db.models import Video
from channel_dvr.db.repositories import (
    ChannelRepository,
    SettingsRepository,
    VideoRepository,
)
from channel_dvr.services.errors import PersistenceError
from channel_dvr.services.feed import parse_feed
from dvr_testing import TempDatabaseMixin, build_feed, feed_entry


def _video(video_id: str, title: str = "A video") -> Video:
    return Video(
        id=None,
        video_id=video_id,
        channel_id=None,
        title=title,
        published_at=datetime(2024, 3, 5, 8, 7, 9, tzinfo=timezone.utc),
        video_url=f"https://www.youtube.com/watch?v={video_id}",
    )


class VideoRepositoryTestCase(TempDatabaseMixin, unittest.TestCase):
    def setUp(self) -> None:
        super().setUp()
        self.channel = self.add_channel("UCabcdefghijklmnopqrstuv", "Tech & Stuff!")

    def test_same_feed_twice_inserts_nothing_the_second_time(self) -> None:
        document = build_feed(
            [feed_entry("vid00000001", "One"), feed_entry("vid00000002", "Two")]
        )

        first = VideoRepository.save_new(parse_feed(document), self.channel)
        second = VideoRepository.save_new(parse_feed(document), self.channel)

        self.assertEqual(first.saved, 2)
        self.assertEqual(first.skipped, 0)
        self.assertEqual(second.saved, 0)
        self.assertEqual(second.skipped, 2)
        self.assertEqual(VideoRepository.count_by_channel(self.channel.id), 2)

    def test_inserted_subsequence_keeps_input_order(self) -> None:
        VideoRepository.save_new([_video("vid00000002")], self.channel)

        result = VideoRepository.save_new(
            [_video("vid00000001"), _video("vid00000002"), _video("vid00000003")],
            self.channel,
        )

        self.assertEqual([v.video_id for v in result.inserted], ["vid00000001", "vid00000003"])
        self.assertEqual(result.skipped, 1)
        for video in result.inserted:
            self.assertIsNotNone(video.id)
            self.assertEqual(video.channel_id, self.channel.id)

    def test_concurrent_inserts_of_same_video_yield_one_new(self) -> None:
        barrier = threading.Barrier(2)
        results = []

        def insert() -> None:
            barrier.wait()
            results.append(VideoRepository.save_new([_video("vid00000001")], self.channel).saved)

        threads = [threading.Thread(target=insert) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(results), [0, 1])
        self.assertEqual(VideoRepository.count_by_channel(self.channel.id), 1)

    def test_database_error_becomes_persistence_error(self) -> None:
        with patch("channel_dvr.db.repositories.get_db", side_effect=sqlite3.OperationalError("disk I/O error")):
            with self.assertRaises(PersistenceError):
                VideoRepository.save_new([_video("vid00000001")], self.channel)

    def test_failed_timestamp_write_becomes_persistence_error(self) -> None:
        with patch("channel_dvr.db.repositories.get_db", side_effect=sqlite3.OperationalError("database is locked")):
            with self.assertRaises(PersistenceError):
                VideoRepository.mark_download_requested("vid00000001")

    def test_mark_download_requested_round_trips(self) -> None:
        VideoRepository.save_new([_video("vid00000001")], self.channel)

        requested_at = VideoRepository.mark_download_requested("vid00000001")
        stored = VideoRepository.get_by_video_id("vid00000001")

        self.assertEqual(stored.download_requested_at, requested_at)
        self.assertEqual(stored.published_at, datetime(2024, 3, 5, 8, 7, 9, tzinfo=timezone.utc))

    def test_recent_videos_include_channel_name(self) -> None:
        VideoRepository.save_new([_video("vid00000001", "Hello")], self.channel)

        recent = VideoRepository.get_recent()

        self.assertEqual(len(recent), 1)
        video, channel_name = recent[0]
        self.assertEqual(video.title, "Hello")
        self.assertEqual(channel_name, "Tech & Stuff!")


class ChannelRepositoryTestCase(TempDatabaseMixin, unittest.TestCase):
    def test_delete_cascades_to_videos(self) -> None:
        channel = self.add_channel("UCabcdefghijklmnopqrstuv", "Cascading")
        VideoRepository.save_new([_video("vid00000001"), _video("vid00000002")], channel)

        self.assertTrue(ChannelRepository.delete(channel.channel_id))

        self.assertIsNone(ChannelRepository.get_by_channel_id(channel.channel_id))
        self.assertIsNone(VideoRepository.get_by_video_id("vid00000001"))
        self.assertEqual(VideoRepository.count_by_channel(channel.id), 0)

    def test_duplicate_channel_id_is_rejected(self) -> None:
        self.add_channel("UCabcdefghijklmnopqrstuv", "First")
        with self.assertRaises(sqlite3.IntegrityError):
            self.add_channel("UCabcdefghijklmnopqrstuv", "Second")

    def test_get_all_is_sorted_by_name(self) -> None:
        self.add_channel("UCbbbbbbbbbbbbbbbbbbbbbb", "Zebra")
        self.add_channel("UCaaaaaaaaaaaaaaaaaaaaaa", "Aardvark")
        self.assertEqual([c.name for c in ChannelRepository.get_all()], ["Aardvark", "Zebra"])


class SettingsRepositoryTestCase(TempDatabaseMixin, unittest.TestCase):
    def test_seeded_from_config(self) -> None:
        settings = SettingsRepository.get()
        self.assertEqual(settings.download_backend, Config.DOWNLOAD_BACKEND)
        self.assertEqual(settings.metube_url, Config.METUBE_URL)
        self.assertEqual(settings.filter_shorts, Config.FILTER_SHORTS)

    def test_update_is_visible_on_next_read(self) -> None:
        SettingsRepository.update(download_backend="aria2c", filter_shorts=True, aria2c_port="6900")

        settings = SettingsRepository.get()
        self.assertEqual(settings.download_backend, "aria2c")
        self.assertTrue(settings.filter_shorts)
        self.assertEqual(settings.aria2c_rpc_url, f"http://{settings.aria2c_ip}:6900/jsonrpc")

    def test_unknown_key_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            SettingsRepository.update(api_key="secret")


if __name__ == "__main__":
    unittest.main()
