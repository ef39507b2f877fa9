import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from channel_dvr.db.database import get_db
from channel_dvr.db.models import Channel, Settings, Video
from channel_dvr.services.errors import PersistenceError

SETTINGS_FIELDS = (
    "download_backend",
    "metube_url",
    "aria2c_ip",
    "aria2c_port",
    "download_folder",
    "username",
    "password",
    "filter_shorts",
)


def _to_datetime(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def _row_to_channel(row: sqlite3.Row) -> Channel:
    return Channel(
        id=row["id"],
        channel_id=row["channel_id"],
        name=row["name"],
        created_at=_to_datetime(row["created_at"]),
    )


def _row_to_video(row: sqlite3.Row) -> Video:
    return Video(
        id=row["id"],
        video_id=row["video_id"],
        channel_id=row["channel_id"],
        title=row["title"],
        description=row["description"] or "",
        published_at=_to_datetime(row["published_at"]),
        thumbnail_url=row["thumbnail_url"],
        video_url=row["video_url"],
        download_requested_at=_to_datetime(row["download_requested_at"]),
        created_at=_to_datetime(row["created_at"]),
    )


@dataclass
class SaveResult:
    inserted: list[Video] = field(default_factory=list)
    skipped: int = 0

    @property
    def saved(self) -> int:
        return len(self.inserted)


class ChannelRepository:
    @staticmethod
    def create(channel: Channel) -> Channel:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO channels (channel_id, name) VALUES (?, ?)",
                (channel.channel_id, channel.name),
            )
            channel.id = cursor.lastrowid
            return channel

    @staticmethod
    def get_by_channel_id(channel_id: str) -> Optional[Channel]:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT * FROM channels WHERE channel_id = ?", (channel_id,)
            )
            row = cursor.fetchone()
            return _row_to_channel(row) if row else None

    @staticmethod
    def get_by_id(pk: int) -> Optional[Channel]:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM channels WHERE id = ?", (pk,))
            row = cursor.fetchone()
            return _row_to_channel(row) if row else None

    @staticmethod
    def get_all() -> list[Channel]:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM channels ORDER BY name ASC")
            return [_row_to_channel(row) for row in cursor.fetchall()]

    @staticmethod
    def delete(channel_id: str) -> bool:
        """Delete a channel; its videos go with it via ON DELETE CASCADE."""
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM channels WHERE channel_id = ?", (channel_id,))
            return cursor.rowcount > 0


class VideoRepository:
    @staticmethod
    def save_new(videos: list[Video], channel: Channel) -> SaveResult:
        """Insert candidates that are not stored yet.

        Uses INSERT OR IGNORE against the unique video_id so the existence
        check and the write are one statement. Returns the inserted videos in
        input order; these, not a re-query, are what gets dispatched.
        All rows for one channel share a transaction, so a database error
        leaves nothing half-saved.
        """
        result = SaveResult()
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                for video in videos:
                    cursor.execute(
                        """
                        INSERT OR IGNORE INTO videos (
                            video_id, channel_id, title, description,
                            published_at, thumbnail_url, video_url
                        )
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            video.video_id,
                            channel.id,
                            video.title,
                            video.description,
                            video.published_at.isoformat(),
                            video.thumbnail_url,
                            video.video_url,
                        ),
                    )
                    if cursor.rowcount == 1:
                        video.id = cursor.lastrowid
                        video.channel_id = channel.id
                        result.inserted.append(video)
                    else:
                        result.skipped += 1
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to save videos for {channel.name}: {e}") from e
        return result

    @staticmethod
    def get_by_video_id(video_id: str) -> Optional[Video]:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM videos WHERE video_id = ?", (video_id,))
            row = cursor.fetchone()
            return _row_to_video(row) if row else None

    @staticmethod
    def get_recent(limit: int = 10) -> list[tuple[Video, str]]:
        """Latest videos with their channel name, newest first."""
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                """
                SELECT v.*, c.name AS channel_name
                FROM videos v
                JOIN channels c ON v.channel_id = c.id
                ORDER BY v.published_at DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [(_row_to_video(row), row["channel_name"]) for row in cursor.fetchall()]

    @staticmethod
    def count_by_channel(channel_id: int) -> int:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT COUNT(*) AS total FROM videos WHERE channel_id = ?",
                (channel_id,),
            )
            return cursor.fetchone()["total"]

    @staticmethod
    def mark_download_requested(video_id: str) -> datetime:
        requested_at = datetime.now(timezone.utc)
        try:
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    "UPDATE videos SET download_requested_at = ? WHERE video_id = ?",
                    (requested_at.isoformat(), video_id),
                )
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to record download request for {video_id}: {e}") from e
        return requested_at


class SettingsRepository:
    @staticmethod
    def get() -> Settings:
        with get_db() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT * FROM settings ORDER BY id DESC LIMIT 1")
            row = cursor.fetchone()
            if row is None:
                raise PersistenceError("No settings row found; run init_db() first")
            return Settings(
                id=row["id"],
                download_backend=row["download_backend"],
                metube_url=row["metube_url"],
                aria2c_ip=row["aria2c_ip"],
                aria2c_port=row["aria2c_port"],
                download_folder=row["download_folder"],
                username=row["username"],
                password=row["password"],
                filter_shorts=bool(row["filter_shorts"]),
                updated_at=_to_datetime(row["updated_at"]),
            )

    @staticmethod
    def update(**values) -> Settings:
        unknown = set(values) - set(SETTINGS_FIELDS)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        if values:
            assignments = ", ".join(f"{key} = ?" for key in values)
            with get_db() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    f"""
                    UPDATE settings
                    SET {assignments}, updated_at = ?
                    WHERE id = (SELECT id FROM settings ORDER BY id DESC LIMIT 1)
                    """,
                    (*values.values(), datetime.now(timezone.utc).isoformat()),
                )
        return SettingsRepository.get()
