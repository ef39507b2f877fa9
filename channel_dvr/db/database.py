import sqlite3
from contextlib import contextmanager
from typing import Generator

from channel_dvr.config import Config


def get_connection() -> sqlite3.Connection:
    conn = sqlite3.connect(Config.DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    # Needed for ON DELETE CASCADE from channels to videos
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_db() -> Generator[sqlite3.Connection, None, None]:
    conn = get_connection()
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    with get_db() as conn:
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                download_backend TEXT NOT NULL DEFAULT 'metube',
                metube_url TEXT NOT NULL DEFAULT 'http://localhost:8081',
                aria2c_ip TEXT NOT NULL DEFAULT 'localhost',
                aria2c_port TEXT NOT NULL DEFAULT '6800',
                download_folder TEXT NOT NULL DEFAULT '/downloads',
                username TEXT NOT NULL DEFAULT '',
                password TEXT NOT NULL DEFAULT '',
                filter_shorts BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS channels (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                channel_id TEXT UNIQUE NOT NULL,
                name TEXT NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS videos (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                video_id TEXT UNIQUE NOT NULL,
                channel_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                description TEXT,
                published_at TIMESTAMP NOT NULL,
                thumbnail_url TEXT,
                video_url TEXT NOT NULL,
                download_requested_at TIMESTAMP,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY (channel_id) REFERENCES channels(id) ON DELETE CASCADE
            )
        """)

        cursor.execute("SELECT COUNT(*) AS count FROM settings")
        if cursor.fetchone()["count"] == 0:
            cursor.execute(
                """
                INSERT INTO settings (
                    download_backend, metube_url, aria2c_ip, aria2c_port,
                    download_folder, filter_shorts
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    Config.DOWNLOAD_BACKEND,
                    Config.METUBE_URL,
                    Config.ARIA2C_IP,
                    Config.ARIA2C_PORT,
                    Config.DOWNLOAD_FOLDER,
                    Config.FILTER_SHORTS,
                ),
            )

        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_videos_channel_id ON videos(channel_id)
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_videos_published_at ON videos(published_at)
        """)
