from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass
class Channel:
    id: Optional[int]
    channel_id: str
    name: str
    created_at: Optional[datetime] = None


@dataclass
class Video:
    id: Optional[int]
    video_id: str
    channel_id: Optional[int]
    title: str
    published_at: datetime
    video_url: str
    description: str = ""
    thumbnail_url: Optional[str] = None
    download_requested_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass
class Settings:
    id: Optional[int]
    download_backend: str
    metube_url: str
    aria2c_ip: str
    aria2c_port: str
    download_folder: str
    username: str = ""
    password: str = ""
    filter_shorts: bool = False
    updated_at: Optional[datetime] = None

    @property
    def aria2c_rpc_url(self) -> str:
        return f"http://{self.aria2c_ip}:{self.aria2c_port}/jsonrpc"
