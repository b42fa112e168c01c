"""
本地文件存储

上传文件保存到 <根目录>/<用户名>/<YYYY-MM-DD>/<8位随机前缀>_<文件名>，
数据库中只记录相对根目录的路径，对外访问地址为 file_web_host + 相对路径。
"""

import logging
import os
import uuid
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from zoneinfo import ZoneInfo

import aiofiles

from app.config import Settings
from app.exceptions import LocalStorageError

logger = logging.getLogger(__name__)


@dataclass
class StoredFile:
    relative_path: str
    absolute_path: Path
    size: int


class LocalFileStorage:
    def __init__(self, root: str | Path, web_host: str = "", timezone: str = "Asia/Shanghai"):
        self.root = Path(root)
        self.web_host = web_host
        self.timezone = timezone

    @classmethod
    def from_settings(cls, settings: Settings) -> "LocalFileStorage":
        return cls(settings.file_path, settings.file_web_host, settings.timezone)

    def _today(self) -> str:
        return datetime.now(ZoneInfo(self.timezone)).strftime("%Y-%m-%d")

    def absolute_path(self, relative_path: str) -> Path:
        path = (self.root / relative_path).resolve()
        # 禁止通过 ../ 访问根目录之外的文件
        if self.root.resolve() not in path.parents:
            raise LocalStorageError(f"非法的文件路径: {relative_path}")
        return path

    def public_url(self, relative_path: str) -> str:
        return f"{self.web_host}{relative_path}"

    async def save(self, username: str, filename: str, content: bytes) -> StoredFile:
        """写入文件，随机前缀避免同名文件互相覆盖"""
        safe_name = Path(filename).name or "upload.bin"
        relative = Path(username) / self._today() / f"{uuid.uuid4().hex[:8]}_{safe_name}"
        target = self.root / relative
        try:
            os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as out_file:
                await out_file.write(content)
        except OSError as e:
            logger.error(f"保存文件失败 {target}: {e}")
            raise LocalStorageError(f"保存文件失败: {safe_name}") from e

        logger.info(f"文件已保存: {relative.as_posix()} ({len(content)} bytes)")
        return StoredFile(relative_path=relative.as_posix(), absolute_path=target, size=len(content))

    async def read(self, relative_path: str) -> bytes:
        path = self.absolute_path(relative_path)
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            logger.error(f"读取文件失败 {path}: {e}")
            raise LocalStorageError(f"读取文件失败: {relative_path}") from e

    async def remove(self, relative_path: str) -> None:
        """删除本地文件（事务回滚后清理刚写入的文件）"""
        path = self.absolute_path(relative_path)
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"删除文件失败 {path}: {e}")
