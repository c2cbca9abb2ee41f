"""Storage Service - Blob Store，APK 二进制文件存储与管理"""

import io
import logging
import os
import re
import secrets
import time
import zipfile
from pathlib import Path

from apk_shop.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

_SAFE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


def _safe_component(value: str) -> str:
    cleaned = _SAFE_PATTERN.sub("_", value.strip())
    cleaned = cleaned.strip("._-")
    return cleaned or "package"


class StorageService:
    """存储服务：以生成的文件名保存、读取和删除 APK 文件"""

    # ZIP magic bytes: PK\x03\x04
    ZIP_MAGIC = b"PK\x03\x04"
    APK_EXTENSION = ".apk"

    def __init__(self, base_dir: str = "data") -> None:
        self.base_dir = Path(base_dir)
        self.uploads_dir = self.base_dir / "uploads"
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """创建所需的目录结构"""
        self.uploads_dir.mkdir(parents=True, exist_ok=True)

    def validate_apk(self, content: bytes, filename: str) -> None:
        """验证 APK：扩展名、ZIP 魔数和 AndroidManifest.xml 存在性。

        Raises:
            ValidationError: 文件不是有效的 APK
        """
        if not filename or not filename.lower().endswith(self.APK_EXTENSION):
            raise ValidationError("只允许上传 .apk 文件", {"filename": filename})

        if len(content) < 4 or content[:4] != self.ZIP_MAGIC:
            raise ValidationError("文件不是有效的 ZIP 格式（缺少 PK 魔数）", {"filename": filename})

        try:
            with zipfile.ZipFile(io.BytesIO(content)) as zf:
                if "AndroidManifest.xml" not in zf.namelist():
                    raise ValidationError(
                        "ZIP 文件中缺少 AndroidManifest.xml，不是有效的 APK",
                        {"filename": filename},
                    )
        except zipfile.BadZipFile:
            raise ValidationError("文件不是有效的 ZIP 格式", {"filename": filename})

    def generate_filename(self, original_filename: str) -> str:
        """生成存储文件名: {毫秒时间戳}_{随机后缀}_{清洗后的原文件名}

        随机后缀保证同一毫秒内的并发上传也不会冲突。
        """
        timestamp = int(time.time() * 1000)
        return f"{timestamp}_{secrets.token_hex(8)}_{_safe_component(original_filename)}"

    def get_path(self, filename: str) -> Path:
        """获取存储文件的本地路径，拒绝越出 uploads 目录的文件名"""
        path = (self.uploads_dir / filename).resolve()
        if path.parent != self.uploads_dir.resolve():
            raise ValidationError(f"非法的存储文件名: {filename}")
        return path

    def exists(self, filename: str) -> bool:
        return self.get_path(filename).is_file()

    def save(self, content: bytes, original_filename: str) -> str:
        """写入 APK 内容，返回生成的存储文件名。

        先写入临时文件再原子重命名，失败时不会留下半写的文件。

        Raises:
            StorageError: 文件系统写入失败
        """
        filename = self.generate_filename(original_filename)
        path = self.get_path(filename)
        tmp_path = path.with_name(f".{filename}.part")
        try:
            tmp_path.write_bytes(content)
            os.replace(tmp_path, path)
        except OSError as e:
            logger.exception("Failed to write blob %s", path)
            tmp_path.unlink(missing_ok=True)
            raise StorageError() from e
        return filename

    def delete(self, filename: str) -> bool:
        """删除存储文件；文件不存在时返回 False。

        Raises:
            StorageError: 文件系统删除失败
        """
        path = self.get_path(filename)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.exception("Failed to delete blob %s", path)
            raise StorageError() from e
        return True

    def list_files(self) -> list[str]:
        """列出 uploads 目录中的所有存储文件名（不含临时文件）"""
        return sorted(
            p.name for p in self.uploads_dir.iterdir()
            if p.is_file() and not p.name.startswith(".")
        )
