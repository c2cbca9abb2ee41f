"""Versioning Service - APK 版本链、上传、回滚与删除"""

from __future__ import annotations

import hashlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from apk_shop.db.base import Database
from apk_shop.db.models import DownloadEvent, Package, User
from apk_shop.errors import (
    DuplicateVersion,
    NoPreviousVersion,
    NotFound,
    ServiceError,
    StorageError,
    ValidationError,
)
from apk_shop.models.schemas import (
    BulkUploadItemResult,
    BulkUploadResponse,
    PackageInfo,
    UploadResponse,
    VersionInfo,
)
from apk_shop.services.access_gate import AccessGate, Caller
from apk_shop.services.storage_service import StorageService

logger = logging.getLogger(__name__)

BULK_DEFAULT_VERSION = "1.0.0"
BULK_DEFAULT_DESCRIPTION = "Bulk uploaded APK"


@dataclass
class UploadItem:
    """批量上传中的单个文件；缺省的元数据由文件名推导"""

    content: bytes
    filename: str
    name: Optional[str] = None
    version: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class DownloadTarget:
    package_id: int
    path: Path
    original_name: str
    file_size: int


class VersionService:
    """维护每个 (owner, name) 的版本链。

    同一 (owner, name) 的记录按上传时间组成单链表，新记录总是链接到
    当前最新的记录。所有多语句操作都在一个可串行化事务中完成，保证：

    - (owner, name, version) 唯一
    - 每条链上至多一条 active 记录（有记录时恰好一条）
    - 有记录就有文件，有文件就有记录
    """

    def __init__(
        self,
        database: Database,
        storage: StorageService,
        gate: AccessGate,
        max_bulk_files: int = 10,
    ) -> None:
        self.database = database
        self.storage = storage
        self.gate = gate
        self.max_bulk_files = max_bulk_files

    # === 内部工具 ===

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        """把数据库异常转换为不透明的 StorageError，并记录完整上下文"""
        try:
            yield
        except SQLAlchemyError as e:
            logger.exception("Metadata store failure during %s", action)
            raise StorageError() from e

    @staticmethod
    def _load_chain(session: Session, owner_id: int, name: str) -> list[Package]:
        """读取并锁定整条链，按上传时间从新到旧排列"""
        stmt = (
            select(Package)
            .where(Package.user_id == owner_id, Package.name == name)
            .order_by(Package.upload_date.desc(), Package.id.desc())
            .with_for_update()
        )
        return list(session.execute(stmt).scalars().all())

    @staticmethod
    def _load_package(session: Session, package_id: int) -> Package:
        package = session.get(Package, package_id)
        if package is None:
            raise NotFound(f"APK {package_id} 不存在", {"apk_id": package_id})
        return package

    @staticmethod
    def _validate_fields(name: Optional[str], version: Optional[str], description: Optional[str]) -> tuple[str, str, str]:
        name = (name or "").strip()
        version = (version or "").strip()
        description = (description or "").strip()
        missing = [
            field for field, value in (("name", name), ("version", version), ("description", description))
            if not value
        ]
        if missing:
            raise ValidationError("APK 名称、版本和描述均为必填项", {"missing": missing})
        return name, version, description

    def _discard_blob(self, filename: Optional[str]) -> None:
        if filename is None:
            return
        try:
            self.storage.delete(filename)
        except StorageError:
            # Already logged by the storage layer; the original failure wins.
            pass

    # === 上传 ===

    def upload(
        self,
        owner_id: int,
        name: str,
        version: str,
        description: str,
        content: bytes,
        original_filename: str,
    ) -> UploadResponse:
        """上传一个新版本。

        1. 校验元数据与 APK 格式
        2. (owner, name, version) 已存在则拒绝，不写入任何文件
        3. 计算 sha256 作为完整性校验值
        4. 找到该链上最新的记录作为前驱
        5. 写入 Blob Store，停用旧的 active 记录，插入新记录（active）

        Raises:
            ValidationError: 缺少字段或不是 APK
            DuplicateVersion: 版本已存在
            StorageError: 文件或数据库写入失败
        """
        name, version, description = self._validate_fields(name, version, description)
        self.storage.validate_apk(content, original_filename)
        file_hash = hashlib.sha256(content).hexdigest()

        filename: Optional[str] = None
        try:
            with self.database.transaction() as session:
                chain = self._load_chain(session, owner_id, name)
                if any(p.version == version for p in chain):
                    raise DuplicateVersion(
                        f"{name} 的版本 {version} 已存在",
                        {"name": name, "version": version},
                    )
                predecessor = chain[0] if chain else None

                filename = self.storage.save(content, original_filename)

                for p in chain:
                    if p.is_active:
                        p.is_active = False
                session.flush()

                package = Package(
                    user_id=owner_id,
                    name=name,
                    version=version,
                    description=description,
                    filename=filename,
                    original_name=original_filename,
                    file_size=len(content),
                    file_hash=file_hash,
                    is_active=True,
                    is_rollback=False,
                    previous_version_id=predecessor.id if predecessor else None,
                )
                session.add(package)
                session.flush()
                package_id = package.id
        except IntegrityError as e:
            # Lost a race on the unique (owner, name, version) constraint.
            self._discard_blob(filename)
            raise DuplicateVersion(
                f"{name} 的版本 {version} 已存在",
                {"name": name, "version": version},
            ) from e
        except SQLAlchemyError as e:
            logger.exception("Metadata store failure during upload of %s %s", name, version)
            self._discard_blob(filename)
            raise StorageError() from e
        except ServiceError:
            self._discard_blob(filename)
            raise

        logger.info(
            "Uploaded %s %s for user %s as apk %s (previous=%s)",
            name, version, owner_id, package_id, predecessor.id if predecessor else None,
        )
        return UploadResponse(id=package_id, file_hash=file_hash)

    def upload_many(self, owner_id: int, items: list[UploadItem]) -> BulkUploadResponse:
        """逐个上传，单个失败不影响其他文件（非原子）。"""
        if not items:
            raise ValidationError("未上传任何文件")
        if len(items) > self.max_bulk_files:
            raise ValidationError(
                f"一次最多上传 {self.max_bulk_files} 个文件",
                {"count": len(items)},
            )

        results: list[BulkUploadItemResult] = []
        for item in items:
            name = item.name or PurePosixPath(item.filename or "").stem
            version = item.version or BULK_DEFAULT_VERSION
            description = item.description or BULK_DEFAULT_DESCRIPTION
            try:
                uploaded = self.upload(owner_id, name, version, description, item.content, item.filename)
            except ServiceError as e:
                results.append(BulkUploadItemResult(filename=item.filename, success=False, error=e.message))
                continue
            results.append(
                BulkUploadItemResult(
                    filename=item.filename,
                    success=True,
                    id=uploaded.id,
                    file_hash=uploaded.file_hash,
                )
            )

        succeeded = sum(1 for r in results if r.success)
        return BulkUploadResponse(succeeded=succeeded, failed=len(results) - succeeded, results=results)

    # === 查询 ===

    def list_packages(
        self,
        owner_id: Optional[int] = None,
        name: Optional[str] = None,
        version: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        active_only: bool = True,
    ) -> list[PackageInfo]:
        """按名称 / 版本子串过滤的 APK 列表，最新上传在前"""
        if limit < 0 or offset < 0:
            raise ValidationError("limit 和 offset 不能为负数")

        download_count = (
            select(func.count(DownloadEvent.id))
            .where(DownloadEvent.apk_id == Package.id)
            .correlate(Package)
            .scalar_subquery()
        )
        stmt = select(Package, User.username, download_count).join(User, User.id == Package.user_id)
        if active_only:
            stmt = stmt.where(Package.is_active.is_(True))
        if owner_id is not None:
            stmt = stmt.where(Package.user_id == owner_id)
        if name:
            stmt = stmt.where(Package.name.contains(name, autoescape=True))
        if version:
            stmt = stmt.where(Package.version.contains(version, autoescape=True))
        stmt = stmt.order_by(Package.upload_date.desc(), Package.id.desc()).limit(limit).offset(offset)

        with self._guard("list"), self.database.session() as session:
            rows = session.execute(stmt).all()
            return [
                PackageInfo.model_validate(package).model_copy(
                    update={"uploader_name": username, "download_count": count or 0}
                )
                for package, username, count in rows
            ]

    def get_versions(self, package_id: int, caller: Caller) -> list[VersionInfo]:
        """返回与该记录同一 (owner, name) 的所有版本，最新在前"""
        with self._guard("get_versions"), self.database.session() as session:
            package = self._load_package(session, package_id)
            self.gate.require_mutate(caller, package)
            chain = self._load_chain(session, package.user_id, package.name)
            return [VersionInfo.model_validate(p) for p in chain]

    # === 回滚 ===

    def rollback(self, package_id: int, caller: Caller) -> int:
        """回滚到前驱版本，返回被激活的记录 id。

        目标记录标记为 rollback 并停用，前驱记录激活；完成后整条链上
        恰好一条 active 记录。没有前驱时不做任何修改。
        """
        with self._guard("rollback"), self.database.transaction() as session:
            target = self._load_package(session, package_id)
            self.gate.require_mutate(caller, target)
            if target.previous_version_id is None:
                raise NoPreviousVersion(
                    f"APK {package_id} 没有可回滚的上一个版本",
                    {"apk_id": package_id},
                )

            chain = self._load_chain(session, target.user_id, target.name)
            predecessor = next((p for p in chain if p.id == target.previous_version_id), None)
            if predecessor is None:
                raise NoPreviousVersion(
                    f"APK {package_id} 没有可回滚的上一个版本",
                    {"apk_id": package_id},
                )

            target.is_rollback = True
            for p in chain:
                if p.is_active and p.id != predecessor.id:
                    p.is_active = False
            session.flush()
            predecessor.is_active = True
            activated_id = predecessor.id

        logger.info("Rolled back apk %s to %s by user %s", package_id, activated_id, caller.user_id)
        return activated_id

    # === 删除 ===

    def delete(self, package_id: int, caller: Caller) -> None:
        """删除记录及其文件。

        链中间的记录被删除时，其后继重新链接到它的前驱。被删除的记录
        是 active 时，激活它的前驱；没有前驱则激活剩余记录中最新的一条。
        """
        with self._guard("delete"), self.database.transaction() as session:
            package = self._load_package(session, package_id)
            self.gate.require_mutate(caller, package)
            chain = self._load_chain(session, package.user_id, package.name)
            survivors = [p for p in chain if p.id != package.id]

            for p in survivors:
                if p.previous_version_id == package.id:
                    p.previous_version_id = package.previous_version_id

            promote: Optional[Package] = None
            if package.is_active and survivors:
                promote = next((p for p in survivors if p.id == package.previous_version_id), survivors[0])

            session.flush()
            session.delete(package)
            session.flush()
            if promote is not None:
                promote.is_active = True
            filename = package.filename

        # 记录已提交，文件删除失败只留下孤立文件
        self._discard_blob(filename)
        logger.info(
            "Deleted apk %s by user %s (activated=%s)",
            package_id, caller.user_id, promote.id if promote else None,
        )

    # === 下载 ===

    def open_download(self, package_id: int) -> DownloadTarget:
        """定位可下载的文件；只有 active 记录可以下载"""
        with self._guard("download"), self.database.session() as session:
            package = session.get(Package, package_id)
            if package is None or not package.is_active:
                raise NotFound(f"APK {package_id} 不存在", {"apk_id": package_id})

        path = self.storage.get_path(package.filename)
        if not path.is_file():
            logger.error("Blob %s missing for apk %s", package.filename, package_id)
            raise NotFound(f"APK {package_id} 的文件不存在", {"apk_id": package_id})
        return DownloadTarget(
            package_id=package.id,
            path=path,
            original_name=package.original_name,
            file_size=package.file_size,
        )
