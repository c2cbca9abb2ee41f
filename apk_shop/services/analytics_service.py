"""Download Accounting - 下载统计与 API 访问日志"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from apk_shop.db.base import Database
from apk_shop.db.models import AccessLogEntry, DownloadEvent, Package, User
from apk_shop.errors import StorageError
from apk_shop.models.schemas import AccessLogInfo, DownloadEventInfo
from apk_shop.services.access_gate import Caller

logger = logging.getLogger(__name__)


class AnalyticsService:
    """只追加的下载记录和访问日志。

    写入是尽力而为的：失败只记录日志，不影响下载或 API 响应本身。
    """

    def __init__(self, database: Database) -> None:
        self.database = database

    def record_download(
        self,
        package_id: int,
        caller: Optional[Caller],
        bytes_served: Optional[int],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
    ) -> bool:
        """追加一条下载记录，返回是否写入成功"""
        try:
            with self.database.transaction() as session:
                session.add(
                    DownloadEvent(
                        apk_id=package_id,
                        user_id=caller.user_id if caller else None,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        download_success=success,
                        file_size_downloaded=bytes_served,
                    )
                )
        except Exception:
            logger.exception("Failed to record download of apk %s", package_id)
            return False
        return True

    def record_access(
        self,
        endpoint: str,
        method: str,
        caller: Optional[Caller] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        response_status: Optional[int] = None,
        response_time_ms: Optional[int] = None,
    ) -> bool:
        """追加一条 API 访问日志，返回是否写入成功"""
        try:
            with self.database.transaction() as session:
                session.add(
                    AccessLogEntry(
                        user_id=caller.user_id if caller else None,
                        endpoint=endpoint,
                        method=method,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        response_status=response_status,
                        response_time_ms=response_time_ms,
                    )
                )
        except Exception:
            logger.exception("Failed to record access to %s %s", method, endpoint)
            return False
        return True

    def list_downloads(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        apk_id: Optional[int] = None,
    ) -> list[DownloadEventInfo]:
        """下载记录，附带 APK 名称 / 版本和下载者用户名，最新在前"""
        downloader = aliased(User)
        stmt = (
            select(DownloadEvent, Package.name, Package.version, downloader.username)
            .outerjoin(Package, Package.id == DownloadEvent.apk_id)
            .outerjoin(downloader, downloader.id == DownloadEvent.user_id)
        )
        if start is not None:
            stmt = stmt.where(DownloadEvent.download_date >= start)
        if end is not None:
            stmt = stmt.where(DownloadEvent.download_date <= end)
        if apk_id is not None:
            stmt = stmt.where(DownloadEvent.apk_id == apk_id)
        stmt = stmt.order_by(DownloadEvent.download_date.desc(), DownloadEvent.id.desc())

        try:
            with self.database.session() as session:
                rows = session.execute(stmt).all()
                return [
                    DownloadEventInfo.model_validate(event).model_copy(
                        update={"apk_name": name, "apk_version": version, "downloader_name": username}
                    )
                    for event, name, version, username in rows
                ]
        except SQLAlchemyError as e:
            logger.exception("Failed to list downloads")
            raise StorageError() from e

    def list_access_logs(self, limit: int = 100) -> list[AccessLogInfo]:
        """最近的 API 访问日志，最新在前"""
        stmt = (
            select(AccessLogEntry)
            .order_by(AccessLogEntry.access_date.desc(), AccessLogEntry.id.desc())
            .limit(limit)
        )
        try:
            with self.database.session() as session:
                return [AccessLogInfo.model_validate(entry) for entry in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            logger.exception("Failed to list access logs")
            raise StorageError() from e
