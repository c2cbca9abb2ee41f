"""APK Shop 服务 - 数据模型定义"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# === 账户模型 ===


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class RegisterRequest(BaseModel):
    """注册请求"""

    username: str = Field(default="", description="唯一用户名")
    email: str = Field(default="", description="唯一邮箱")
    password: str = Field(default="", description="明文密码，仅用于计算哈希")


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class UserInfo(BaseModel):
    """账户信息（不含密码哈希）"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    email: str
    role: UserRole
    is_active: bool
    created_at: datetime
    last_login: Optional[datetime] = None


class AuthResponse(BaseModel):
    """注册 / 登录响应"""

    token: str
    api_key: Optional[str] = None
    user: UserInfo


class UserUpdateRequest(BaseModel):
    """管理员修改账户"""

    role: Optional[UserRole] = None
    is_active: Optional[bool] = None


# === APK 模型 ===


class UploadResponse(BaseModel):
    """APK 上传响应"""

    id: int
    file_hash: str


class PackageInfo(BaseModel):
    """APK 列表项"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    name: str
    version: str
    description: str
    original_name: str
    file_size: int
    file_hash: str
    is_active: bool
    is_rollback: bool
    previous_version_id: Optional[int] = None
    upload_date: datetime
    uploader_name: Optional[str] = None
    download_count: int = 0


class VersionInfo(BaseModel):
    """版本链中的一条记录"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    version: str
    description: str
    upload_date: datetime
    is_active: bool
    is_rollback: bool
    previous_version_id: Optional[int] = None


class RollbackResponse(BaseModel):
    activated_id: int


class BulkUploadItemResult(BaseModel):
    """批量上传中单个文件的结果"""

    filename: str
    success: bool
    id: Optional[int] = None
    file_hash: Optional[str] = None
    error: Optional[str] = None


class BulkUploadResponse(BaseModel):
    succeeded: int
    failed: int
    results: list[BulkUploadItemResult] = []


class ExternalPackageInfo(BaseModel):
    """外部 API（API key）返回的精简信息"""

    id: int
    name: str
    version: str
    description: str
    file_size: int
    upload_date: datetime


# === 下载统计模型 ===


class DownloadEventInfo(BaseModel):
    """下载记录"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    apk_id: Optional[int] = None
    apk_name: Optional[str] = None
    apk_version: Optional[str] = None
    user_id: Optional[int] = None
    downloader_name: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    download_date: datetime
    download_success: bool
    file_size_downloaded: Optional[int] = None


class AccessLogInfo(BaseModel):
    """API 访问日志"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    endpoint: str
    method: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    response_status: Optional[int] = None
    response_time_ms: Optional[int] = None
    access_date: datetime
