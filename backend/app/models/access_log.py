from datetime import datetime

from sqlalchemy import Boolean, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from app.utils.time_utils import Datetime

from .base import Base, UTCDateTime, UUIDPrimaryKeyMixin


class AccessLog(Base, UUIDPrimaryKeyMixin):
    """
    访问审计日志

    每条记录对应一次经过访问网关的请求；passed=False 表示被拒绝，
    或者请求虽被放行但随后处理失败（由审计关联逻辑回写）。
    """
    __tablename__ = "access_log"

    client_ip: Mapped[str] = mapped_column(String(64), nullable=False, index=True, comment="客户端真实 IP")
    request_summary: Mapped[str] = mapped_column(String(2048), nullable=False, comment="请求摘要")
    passed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, comment="是否通过")
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=Datetime.now,
        comment="创建时间"
    )

    __table_args__ = (
        Index("idx_access_log_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AccessLog(client_ip={self.client_ip}, passed={self.passed})>"
