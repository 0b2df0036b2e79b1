from __future__ import annotations

from typing import Optional

from sqlalchemy import String, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base


class ComplianceFlag(Base):
    __tablename__ = "compliance_flags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )

    category: Mapped[str] = mapped_column(String(16), nullable=False, default="security")
    severity: Mapped[str] = mapped_column(String(8), nullable=False)  # low | medium | high
    message: Mapped[str] = mapped_column(String(512), nullable=False)
    file_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    line: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    order = relationship("Order", back_populates="flags")
