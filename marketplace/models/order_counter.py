"""OrderCounter model: last issued order sequence per calendar day."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from marketplace.database.base import Base


class OrderCounter(Base):
    __tablename__ = "order_counters"

    date_key: Mapped[str] = mapped_column(String(8), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
