# sitebudget/models/vendor.py
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from sitebudget.db.base import Base


class Vendor(Base):
    """
    Minimal vendor directory entry; the full vendor master lives in the vendor service.
    """

    __tablename__ = "vendors"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="Vendor ID")
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Vendor display name")

    def __repr__(self) -> str:
        return f"<Vendor id={self.id} name={self.name}>"
