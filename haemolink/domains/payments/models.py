import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from haemolink.core.db import Base


UPI_VPA_KEY = "hl_upi_vpa"
UPI_NAME_KEY = "hl_upi_name"


class LocalPreference(Base):
    __tablename__ = "local_preferences"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_local_preferences_user_key"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String, index=True)
    key: Mapped[str] = mapped_column(String)
    value: Mapped[str] = mapped_column(String, default="")

    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
