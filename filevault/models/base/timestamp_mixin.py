# filevault/models/base/timestamp_mixin.py
from datetime import datetime

from sqlalchemy import DateTime
from sqlmodel import SQLModel, Field

from filevault.models._model_utils.datetime import utcnow


class TimestampMixin(SQLModel):
    created_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_type=DateTime(timezone=True),
        nullable=False,
        sa_column_kwargs={"onupdate": utcnow},
    )
