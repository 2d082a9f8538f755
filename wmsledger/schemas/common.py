# wmsledger/schemas/common.py
from __future__ import annotations

from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict


class _Base(BaseModel):
    """允许 ORM 输出、忽略多余字段"""

    model_config = ConfigDict(from_attributes=True, extra="ignore")


def _blank_to_none(v):
    if isinstance(v, str) and not v.strip():
        return None
    return v


# 库里非批次存空串，对外统一为 null
BatchNo = Annotated[Optional[str], BeforeValidator(_blank_to_none)]


class ApproveIn(_Base):
    approved_by: Optional[str] = None
