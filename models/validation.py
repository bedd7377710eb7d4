"""
Pydantic models for input validation
"""

import re
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from config.config import DEFAULT_PAGE_SIZE
from events.event_bus import EventTypes

_ADDRESS_RE = re.compile(r'^[A-Za-z0-9]+$')

FeedFilter = Literal["all", "sent", "received"]
FeedPage = Literal["home", "list"]


def validate_address(v: str) -> str:
    v = v.strip()
    if not _ADDRESS_RE.match(v):
        raise ValueError('Address contains invalid characters')
    return v


class WalletAddressRequest(BaseModel):
    address: str = Field(..., min_length=20, max_length=128)

    @field_validator('address')
    @classmethod
    def validate_address_format(cls, v):
        return validate_address(v)


class TrackingRequest(WalletAddressRequest):
    pass


class AddressFeedQuery(BaseModel):
    filter: FeedFilter = "all"
    page_size: int = Field(DEFAULT_PAGE_SIZE, ge=1, le=1000, description="Transactions per page")


class SearchQuery(BaseModel):
    q: str = Field(..., min_length=1, max_length=256)

    @field_validator('q')
    @classmethod
    def strip_query(cls, v):
        v = v.strip()
        if not v:
            raise ValueError('Query must not be blank')
        return v


class PflopsQuery(BaseModel):
    period: Literal["24h", "7d", "30d", "all"] = "all"


class RichListQuery(BaseModel):
    limit: Optional[int] = Field(100, ge=1, le=10000)


class WebSocketSubscription(BaseModel):
    update_type: str = Field(..., description="Event type to receive, or * for all")

    @field_validator('update_type')
    @classmethod
    def validate_update_type(cls, v):
        allowed_types = {value for key, value in vars(EventTypes).items() if key.isupper()}
        if v != '*' and v not in allowed_types:
            raise ValueError(f'Update type must be one of: {", ".join(sorted(allowed_types))}')
        return v
