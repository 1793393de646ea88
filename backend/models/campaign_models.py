from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional
from enum import Enum


class CampaignStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class DeliverCampaignRequest(BaseModel):
    segment_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    refresh_segment: bool = False


class CampaignCreate(BaseModel):
    segment_id: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    discount_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    status: Literal["DRAFT", "ACTIVE", "COMPLETED"] = "DRAFT"


class CampaignUpdate(BaseModel):
    subject: Optional[str] = Field(None, min_length=1, max_length=200)
    message: Optional[str] = Field(None, min_length=1)
    discount_percentage: Optional[float] = Field(None, ge=0, le=100)
    status: Optional[Literal["DRAFT", "ACTIVE", "COMPLETED"]] = None


class CampaignStatsSummaryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    campaign_ids: List[str] = Field(..., alias="campaignIds", min_length=1, max_length=200)
