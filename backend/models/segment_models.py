from pydantic import BaseModel, ConfigDict, Field
from typing import List, Literal, Optional, Union


RuleField = Literal["spend", "visits", "last_active", "email", "name"]
RuleOperator = Literal[">", ">=", "<", "<=", "=", "!=", "contains", "not_contains"]


class Rule(BaseModel):
    field: RuleField
    op: RuleOperator
    value: Union[int, float, str]


class RuleGroup(BaseModel):
    """Customer matches when every `and` rule holds and, if any `or` rules exist, at least one of them."""

    model_config = ConfigDict(populate_by_name=True)

    and_: List[Rule] = Field(default_factory=list, alias="and")
    or_: List[Rule] = Field(default_factory=list, alias="or")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True)


class SegmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    rules: RuleGroup
    created_by: Optional[str] = Field(default="operator", max_length=100)


class SegmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    rules: Optional[RuleGroup] = None


class SegmentPreview(BaseModel):
    rules: RuleGroup


class SegmentRulesText(BaseModel):
    text: str = Field(..., min_length=1, max_length=500)


class SegmentFromText(SegmentRulesText):
    name: str = Field(..., min_length=1, max_length=100)
    created_by: Optional[str] = Field(default="operator", max_length=100)
