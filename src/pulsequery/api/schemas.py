"""Request bodies of the http api.

field names are camelCase on the wire (that's what the dashboard sends) and
get mapped onto the snake_case request models the engine works with.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pulsequery.models.request import CompileRequest, FilterClause, QueryRequest


def _split_group_by(value: Any) -> Any:
    # "a, b" and ["a", "b"] both mean two grouping expressions
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()] or None
    return value


class CompileBody(BaseModel):
    """Body of POST /compile."""

    model_config = ConfigDict(populate_by_name=True)

    website_id: str = Field(alias="websiteId", min_length=1)
    name: str = Field(min_length=1)
    start_date: str = Field(alias="from", min_length=1)
    end_date: str = Field(alias="to", min_length=1)
    time_unit: str | None = Field(default=None, alias="timeUnit")
    filters: list[FilterClause] = Field(default_factory=list)
    group_by: list[str] | None = Field(default=None, alias="groupBy")
    order_by: str | None = Field(default=None, alias="orderBy")
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)
    timezone: str | None = None

    @field_validator("group_by", mode="before")
    @classmethod
    def _group_by_list(cls, value: Any) -> Any:
        return _split_group_by(value)

    def to_compile_request(self, timezone: str | None = None) -> CompileRequest:
        return CompileRequest(
            tenant_id=self.website_id,
            name=self.name,
            start_date=self.start_date,
            end_date=self.end_date,
            timezone=self.timezone or timezone or "UTC",
            granularity=self.time_unit,
            limit=self.limit,
            offset=self.offset,
            filters=self.filters,
            group_by=self.group_by,
            order_by=self.order_by,
        )


class QueryBody(BaseModel):
    """One request object in the body of POST /."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | None = None
    parameters: list[str] = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1)
    page: int = Field(default=1, ge=1)
    filters: list[FilterClause] = Field(default_factory=list)
    granularity: str | None = None
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    timezone: str | None = Field(default=None, alias="timeZone")
    group_by: list[str] | None = Field(default=None, alias="groupBy")
    order_by: str | None = Field(default=None, alias="orderBy")

    @field_validator("group_by", mode="before")
    @classmethod
    def _group_by_list(cls, value: Any) -> Any:
        return _split_group_by(value)

    def to_request(
        self,
        website_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
        timezone: str = "UTC",
    ) -> QueryRequest:
        """Merge with the query-string defaults; the body wins."""
        values: dict[str, Any] = {
            "tenant_id": website_id,
            "parameters": self.parameters,
            "start_date": self.start_date or start_date,
            "end_date": self.end_date or end_date,
            "timezone": self.timezone or timezone,
            "granularity": self.granularity,
            "page": self.page,
            "filters": self.filters,
            "group_by": self.group_by,
            "order_by": self.order_by,
        }
        if self.limit is not None:
            values["limit"] = self.limit
        if self.id:
            values["id"] = self.id
        return QueryRequest(**values)
