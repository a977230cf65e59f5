from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from mdm_shared.enums import TelemetryCategory
from mdm_shared.sanitization import sanitize_json, sanitize_text


class AgentReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user: str = Field(min_length=1, max_length=255)
    serial_no: str = Field(min_length=1, max_length=255)
    os_type: str = Field(min_length=1, max_length=50)
    os_version: str | None = Field(default=None, max_length=100)
    computer_name: str | None = Field(default=None, max_length=255)
    agent_version: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("agent_version", "version"),
    )
    timestamp: str | None = Field(default=None, max_length=64)
    data: dict[str, Any] = Field(default_factory=dict)

    @field_validator("user", "serial_no", "os_type", mode="before")
    @classmethod
    def sanitize_required(cls, value: Any) -> str:
        if value is None:
            raise ValueError("field is required")
        cleaned = sanitize_text(value)
        if not cleaned:
            raise ValueError("field cannot be empty")
        return cleaned

    @field_validator("os_version", "computer_name", "agent_version", "timestamp", mode="before")
    @classmethod
    def sanitize_optional(cls, value: Any) -> str | None:
        if value is None:
            return None
        cleaned = sanitize_text(value)
        return cleaned or None

    @field_validator("data", mode="before")
    @classmethod
    def sanitize_data(cls, value: Any) -> Any:
        if value is None:
            return {}
        return sanitize_json(value)

    def category_items(self) -> dict[TelemetryCategory, list[Any]]:
        """Known categories with a non-empty item list, in enum order."""
        output: dict[TelemetryCategory, list[Any]] = {}
        for category in TelemetryCategory:
            items = self.data.get(category.value)
            if isinstance(items, list) and items:
                output[category] = items
        return output

    def unknown_categories(self) -> list[str]:
        known = {category.value for category in TelemetryCategory}
        return sorted(key for key in self.data if key not in known)


class AgentReportResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    message: str
    device_id: int = Field(ge=1)
    timestamp: str
    categories: dict[str, bool]
