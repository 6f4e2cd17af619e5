"""Wire models for the remote scan endpoints."""

import json
from typing import Any, List, Optional

import pydantic
from pydantic import ConfigDict, Field


class StartScanResponse(pydantic.BaseModel):
    task_id: str = Field(alias="taskId", min_length=1)
    started_at: Optional[str] = Field(default=None, alias="startedAt")
    repo: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @pydantic.field_validator("task_id", mode="before")
    @classmethod
    def _numeric_task_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class LogChunk(pydantic.BaseModel):
    lines: List[str] = []
    end: bool = False
    cursor: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(extra="ignore")

    @pydantic.field_validator("lines", mode="before")
    @classmethod
    def _coerce_lines(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return value.splitlines()
        if not isinstance(value, (list, tuple)):
            raise ValueError("lines must be a list or a string")
        return [str(line) for line in value]

    @pydantic.field_validator("cursor", mode="before")
    @classmethod
    def _blank_cursor(cls, value: Any) -> Optional[str]:
        if value is None or value == "":
            return None
        return str(value)


def unwrap_envelope(data: Any) -> Any:
    """
    Gateway-style responses wrap the real document as a JSON string
    under "body". Unwrap exactly one level; also decode a bare JSON string.
    """
    if isinstance(data, dict) and isinstance(data.get("body"), str):
        try:
            return json.loads(data["body"])
        except ValueError:
            return data
    if isinstance(data, str):
        try:
            return json.loads(data)
        except ValueError:
            return data
    return data
