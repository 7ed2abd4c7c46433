from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class JobRequest(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    program_directory: str = Field(alias="programDirectory", min_length=1)


class JobConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    startup_command: str
    host_directory: Path


class JobState(str, Enum):
    creating = "creating"
    pulling = "pulling"
    starting = "starting"
    capturing = "capturing"
    waiting = "waiting"
    succeeded = "succeeded"
    failed = "failed"


class JobResult(BaseModel):
    status: Literal["success"] = "success"
    output: str = ""


class ErrorResponse(BaseModel):
    status: Literal["error"] = "error"
    message: str
