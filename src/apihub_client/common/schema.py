"""Pydantic models and dataclasses for request/response types."""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class RunRequest(BaseModel):
    """One call to the gateway's /run endpoint."""

    model_config = ConfigDict(frozen=True)

    model: str = Field(..., min_length=1, description='Opaque "vendor/identifier" token')
    inputs: dict[str, Any] = Field(default_factory=dict)
    stream: bool = False
    output: str | None = None
    auto_fallback: bool = True

    def envelope(self) -> dict[str, Any]:
        """Wire body shared by every response mode."""
        return {
            "model": self.model,
            "inputs": self.inputs,
            "stream": self.stream,
            "auto_fallback": self.auto_fallback,
        }


@dataclass(frozen=True)
class Saved:
    """Result written to disk, either downloaded media or the JSON body itself."""
    path: str
    media_type: str = "file"
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"saved": self.path, "type": self.media_type}
        if self.url:
            out["url"] = self.url
        return out


@dataclass(frozen=True)
class Processing:
    """Asynchronous job accepted by the provider; the raw JSON was saved for later polling."""
    job_id: str
    path: str

    def to_dict(self) -> dict[str, Any]:
        return {"processing": True, "jobId": self.job_id, "saved": self.path}


SavedOutcome = Saved | Processing
