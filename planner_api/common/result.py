# planner_api/common/result.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from planner_api.common.errors import EngineError


@dataclass
class Result:
    """Typed outcome of an engine call: either data or a structured error."""
    ok: bool
    data: Any = None
    error: Optional[EngineError] = None

    @classmethod
    def success(cls, data=None) -> "Result":
        return cls(ok=True, data=data)

    @classmethod
    def failure(cls, error: EngineError) -> "Result":
        return cls(ok=False, error=error)

    @property
    def kind(self) -> str | None:
        return self.error.kind if self.error else None

    def to_dict(self) -> dict:
        # same envelope shape as common.http.result_response
        if self.ok:
            return {"success": True, "data": self.data}
        return {"success": False, "error": self.error.to_dict()}
