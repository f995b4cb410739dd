from __future__ import annotations

from typing import Any, Dict, Optional

from ..log_config import debug_verbose, error_log, verbose_log


class JobLogger:
    """Proxy logger that tags every line with a download job id."""

    def __init__(self, job_id: str, *, parent_id: Optional[str] = None) -> None:
        self.job_id = job_id
        self.parent_id = parent_id

    def debug(self, label: str, **details: Any) -> None:
        debug_verbose(label, self._payload(details))

    def info(self, label: str, **details: Any) -> None:
        verbose_log(label, self._payload(details))

    def error(self, label: str, **details: Any) -> None:
        error_log(label, self._payload(details))

    def _payload(self, details: Dict[str, Any]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"job_id": self.job_id}
        if self.parent_id:
            payload["parent_id"] = self.parent_id
        payload.update(details)
        return payload


__all__ = ["JobLogger"]
