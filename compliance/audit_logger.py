from __future__ import annotations

import json
import logging
import os
from threading import Lock
from typing import Any, Dict

from models.schemas import AgentDecisionLog
from settings import SETTINGS

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only JSON-lines trail of tool dispatch rounds.

    Trust unlocks and tickets change the customer's account, so every dispatch
    round is written here with the tools, their arguments and outcomes.
    An empty path disables the file and only logs.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.audit_log_path if path is None else path
        self._lock = Lock()
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    def log_decision(self, record: AgentDecisionLog) -> None:
        self.log_json(record.model_dump(mode="json"))

    def log_json(self, payload: Dict[str, Any]) -> None:
        if not self.path:
            logger.info("audit_event", extra={"audit": payload})
            return
        line = json.dumps(payload, ensure_ascii=True)
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
