"""Summary: AI call auditing for LifeOS.

Importance: Records every chat, organizer, and digest call with its outcome.
Alternatives: Rely solely on log output.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from lifeos.ai import AiProvider, estimate_tokens
from lifeos.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Writes and lists AI audit records.

    Importance: Enables review of prompts, outcomes, and latency.
    Alternatives: Use raw database queries or log files.
    """

    store: SqliteStore | None
    provider: AiProvider

    def record(
        self, purpose: str, prompt: str, response_text: str, status: str, latency_ms: int = 0
    ) -> None:
        """Summary: Store one AI call.

        Importance: Cancelled and failed calls are audited alongside successful ones.
        Alternatives: Audit only successful calls.
        """

        if self.store is None:
            return
        self.store.log_ai_call(
            purpose=purpose,
            provider=self.provider.name,
            model=self.provider.model,
            prompt=prompt,
            response_text=response_text,
            status=status,
            latency_ms=latency_ms,
        )
        logger.debug("Audited %s call (%s).", purpose, status)

    def list_calls(self, limit: int = 20) -> list[dict[str, str | int]]:
        """Summary: Return recent AI calls without prompt bodies.

        Importance: Supports auditing purposes, outcomes, and latency.
        Alternatives: Return full prompts and responses.
        """

        if self.store is None:
            return []
        return [
            {
                "id": call.id,
                "purpose": call.purpose,
                "provider": call.provider,
                "model": call.model,
                "status": call.status,
                "latency_ms": call.latency_ms,
                "token_estimate": estimate_tokens(call.response_text),
                "timestamp": call.timestamp,
            }
            for call in self.store.list_ai_calls(limit)
        ]
