from __future__ import annotations

import json
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Keys accepted when reading a passthrough back; the first one is written.
_RECORD_KEYS = ("recordId", "lessonId")


@dataclass(frozen=True)
class CorrelationToken:
    """Carries the content record id through the provider so webhooks can be matched back.

    The provider echoes the encoded token in the ``passthrough`` field of the
    asset settings attached to a direct upload.
    """
    record_id: str

    def encode(self) -> str:
        return json.dumps({_RECORD_KEYS[0]: self.record_id}, separators=(",", ":"))

    @classmethod
    def decode(cls, raw: str | None) -> CorrelationToken | None:
        if not raw:
            return None
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Passthrough is not valid JSON: {raw[:200]!r}")
            return None
        if not isinstance(parsed, dict):
            return None
        for key in _RECORD_KEYS:
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return cls(record_id=value.strip())
        return None
