"""Hash-chained audit trail of agent actions."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from hashlib import sha256
import json
from pathlib import Path
import threading
from typing import Any, Iterable

REDACT_KEYS = ("key", "token", "password", "secret")
MAX_STRING_CHARS = 2000


def canonical_json(payload: Any) -> str:
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    )


def redact(payload: Any, rules: Iterable[str] = REDACT_KEYS) -> Any:
    """Mask secret-looking keys and truncate long strings such as page HTML."""
    if isinstance(payload, dict):
        return {
            key: "[redacted]"
            if any(rule in str(key).lower() for rule in rules)
            else redact(value, rules)
            for key, value in payload.items()
        }
    if isinstance(payload, list):
        return [redact(item, rules) for item in payload]
    if isinstance(payload, str) and len(payload) > MAX_STRING_CHARS:
        return payload[:MAX_STRING_CHARS] + "...[truncated]"
    return payload


@dataclass
class AuditEvent:
    timestamp: str
    execution_id: str
    event_type: str
    payload: dict[str, Any]
    prev_hash: str
    event_hash: str


class AuditLogger:
    """Writes one JSONL file per execution; each event hashes its predecessor."""

    def __init__(self, audit_dir: Path) -> None:
        self.audit_dir = audit_dir
        self._prev_hashes: dict[str, str] = {}
        self._lock = threading.Lock()

    def emit(self, execution_id: str, event_type: str, payload: dict[str, Any]) -> AuditEvent:
        timestamp = datetime.now(timezone.utc).isoformat()
        safe_payload = redact(payload)
        payload_hash = sha256(canonical_json(safe_payload).encode("utf-8")).hexdigest()
        with self._lock:
            prev_hash = self._prev_hashes.get(execution_id, "")
            event_hash = sha256(
                (prev_hash + payload_hash + event_type + timestamp).encode("utf-8")
            ).hexdigest()
            event = AuditEvent(
                timestamp=timestamp,
                execution_id=execution_id,
                event_type=event_type,
                payload=safe_payload,
                prev_hash=prev_hash,
                event_hash=event_hash,
            )
            self._prev_hashes[execution_id] = event_hash
            self.audit_dir.mkdir(parents=True, exist_ok=True)
            file_path = self.audit_dir / f"{execution_id}.jsonl"
            with file_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(asdict(event), ensure_ascii=False, default=str) + "\n")
        return event
