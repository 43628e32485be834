"""
receipts.py - Session Event Receipts

Every observable event of a racing session (phase change, laser passed,
terminal outcome, transport failure, score not saved) is a flat receipt dict
built by emit_receipt(). The SessionManager keeps them in order and hands
each one to its subscribers; the CLI can append them to a JSONL log.

Receipt shape:
    receipt_type   event name, e.g. "laser_passed"
    ts             ISO8601 UTC time the event was observed
    tenant_id      client id of the session that produced it
    payload_hash   SHA256:BLAKE3 of the event payload
    ...            the event payload fields themselves
"""

import hashlib
import json
from datetime import datetime, timezone
from typing import Any, Dict, IO, Union

import blake3

__all__ = [
    "dual_hash",
    "emit_receipt",
    "write_receipt_jsonl",
    "StopRule",
    "RECEIPT_SCHEMA",
]

# =============================================================================
# CONSTANTS
# =============================================================================

RECEIPT_SCHEMA = {
    "receipt_type": "str",
    "ts": "ISO8601",
    "tenant_id": "str (client id)",
    "payload_hash": "str (SHA256:BLAKE3)",
}

UNATTRIBUTED = "default"


# =============================================================================
# CORE FUNCTION 1: dual_hash
# =============================================================================

def dual_hash(data: Union[bytes, str]) -> str:
    """Fingerprint an event payload as 'sha256_hex:blake3_hex'."""
    raw = data.encode() if isinstance(data, str) else data
    return f"{hashlib.sha256(raw).hexdigest()}:{blake3.blake3(raw).hexdigest()}"


# =============================================================================
# CORE FUNCTION 2: emit_receipt
# =============================================================================

def emit_receipt(receipt_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build the receipt for one session event.

    Args:
        receipt_type: Event name
        data: Event payload; its tenant_id is the session's client id

    Returns:
        dict: header fields followed by the payload fields
    """
    # enums, complex amplitudes and the like hash by their str()
    payload = json.dumps(data, sort_keys=True, default=str)
    return {
        "receipt_type": receipt_type,
        "ts": datetime.now(timezone.utc).isoformat(),
        "tenant_id": data.get("tenant_id", UNATTRIBUTED),
        "payload_hash": dual_hash(payload),
        **data,
    }


# =============================================================================
# CORE FUNCTION 3: write_receipt_jsonl
# =============================================================================

def write_receipt_jsonl(receipt: Dict[str, Any], fh: IO[str]) -> None:
    """Append one receipt to a session log as a compact JSON line and flush."""
    fh.write(json.dumps(receipt, separators=(",", ":"), default=str) + "\n")
    fh.flush()


# =============================================================================
# STOPRULE EXCEPTION
# =============================================================================

class StopRule(Exception):
    """A session invariant broke (illegal phase change, start outside IDLE)."""
    pass
