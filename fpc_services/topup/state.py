"""
Durable record of the in-flight bridge.

File format (version 1):

    {"version": 1,
     "bridge": {"baselineBalance": "<uint>", "amount": "<uint>",
                "claimSecretHash": "0x<64 hex>", "messageHash": "0x<64 hex>",
                "messageLeafIndex": "<uint>", "submittedAtMs": "<uint>"}}

Writes go to a temp file in the same directory (mode 0600) which is then
renamed over the target, so readers see either the old or the new record.
Blocking file I/O runs in the default executor behind an asyncio.Lock.

A corrupt file is never discarded: read() raises BridgeStateError naming the
file and the offending field.
"""

from __future__ import annotations

import asyncio
import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from fpc_services.core.fields import FieldError, field_to_hex, is_field_hex, parse_uint

STATE_VERSION = 1


class BridgeStateError(RuntimeError):
    pass


@dataclass(frozen=True)
class BridgeRecord:
    baseline_balance: int
    amount: int
    claim_secret_hash: int
    message_hash: int
    message_leaf_index: int
    submitted_at_ms: int

    def to_dict(self) -> Dict[str, str]:
        return {
            "baselineBalance": str(self.baseline_balance),
            "amount": str(self.amount),
            "claimSecretHash": field_to_hex(self.claim_secret_hash),
            "messageHash": field_to_hex(self.message_hash),
            "messageLeafIndex": str(self.message_leaf_index),
            "submittedAtMs": str(self.submitted_at_ms),
        }

    @classmethod
    def from_dict(cls, data: Any, path: str) -> "BridgeRecord":
        if not isinstance(data, dict):
            raise BridgeStateError(f"Bridge state file is malformed at {path}: expected bridge object")

        def uint(key: str) -> int:
            value = data.get(key)
            # integers written by older tooling are accepted as-is
            if isinstance(value, int) and not isinstance(value, bool) and value >= 0:
                return value
            try:
                return parse_uint(value, key)
            except FieldError:
                raise BridgeStateError(
                    f"Bridge state file is malformed at {path}: {key} must be an unsigned integer string"
                ) from None

        def field_hex(key: str) -> int:
            value = data.get(key)
            if not is_field_hex(value):
                raise BridgeStateError(
                    f"Bridge state file is malformed at {path}: {key} must be a 32-byte 0x-prefixed hex string"
                )
            return int(value, 16)

        amount = uint("amount")
        if amount <= 0:
            raise BridgeStateError(f"Bridge state file is malformed at {path}: amount must be greater than zero")
        return cls(
            baseline_balance=uint("baselineBalance"),
            amount=amount,
            claim_secret_hash=field_hex("claimSecretHash"),
            message_hash=field_hex("messageHash"),
            message_leaf_index=uint("messageLeafIndex"),
            submitted_at_ms=uint("submittedAtMs"),
        )


class BridgeStateStore:
    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    # ========== Blocking helpers (run in executor) ==========

    def _read_sync(self) -> Optional[BridgeRecord]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise BridgeStateError(f"Failed reading bridge state file at {self.path}: {exc}") from exc

        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise BridgeStateError(f"Bridge state file is not valid JSON at {self.path}: {exc}") from exc

        if not isinstance(parsed, dict):
            raise BridgeStateError(f"Bridge state file is malformed at {self.path}: expected root object")
        if parsed.get("version") != STATE_VERSION:
            raise BridgeStateError(f"Unsupported bridge state version in {self.path}: {parsed.get('version')!r}")
        return BridgeRecord.from_dict(parsed.get("bridge"), str(self.path))

    def _write_sync(self, record: BridgeRecord) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp-{os.getpid()}-{int(time.time() * 1000)}")
        payload = json.dumps({"version": STATE_VERSION, "bridge": record.to_dict()}) + "\n"
        try:
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self.path)
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

    def _clear_sync(self) -> None:
        self.path.unlink(missing_ok=True)

    # ========== Async API ==========

    async def read(self) -> Optional[BridgeRecord]:
        async with self._lock:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._read_sync)

    async def write(self, record: BridgeRecord) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, lambda: self._write_sync(record))

    async def clear(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._clear_sync)
