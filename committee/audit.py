"""Best-effort persistence of evidence packs and raw evaluator outputs."""
from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from committee.schemas import AuditTrail, EvaluatorOutput, EvidencePack

logger = logging.getLogger(__name__)


def hash_evidence(item: dict) -> str:
    """SHA-256 of a JSON-able payload (deterministic via sort_keys)."""
    return hashlib.sha256(json.dumps(item, sort_keys=True).encode()).hexdigest()


class ArtifactStore(ABC):
    @abstractmethod
    def put_artifact(self, key: str, data: bytes) -> str:
        """Persist ``data`` under ``key`` and return its URI."""


class FileArtifactStore(ArtifactStore):
    def __init__(self, root: Path):
        self.root = Path(root)

    def put_artifact(self, key: str, data: bytes) -> str:
        target = (self.root / key).resolve()
        if not target.is_relative_to(self.root.resolve()):
            raise ValueError(f"Artifact key escapes the store root: {key}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return target.as_uri()


class AuditSink:
    """Schedules artifact writes after the decision is final; never raises to the caller."""

    def __init__(self, store: ArtifactStore | None = None):
        self.store = store
        self._pending: set[asyncio.Task] = set()

    def schedule(
        self,
        task_id: str,
        pack: EvidencePack,
        outputs: list[EvaluatorOutput],
        trail: AuditTrail,
    ) -> asyncio.Task | None:
        if self.store is None:
            return None
        pack_bytes = json.dumps(pack.model_dump(mode="json"), indent=2).encode()
        outputs_bytes = json.dumps([o.model_dump(mode="json") for o in outputs], indent=2).encode()

        task = asyncio.get_running_loop().create_task(
            self._persist(task_id, pack_bytes, outputs_bytes, trail)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist(self, task_id: str, pack_bytes: bytes, outputs_bytes: bytes, trail: AuditTrail) -> None:
        trail.evidence_pack_uri = await self._put(f"{task_id}/evidence-pack.json", pack_bytes)
        trail.raw_outputs_uri = await self._put(f"{task_id}/raw-outputs.json", outputs_bytes)

    async def _put(self, key: str, data: bytes) -> str | None:
        try:
            return await asyncio.to_thread(self.store.put_artifact, key, data)
        except Exception:
            logger.exception("Failed to store audit artifact %s", key)
            return None

    async def drain(self) -> None:
        """Wait for every scheduled write (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
