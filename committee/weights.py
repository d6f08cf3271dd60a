"""Trust weights: immutable snapshots read by the aggregator, written by calibration."""
from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from committee.schemas import WeightsFile

logger = logging.getLogger(__name__)

WEIGHTS_FILE_VERSION = "1.0.0"

# Starting point before any calibration run; relative trust, normalised on load.
DEFAULT_WEIGHTS: dict[str, float] = {
    "azure-gpt-5.1": 1.1,
    "azure-gpt-5.2": 1.15,
    "azure-gpt-4.1": 1.0,
    "azure-claude-opus-4.5": 1.2,
    "azure-claude-sonnet-4.5": 1.1,
    "azure-deepseek-v3.2": 1.0,
    "gemini-2.5-pro": 1.05,
    "xai-grok-4-reasoning": 1.0,
}


def normalize_weights(weights: Mapping[str, float]) -> dict[str, float]:
    """Non-negative shares summing to 1; uniform when every weight is zero."""
    if not weights:
        return {}
    ids = list(weights)
    values = np.clip(np.array([float(weights[i]) for i in ids], dtype=float), 0.0, None)
    total = values.sum()
    if not np.isfinite(total) or total <= 0:
        values = np.ones(len(ids))
        total = float(len(ids))
    return {i: float(v) for i, v in zip(ids, values / total)}


def squash_accuracy(accuracy: float, steepness: float) -> float:
    """Logistic curve centred at 0.5 accuracy: 0.5 maps to 0.5, tends to 0 and 1 at the ends."""
    return float(1.0 / (1.0 + np.exp(-steepness * (accuracy - 0.5))))


class TrustWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    shares: dict[str, float] = Field(default_factory=dict)

    @field_validator("shares")
    @classmethod
    def _normalised(cls, value: dict[str, float]) -> dict[str, float]:
        return normalize_weights(value)

    @classmethod
    def uniform(cls, evaluator_ids: Iterable[str]) -> TrustWeights:
        return cls(shares={i: 1.0 for i in evaluator_ids})

    def weight_for(self, evaluator_id: str) -> float:
        """Vote multiplier: the share scaled so that uniform trust reads as 1.0."""
        if evaluator_id not in self.shares:
            return 1.0
        return self.shares[evaluator_id] * len(self.shares)

    def reconcile(self, evaluator_ids: Iterable[str]) -> TrustWeights:
        """Renormalise over a new set of known evaluators.

        Newcomers receive the mean share of the evaluators already known.
        """
        ids = list(dict.fromkeys(evaluator_ids))
        kept = {i: self.shares[i] for i in ids if i in self.shares}
        fill = (sum(kept.values()) / len(kept)) if kept else 1.0
        if fill <= 0:
            fill = 1.0
        return TrustWeights(shares={i: kept.get(i, fill) for i in ids})


class WeightStore:
    """JSON weights file. Readers get whole snapshots; writers replace the file atomically."""

    def __init__(self, path: Path, defaults: Mapping[str, float] | None = None):
        self.path = Path(path)
        self._defaults = dict(DEFAULT_WEIGHTS if defaults is None else defaults)
        self._cached: TrustWeights | None = None
        self._cached_mtime: float | None = None

    def current(self) -> TrustWeights:
        """Snapshot valid now; re-read only when the file changed on disk."""
        try:
            mtime = self.path.stat().st_mtime
        except FileNotFoundError:
            mtime = None

        if self._cached is not None and mtime == self._cached_mtime:
            return self._cached

        self._cached = self._read() if mtime is not None else TrustWeights(shares=self._defaults)
        self._cached_mtime = mtime
        return self._cached

    def read_file(self) -> WeightsFile | None:
        if not self.path.exists():
            return None
        try:
            data = WeightsFile.model_validate_json(self.path.read_text(encoding="utf-8"))
        except Exception:
            logger.exception("Failed to load weights from %s", self.path)
            return None
        if data.version != WEIGHTS_FILE_VERSION:
            logger.warning(
                "Weight file version mismatch. Expected %s, got %s", WEIGHTS_FILE_VERSION, data.version
            )
        return data

    def _read(self) -> TrustWeights:
        data = self.read_file()
        if data is None or not data.weights:
            return TrustWeights(shares=self._defaults)
        logger.info("Loaded weights from %s", self.path)
        return TrustWeights(shares=data.weights)

    def save(self, data: WeightsFile) -> None:
        """Write via a temp file and ``os.replace`` so readers never see a partial file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(data.model_dump(mode="json"), indent=2)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".weights-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        self._cached = None
        self._cached_mtime = None
        logger.info("Weights saved to %s", self.path)
