"""Persist accepted stills and their capture records."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import cv2
import numpy as np
from pydantic import BaseModel, ValidationError

from finger_capture.core.models import SharpnessVerdict

LOGGER = logging.getLogger(__name__)


class CaptureRecord(BaseModel):
    timestamp: datetime
    path: str
    accepted: bool
    reason: str
    combined_score: Optional[float] = None
    metrics: Optional[Dict[str, float]] = None


class StillWriter:
    """Write accepted stills as JPEG and append a record to ``captures.json``."""

    def __init__(self, output_dir: Path, jpeg_quality: int = 95) -> None:
        self.output_dir = output_dir
        self.jpeg_quality = jpeg_quality
        self.records_path = output_dir / "captures.json"
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def save(self, image: np.ndarray, verdict: Optional[SharpnessVerdict] = None) -> Path:
        timestamp = datetime.now(timezone.utc)
        target = self.output_dir / f"capture_{timestamp.strftime('%Y%m%d_%H%M%S_%f')}.jpg"
        params = [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
        if not cv2.imwrite(str(target), image, params):
            raise OSError(f"Unable to write still to {target}")
        self._write_latest(image, params)
        record = CaptureRecord(
            timestamp=timestamp,
            path=str(target),
            accepted=verdict.accepted if verdict else True,
            reason=verdict.reason if verdict else "accepted",
            combined_score=verdict.combined_score if verdict else None,
            metrics=verdict.metrics.to_dict() if verdict and verdict.metrics else None,
        )
        self.append_record(record)
        LOGGER.info("Saved accepted still to %s", target)
        return target

    def append_record(self, record: CaptureRecord) -> None:
        records = self.load_records()
        records.append(record)
        payload = [json.loads(item.model_dump_json()) for item in records]
        self.records_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

    def load_records(self) -> List[CaptureRecord]:
        """Return earlier records; an unreadable log is discarded with a warning."""

        if not self.records_path.exists():
            return []
        try:
            payload = json.loads(self.records_path.read_text(encoding="utf-8"))
            return [CaptureRecord(**item) for item in payload]
        except (json.JSONDecodeError, OSError, TypeError, ValidationError) as exc:
            LOGGER.warning("Discarding unreadable capture log %s: %s", self.records_path, exc)
            return []

    def _write_latest(self, image: np.ndarray, params: List[int]) -> None:
        latest_path = self.output_dir / "latest.jpg"
        temp_path = self.output_dir / "latest.tmp.jpg"
        cv2.imwrite(str(temp_path), image, params)
        temp_path.replace(latest_path)
