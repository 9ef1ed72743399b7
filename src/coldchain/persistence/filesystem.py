"""File-based persistence for audit trail exports and compliance reports."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from ..config import settings
from ..timeutils import utcnow


class FileStorage:
    """Writes export artefacts under ``<data_root>/exports``."""

    def __init__(self, root: Path | None = None) -> None:
        self.root = (root or settings.data_root).resolve()
        self.export_root = self.root / "exports"
        self.export_root.mkdir(parents=True, exist_ok=True)

    def export_path(self, stem: str, suffix: str) -> Path:
        timestamp = utcnow().strftime("%Y%m%dT%H%M%S%fZ")
        return self.export_root / f"{stem}_{timestamp}.{suffix}"

    def write_json(self, path: Path, data: Any, *, indent: int = 2) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=indent, default=str)
        return path

    def write_csv(self, path: Path, content: str) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
        return path
