"""
Persist generated artifacts with a JSON metadata sidecar.

Files are named ``<prefix>_<YYYYmmdd_HHMMSS>_<8 hex>.<ext>`` inside the
artifacts directory, next to ``<name>.meta.json``.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import json
import logging
import re
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .capabilities.base import BinaryArtifact
from .core.contracts import ArtifactReference

logger = logging.getLogger(__name__)

_SAFE = re.compile(r"[^A-Za-z0-9_-]+")


class ArtifactWriter:
    def __init__(
        self,
        directory: str | Path,
        *,
        clock: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._directory = Path(directory)
        self._clock = clock or (lambda: dt.datetime.now(tz=dt.UTC))

    @property
    def directory(self) -> Path:
        return self._directory

    async def write(
        self,
        prefix: str,
        artifact: BinaryArtifact,
        *,
        intent: str,
        prompt: str,
    ) -> ArtifactReference:
        now = self._clock()
        extension = _SAFE.sub("", artifact.file_extension.lstrip(".")) or "bin"
        base = f"{_SAFE.sub('_', prefix) or 'artifact'}_{now:%Y%m%d_%H%M%S}_{uuid.uuid4().hex[:8]}"
        path = self._directory / f"{base}.{extension}"
        meta_path = self._directory / f"{base}.meta.json"
        metadata: dict[str, Any] = {
            "intent": intent,
            "media_type": artifact.media_type,
            "description": artifact.summary,
            "artifact": path.name,
            "created_at": now.isoformat(),
            "prompt": prompt,
            "metadata": artifact.metadata,
        }
        await asyncio.to_thread(self._write_files, path, artifact.data, meta_path, metadata)
        logger.info("Persisted %s artifact at %s (%d bytes)", intent, path, len(artifact.data))
        return ArtifactReference(
            path=str(path.resolve()),
            media_type=artifact.media_type,
            size_bytes=len(artifact.data),
            metadata_path=str(meta_path.resolve()),
            metadata=artifact.metadata,
        )

    def _write_files(
        self, path: Path, data: bytes, meta_path: Path, metadata: dict[str, Any]
    ) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        meta_path.write_text(
            json.dumps(metadata, ensure_ascii=False, indent=2, default=str), encoding="utf-8"
        )


__all__ = ["ArtifactWriter"]
