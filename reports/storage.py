"""
Local artifact storage for generated reports.

Artifacts live in a single directory that the API serves under
/public/reports, so the public locator is `{base_url}/public/reports/{reference}`.
"""
from __future__ import annotations

import os
import re
import time
import structlog
from pathlib import Path

logger = structlog.get_logger()

_SAFE_REFERENCE = re.compile(r"^[\w.\-]+$")


class ArtifactStorage:

    def __init__(self, output_dir: str = "./public/reports", public_base_url: str = "http://localhost:8000"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def path_for(self, reference: str) -> Path:
        if not _SAFE_REFERENCE.match(reference):
            raise ValueError(f"Unsafe artifact reference: {reference!r}")
        return self.output_dir / reference

    def locator(self, reference: str) -> str:
        return f"{self.public_base_url}/public/reports/{reference}"

    async def save(self, reference: str, data: bytes) -> Path:
        path = self.path_for(reference)
        # Exclusive create: a reference is never reused
        with open(path, "xb") as f:
            f.write(data)
        logger.info("artifact_saved", reference=reference, size_bytes=len(data))
        return path

    def exists(self, reference: str) -> bool:
        return self.path_for(reference).exists()

    async def delete(self, reference: str) -> bool:
        path = self.path_for(reference)
        if not path.exists():
            return False
        path.unlink()
        logger.info("artifact_deleted", reference=reference)
        return True

    async def cleanup_older_than(self, max_age_minutes: int) -> int:
        """Remove artifacts older than the given age. Returns how many were removed."""
        cutoff = time.time() - max_age_minutes * 60
        removed = 0
        for path in self.output_dir.iterdir():
            if not path.is_file():
                continue
            try:
                if path.stat().st_mtime < cutoff:
                    os.remove(path)
                    removed += 1
            except OSError as e:
                logger.warning("artifact_cleanup_failed", file=path.name, error=str(e))
        if removed:
            logger.info("artifacts_cleaned_up", removed=removed, max_age_minutes=max_age_minutes)
        return removed
