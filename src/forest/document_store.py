"""
JSON document store for HTA trees.

One canonical document per (project_id, path_name) under DATA_DIR. Writes
go to a temp file that is fsynced and renamed over the target, so a crash
leaves either the old or the new document, never a torn one.
"""

import asyncio
import json
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

from .config_loader import config
from .logger import logger

HTA_FILENAME = "hta.json"
_SAFE_SEGMENT = re.compile(r"[^A-Za-z0-9._-]+")


def safe_segment(value: str) -> str:
    """Make a project id or path name usable as a single directory name."""
    cleaned = _SAFE_SEGMENT.sub("_", value.strip()).strip(".")
    if not cleaned:
        raise ValueError(f"Invalid storage key: {value!r}")
    return cleaned


class DocumentStore:
    def __init__(self, data_dir: Path | str | None = None):
        self.data_dir = Path(
            data_dir or os.path.expandvars(config.get("data.dir", "${FOREST_CONFIG_ROOT}/data"))
        )

    def tree_path(self, project_id: str, path_name: str) -> Path:
        return self.data_dir / safe_segment(project_id) / safe_segment(path_name) / HTA_FILENAME

    def _write_sync(self, target: Path, document: dict[str, Any]):
        target.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(document, indent=2, ensure_ascii=False)
        fd, tmp_name = tempfile.mkstemp(dir=target.parent, prefix=".hta-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _read_sync(self, target: Path) -> dict[str, Any] | None:
        if not target.exists():
            return None
        with open(target, encoding="utf-8") as f:
            return json.load(f)

    async def save(self, project_id: str, path_name: str, document: dict[str, Any]) -> Path:
        target = self.tree_path(project_id, path_name)
        await asyncio.to_thread(self._write_sync, target, document)
        logger.debug(f"[HTA-DATA] Wrote {target}")
        return target

    async def load(self, project_id: str, path_name: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._read_sync, self.tree_path(project_id, path_name))

    async def delete(self, project_id: str, path_name: str) -> bool:
        target = self.tree_path(project_id, path_name)
        if not target.exists():
            return False
        await asyncio.to_thread(shutil.rmtree, target.parent)
        return True

    async def list_paths(self, project_id: str) -> list[str]:
        project_dir = self.data_dir / safe_segment(project_id)
        if not project_dir.exists():
            return []
        return sorted(p.name for p in project_dir.iterdir() if (p / HTA_FILENAME).exists())
