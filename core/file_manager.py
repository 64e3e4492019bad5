"""
Local file bookkeeping for CEP jobs.

Every job owns at most three kinds of local files, all keyed by job id:
- outputs/<job_id>.txt       submission file sent to the portal
- downloads/<job_id>.zip     archive downloaded from the portal
- screenshots/<job_id>_*     diagnostics captured on terminal failures
"""

import logging
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class FileManager:
    """Creates the working directories and hands out deterministic paths."""

    def __init__(self, base_dir: PathLike):
        self.base_dir = Path(base_dir)
        self.outputs_dir = self.base_dir / "outputs"
        self.downloads_dir = self.base_dir / "downloads"
        self.screenshots_dir = self.base_dir / "screenshots"

    def initialize_directories(self) -> None:
        for dir_path in (self.outputs_dir, self.downloads_dir, self.screenshots_dir):
            try:
                dir_path.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                logger.error(f"Could not create directory {dir_path}: {e}")

    def output_path(self, job_id: str) -> Path:
        return self.outputs_dir / f"{job_id}.txt"

    def download_path(self, job_id: str) -> Path:
        return self.downloads_dir / f"{job_id}.zip"

    def screenshot_path(self, job_id: str, label: str) -> Path:
        return self.screenshots_dir / f"{job_id}_{label}.png"

    def html_dump_path(self, job_id: str, label: str) -> Path:
        return self.screenshots_dir / f"{job_id}_{label}.html"

    @staticmethod
    def exists(path: PathLike) -> bool:
        return Path(path).exists()

    @staticmethod
    def delete_if_exists(path: PathLike) -> bool:
        """Delete ``path``. Returns False when there was nothing to delete."""
        target = Path(path)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        return True
