"""
Failure diagnostics.

Screenshot and HTML dump of the current page, written when an engine attempt
fails for good. Capturing is best-effort: a failed capture is logged and
never replaces the error being diagnosed.
"""

import logging
import re
from typing import List

from browser.driver import PageDriver
from core.file_manager import FileManager

logger = logging.getLogger(__name__)


def _sanitize_label(label: str) -> str:
    return re.sub(r"[^A-Za-z0-9_-]+", "_", label).strip("_")[:60] or "failure"


async def capture_failure_snapshot(page: PageDriver, files: FileManager, job_id: str, label: str) -> List[str]:
    """Save a full-page screenshot and the page HTML. Returns the paths written."""
    label = _sanitize_label(label)
    written: List[str] = []

    screenshot_path = files.screenshot_path(job_id, label)
    try:
        screenshot_path.parent.mkdir(parents=True, exist_ok=True)
        await page.screenshot(screenshot_path, full_page=True)
        written.append(str(screenshot_path))
    except Exception as e:
        logger.warning(f"[{job_id}] screenshot '{label}' failed: {e}")

    html_path = files.html_dump_path(job_id, label)
    try:
        html = await page.content()
        html_path.parent.mkdir(parents=True, exist_ok=True)
        html_path.write_text(html, encoding="utf-8")
        written.append(str(html_path))
    except Exception as e:
        logger.warning(f"[{job_id}] HTML dump '{label}' failed: {e}")

    if written:
        logger.info(f"[{job_id}] diagnostics saved: {', '.join(written)}")
    return written
