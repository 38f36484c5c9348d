import os
import re
from datetime import datetime, timezone

EXTENSIONS = {
    "table": "txt",
    "json": "json",
    "csv": "csv",
    "html": "html",
    "junit": "xml",
}


def _slugify(name: str) -> str:
    """Convert a report label to a filesystem-safe stem."""
    slug = re.sub(r"[^\w\s-]", "", name.strip())
    slug = re.sub(r"[\s]+", "_", slug)
    return slug[:64] or "report"


def save_report(report_dir, stem, fmt, content):
    """Write *content* to ``<report_dir>/<stem>-<timestamp>.<ext>``.

    Reports are write-only artifacts for CI; nothing reads them back.
    """
    os.makedirs(report_dir, exist_ok=True)
    ext = EXTENSIONS.get(fmt, fmt)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    file = os.path.join(report_dir, f"{_slugify(stem)}-{ts}.{ext}")

    with open(file, "w", encoding="utf-8") as f:
        f.write(content)

    return file
