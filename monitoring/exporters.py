"""monitoring/exporters.py

Metrics Export.

Persist crank metrics snapshots to CSV.

Design goals:
- CSV: Simple append (creates header if missing)
- Never crash the keeper on an export failure
- Clean stdout (logs to stderr)
"""

from __future__ import annotations

import csv
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def export_run_metrics(
    metrics: Dict[str, Any],
    path: str,
    timestamp: Optional[str] = None,
) -> bool:
    """Append a metrics snapshot to a CSV file.

    Args:
        metrics: Metrics dictionary to export.
        path: Output file path.
        timestamp: Optional timestamp (defaults to now, UTC).

    Returns:
        True if exported successfully.
    """
    if timestamp is None:
        timestamp = datetime.now(timezone.utc).isoformat()

    row = dict(metrics)
    row["timestamp"] = timestamp

    output_path = Path(path)
    file_exists = output_path.exists()

    try:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, "a", newline="", encoding="utf-8") as f:
            writer = csv.DictWriter(f, fieldnames=list(row.keys()))
            if not file_exists:
                writer.writeheader()
            writer.writerow(row)

        logger.debug(f"[export] CSV appended: {path}")
        return True

    except OSError as e:
        logger.error(f"[export] CSV write error: {e}")
        return False
