"""
JSON reports for portfolio growth runs: latest.json (full summary), progression.json
(history curve) and runs.json (rolling archive of run summaries).
"""

from __future__ import annotations
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from autotrader.core.types import SimulationResult

logger = logging.getLogger("autotrader.analytics.reports")

MAX_ARCHIVED_RUNS = 120


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _write_json(path: Path, payload: Any) -> None:
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def _read_archive(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning("Failed to read growth archive %s, resetting: %s", path, e)
        return []
    return parsed if isinstance(parsed, list) else []


def write_growth_reports(
    result: SimulationResult,
    directory: Path,
    run_at: Optional[datetime] = None,
) -> Dict[str, str]:
    """Write the three report files under directory and return their paths by name."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    run_at_iso = (run_at or datetime.now(timezone.utc)).isoformat()

    summary = _jsonable(asdict(result))
    summary.pop("reports", None)
    summary["run_at"] = run_at_iso
    summary["target_reached"] = result.target_reached_at is not None

    summary_path = directory / "latest.json"
    progression_path = directory / "progression.json"
    archive_path = directory / "runs.json"

    _write_json(summary_path, summary)
    _write_json(progression_path, {"run_at": run_at_iso, "history": summary["history"]})

    archive = _read_archive(archive_path)
    archive.append({
        "run_at": run_at_iso,
        "final_value": result.final_value,
        "invested_capital": result.invested_capital,
        "total_return_pct": result.metrics.total_return_pct,
        "cagr": result.metrics.cagr,
        "max_drawdown_pct": result.metrics.max_drawdown_pct,
        "target_reached": result.target_reached_at is not None,
    })
    _write_json(archive_path, archive[-MAX_ARCHIVED_RUNS:])

    logger.info("Growth reports written to %s", directory)
    return {
        "summary_path": str(summary_path),
        "progression_path": str(progression_path),
        "archive_path": str(archive_path),
    }
