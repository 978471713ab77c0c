from __future__ import annotations

import json
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd


def _timestamp_utc() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def prepare_run_dir(
    output_root: str | Path,
    *,
    pipeline_name: str,
    run_id: str,
    overwrite: bool = False,
) -> dict[str, Path]:
    """Create and return canonical directories for one pipeline run."""
    if not str(run_id).strip():
        raise ValueError("run_id must not be empty.")

    data_root = Path(output_root).resolve()
    runs_root = data_root / pipeline_name / "runs"
    run_dir = runs_root / str(run_id)
    tables_dir = run_dir / "tables"

    if run_dir.exists():
        if not overwrite:
            raise FileExistsError(
                f"Run directory already exists: {run_dir}. "
                "Set overwrite=True to replace it."
            )
        shutil.rmtree(run_dir)

    tables_dir.mkdir(parents=True, exist_ok=True)

    return {
        "data_root": data_root,
        "runs_root": runs_root,
        "run_dir": run_dir,
        "tables_dir": tables_dir,
    }


def save_json(payload: dict[str, Any], path: str | Path) -> Path:
    """Save JSON payload to disk with UTF-8 encoding."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    return target


def load_json(path: str | Path) -> dict[str, Any]:
    """Load JSON payload from disk."""
    return json.loads(Path(path).read_text(encoding="utf-8"))


def save_table_csv(df: pd.DataFrame, path: str | Path) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(target, index=False)
    return target


def load_table_csv(path: str | Path) -> pd.DataFrame:
    return pd.read_csv(Path(path))


def save_run_tables(
    tables: dict[str, pd.DataFrame],
    tables_dir: Path,
) -> dict[str, str]:
    """Save every table as `<name>.csv` and return the written paths."""
    return {
        table_name: str(save_table_csv(table, tables_dir / f"{table_name}.csv"))
        for table_name, table in tables.items()
    }


def load_run(
    run_id: str,
    *,
    pipeline_name: str,
    output_root: str | Path,
) -> dict[str, object]:
    """Load a persisted run: manifest, config, and every stored table."""
    run_dir = Path(output_root).resolve() / pipeline_name / "runs" / str(run_id)
    if not run_dir.exists():
        raise FileNotFoundError(f"Run directory not found: {run_dir}")

    manifest_path = run_dir / "manifest.json"
    config_path = run_dir / "config.json"
    if not manifest_path.exists():
        raise FileNotFoundError(f"Missing manifest file: {manifest_path}")
    if not config_path.exists():
        raise FileNotFoundError(f"Missing config file: {config_path}")

    tables = {
        table_path.stem: load_table_csv(table_path)
        for table_path in sorted((run_dir / "tables").glob("*.csv"))
    }
    return {
        "run_id": str(run_id),
        "run_dir": run_dir,
        "manifest": load_json(manifest_path),
        "config": load_json(config_path),
        "tables": tables,
    }


def list_runs(
    *,
    pipeline_name: str,
    output_root: str | Path,
) -> pd.DataFrame:
    """List persisted runs with manifest metadata, newest first."""
    runs_root = Path(output_root).resolve() / pipeline_name / "runs"
    columns = ["run_id", "created_at_utc", "status", "n_participants", "n_rows", "run_dir"]
    if not runs_root.exists():
        return pd.DataFrame(columns=columns)

    rows: list[dict[str, object]] = []
    for run_dir in sorted(runs_root.iterdir()):
        manifest_path = run_dir / "manifest.json"
        if not run_dir.is_dir() or not manifest_path.exists():
            continue
        manifest = load_json(manifest_path)
        rows.append(
            {
                "run_id": str(manifest.get("run_id", run_dir.name)),
                "created_at_utc": manifest.get("created_at_utc", ""),
                "status": manifest.get("status", "unknown"),
                "n_participants": manifest.get("n_participants"),
                "n_rows": manifest.get("n_rows"),
                "run_dir": str(run_dir),
            }
        )

    runs_df = pd.DataFrame(rows, columns=columns)
    if runs_df.empty:
        return runs_df
    return runs_df.sort_values("created_at_utc", ascending=False).reset_index(drop=True)


def build_basic_manifest(
    *,
    run_id: str,
    pipeline_name: str,
    run_dir: Path,
    config_path: Path,
    status: str,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a standard run manifest payload."""
    payload = {
        "run_id": str(run_id),
        "pipeline_name": str(pipeline_name),
        "created_at_utc": _timestamp_utc(),
        "run_dir": str(run_dir),
        "config_path": str(config_path),
        "status": str(status),
    }
    if extra:
        payload.update(extra)
    return payload
