#!/usr/bin/env python3
"""
Export Module
Writes named tables as flat files plus a manifest.
"""

import logging
import pathlib
import datetime as dt
from typing import Dict, Iterable

import polars as pl
import pyarrow.parquet as pq

from etl_config import OUTPUT_CONFIG
from etl_errors import WriteError
from etl_extract import write_json

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("csv", "parquet")


def parquet_rows(p: pathlib.Path) -> int:
    """Count rows in parquet file"""
    return pq.ParquetFile(p).metadata.num_rows


def export_tables(
    tables: Dict[str, pl.DataFrame],
    out_dir,
    formats: Iterable[str] = ("csv",),
) -> dict:
    """
    Write each table to <out_dir>/<name>.<fmt> and a manifest.json.
    Any I/O failure raises WriteError; nothing is retried.
    """
    formats = list(formats)
    unknown = [f for f in formats if f not in SUPPORTED_FORMATS]
    if unknown:
        raise ValueError(f"Unsupported export formats: {unknown}")

    out = pathlib.Path(out_dir)
    man = {
        "written_at": dt.datetime.now(dt.timezone.utc).isoformat(),
        "tables": {},
    }
    try:
        out.mkdir(parents=True, exist_ok=True)
        for name, df in tables.items():
            entry = {"rows": df.height, "columns": df.columns, "files": {}}
            for fmt in formats:
                path = out / f"{name}.{fmt}"
                if fmt == "csv":
                    df.write_csv(path.as_posix())
                else:
                    df.write_parquet(path.as_posix())
                    entry["parquet_rows"] = parquet_rows(path)
                entry["files"][fmt] = path.as_posix()
                logger.info(f"Wrote {name} -> {path} ({df.height:,} rows)")
            man["tables"][name] = entry
        write_json(out / OUTPUT_CONFIG["manifest"], man)
    except OSError as e:
        raise WriteError("export", f"cannot write to {out}: {e}") from e
    return man
