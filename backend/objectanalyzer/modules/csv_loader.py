"""CSV ingestion for reported objects and trusted lists.

Import CSVs feed the staging queue (required columns ``object`` and
``object_type``; optional notes, source, time_provided and the geo fields).
Trusted CSVs feed ``trusted_objects`` (required ``object`` and
``object_type``; optional notes and source).

The directory loaders process every ``*.csv`` in a drop directory, commit
per file and move each loaded file into the archive directory as
``<name>_import_<YYYYmmdd_HHMMSS>`` or ``<name>_trusted_<YYYYmmdd_HHMMSS>``.
A file that fails to parse is rolled back and left where it is.
"""
from __future__ import annotations

import io
import logging
import shutil
from pathlib import Path
from typing import Any, Callable, Iterable

import polars as pl
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from objectanalyzer.database import UnitOfWork
from objectanalyzer.exceptions import CSVFormatError, PipelineStageError
from objectanalyzer.models.base import ObjectTypeEnum
from objectanalyzer.modules.staging import stage_objects
from objectanalyzer.modules.trust_matcher import load_trusted_objects
from objectanalyzer.utils.clock import utcnow

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("object", "object_type")
IMPORT_OPTIONAL_COLUMNS = ("notes", "source", "time_provided", "geo_region", "geo_country", "geo_org")
TRUSTED_OPTIONAL_COLUMNS = ("notes", "source")


def read_object_csv(
    source: Any,
    required: Iterable[str] = REQUIRED_COLUMNS,
    optional: Iterable[str] = IMPORT_OPTIONAL_COLUMNS,
) -> list[dict[str, str]]:
    """Parse a CSV into row dicts of strings.

    ``source`` may be a ``Path``, raw bytes, CSV text or a binary file object.
    Header names are lower-cased and stripped; cell values lose leading
    whitespace; empty cells and absent optional columns become ``""``.
    Raises CSVFormatError when a required column is missing or the file
    cannot be parsed.
    """
    raw: Any
    if hasattr(source, "read"):
        raw = source.read()
    elif isinstance(source, Path):
        raw = source.read_bytes()
    else:
        raw = source

    if isinstance(raw, bytes) and raw[:3] == b"\xef\xbb\xbf":
        raw = raw[3:]
    buffer = io.BytesIO(raw) if isinstance(raw, bytes) else io.StringIO(raw)

    try:
        # infer_schema_length=0 keeps every column as a string
        df = pl.read_csv(buffer, infer_schema_length=0)
    except (pl.exceptions.NoDataError, pl.exceptions.ComputeError) as exc:
        raise CSVFormatError(f"unreadable CSV: {exc}") from exc

    df = df.rename({col: col.lower().strip() for col in df.columns})

    required = tuple(required)
    missing = [col for col in required if col not in df.columns]
    if missing:
        raise CSVFormatError(f"CSV missing required columns: {', '.join(missing)}")

    columns = list(required) + [col for col in optional if col not in required]
    df = df.with_columns(
        [
            pl.col(col).fill_null("").str.strip_chars_start()
            if col in df.columns
            else pl.lit("").alias(col)
            for col in columns
        ]
    ).select(columns)
    return list(df.iter_rows(named=True))


def import_csv_to_staging(db: Session, source: Any, strict_types: bool = False) -> dict:
    """Stage every row of an import CSV.

    Rows with an empty ``object`` or ``object_type`` are skipped with a
    warning. With ``strict_types`` an unrecognized ``object_type`` raises
    CSVFormatError naming the row (1-based, header excluded) and nothing is
    staged; otherwise the merge engine rejects such rows later.

    Flushes only; the caller commits.
    """
    rows = read_object_csv(source, REQUIRED_COLUMNS, IMPORT_OPTIONAL_COLUMNS)
    records = []
    skipped = 0
    for n, row in enumerate(rows, start=1):
        if not row["object"] or not row["object_type"]:
            logger.warning("Skipping CSV row %d: empty object or object_type", n)
            skipped += 1
            continue
        if strict_types and ObjectTypeEnum.parse(row["object_type"]) is None:
            raise CSVFormatError(f"Invalid object_type {row['object_type']!r} in row {n}")
        records.append(row)

    staged = stage_objects(db, records)
    return {"staged": staged, "skipped": skipped}


def _archive(path: Path, archive_dir: Path, label: str) -> Path:
    archive_dir.mkdir(parents=True, exist_ok=True)
    target = archive_dir / f"{path.name}_{label}_{utcnow().strftime('%Y%m%d_%H%M%S')}"
    shutil.move(str(path), str(target))
    logger.info("Archived %s -> %s", path, target)
    return target


def _load_directory(
    uow: UnitOfWork,
    directory: str | Path,
    archive_dir: str | Path,
    label: str,
    stage: str,
    load: Callable[[Session, Path], dict],
) -> dict:
    directory = Path(directory)
    archive_dir = Path(archive_dir)
    if not directory.is_dir():
        logger.info("CSV directory %s does not exist, nothing to load", directory)
        return {"files": 0, "rows": 0, "failed": []}

    files = 0
    rows = 0
    failed: list[str] = []
    for path in sorted(directory.glob("*.csv")):
        try:
            summary = load(uow.session, path)
            uow.commit()
        except CSVFormatError as exc:
            uow.rollback()
            logger.error("Skipping %s: %s", path.name, exc)
            failed.append(path.name)
            continue
        except SQLAlchemyError as exc:
            uow.rollback()
            logger.exception("Loading %s failed", path.name)
            raise PipelineStageError(stage, exc, {"files": files, "rows": rows, "failed": failed}) from exc
        _archive(path, archive_dir, label)
        files += 1
        rows += summary.get("staged", summary.get("loaded", 0))

    logger.info("Loaded %d %s CSV files (%d rows, %d failed)", files, label, rows, len(failed))
    return {"files": files, "rows": rows, "failed": failed}


def load_import_directory(uow: UnitOfWork, directory: str | Path, archive_dir: str | Path) -> dict:
    """Stage every import CSV in ``directory`` and archive it."""
    return _load_directory(
        uow, directory, archive_dir, "import", "staging",
        lambda db, path: import_csv_to_staging(db, path),
    )


def load_trusted_directory(uow: UnitOfWork, directory: str | Path, archive_dir: str | Path) -> dict:
    """Load every trusted CSV in ``directory`` and archive it."""
    return _load_directory(
        uow, directory, archive_dir, "trusted", "trusted_load",
        lambda db, path: load_trusted_objects(
            db, read_object_csv(path, REQUIRED_COLUMNS, TRUSTED_OPTIONAL_COLUMNS)
        ),
    )
