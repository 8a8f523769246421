"""Tests for CSV parsing and the import/trusted drop-directory loaders."""
import re
from pathlib import Path

import pytest

from objectanalyzer.exceptions import CSVFormatError
from objectanalyzer.models.trusted_object import TrustedObject
from objectanalyzer.modules.csv_loader import (
    TRUSTED_OPTIONAL_COLUMNS,
    import_csv_to_staging,
    load_import_directory,
    load_trusted_directory,
    read_object_csv,
)
from objectanalyzer.modules.staging import count_pending, find_staged

IMPORT_CSV = (
    "Object,Object_Type,Notes,Source\n"
    "1.2.3.4,ipv4,scanner,feed-a\n"
    " evil.example, domain,  c2,feed-b\n"
)


def _write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestReadObjectCsv:
    def test_headers_lowercased_and_values_left_trimmed(self):
        rows = read_object_csv(IMPORT_CSV.encode())
        assert rows[1]["object"] == "evil.example"
        assert rows[1]["object_type"] == "domain"
        assert rows[1]["notes"] == "c2"

    def test_absent_optional_columns_are_empty_strings(self):
        rows = read_object_csv("object,object_type\n1.2.3.4,ipv4\n")
        assert rows == [{
            "object": "1.2.3.4",
            "object_type": "ipv4",
            "notes": "",
            "source": "",
            "time_provided": "",
            "geo_region": "",
            "geo_country": "",
            "geo_org": "",
        }]

    def test_values_stay_strings(self):
        rows = read_object_csv("object,object_type,notes\n12345,hash,007\n")
        assert rows[0]["object"] == "12345"
        assert rows[0]["notes"] == "007"

    def test_utf8_bom_is_stripped(self):
        rows = read_object_csv(b"\xef\xbb\xbfobject,object_type\n1.2.3.4,ipv4\n")
        assert rows[0]["object"] == "1.2.3.4"

    def test_missing_required_column(self):
        with pytest.raises(CSVFormatError, match="object_type"):
            read_object_csv("object,notes\n1.2.3.4,x\n")

    def test_empty_file(self):
        with pytest.raises(CSVFormatError):
            read_object_csv(b"")

    def test_trusted_columns_only(self):
        rows = read_object_csv(
            "object,object_type,notes,source,geo_org\n8.8.8.8,ipv4,dns,netops,Google\n",
            optional=TRUSTED_OPTIONAL_COLUMNS,
        )
        assert set(rows[0]) == {"object", "object_type", "notes", "source"}


class TestImportCsvToStaging:
    def test_stages_every_row(self, db):
        result = import_csv_to_staging(db, IMPORT_CSV.encode())
        db.commit()
        assert result == {"staged": 2, "skipped": 0}
        assert find_staged(db, "evil.example").source == "feed-b"

    def test_blank_rows_are_skipped(self, db):
        result = import_csv_to_staging(db, "object,object_type\n1.2.3.4,ipv4\n,ipv4\n5.6.7.8,\n")
        assert result == {"staged": 1, "skipped": 2}

    def test_lenient_mode_stages_unknown_kinds(self, db):
        result = import_csv_to_staging(db, "object,object_type\nprinter.local,hostname\n")
        assert result["staged"] == 1

    def test_strict_mode_names_the_bad_row(self, db):
        text = "object,object_type\n1.2.3.4,ipv4\nprinter.local,hostname\n"
        with pytest.raises(CSVFormatError, match="row 2"):
            import_csv_to_staging(db, text, strict_types=True)
        db.rollback()
        assert count_pending(db) == 0


class TestDirectoryLoaders:
    def test_import_directory_stages_and_archives(self, tmp_path, make_uow, db):
        import_dir = tmp_path / "importCSV"
        archive_dir = tmp_path / "archiveCSV"
        _write(import_dir / "feed.csv", IMPORT_CSV)
        _write(import_dir / "notes.txt", "ignored")

        with make_uow() as uow:
            result = load_import_directory(uow, import_dir, archive_dir)

        assert result == {"files": 1, "rows": 2, "failed": []}
        assert count_pending(db) == 2
        assert not (import_dir / "feed.csv").exists()
        archived = [p.name for p in archive_dir.iterdir()]
        assert len(archived) == 1
        assert re.fullmatch(r"feed\.csv_import_\d{8}_\d{6}", archived[0])

    def test_unreadable_file_is_left_in_place(self, tmp_path, make_uow, db):
        import_dir = tmp_path / "importCSV"
        _write(import_dir / "a_bad.csv", "object,notes\n1.2.3.4,x\n")
        _write(import_dir / "b_good.csv", "object,object_type\n1.2.3.4,ipv4\n")

        with make_uow() as uow:
            result = load_import_directory(uow, import_dir, tmp_path / "archive")

        assert result == {"files": 1, "rows": 1, "failed": ["a_bad.csv"]}
        assert (import_dir / "a_bad.csv").exists()
        assert count_pending(db) == 1

    def test_missing_directory_is_not_an_error(self, tmp_path, make_uow):
        with make_uow() as uow:
            result = load_import_directory(uow, tmp_path / "nope", tmp_path / "archive")
        assert result == {"files": 0, "rows": 0, "failed": []}

    def test_trusted_directory_loads_and_archives(self, tmp_path, make_uow, db):
        trusted_dir = tmp_path / "trustedCSV"
        archive_dir = tmp_path / "archiveCSV"
        _write(
            trusted_dir / "allow.csv",
            "object,object_type,notes\n8.8.8.8,ipv4,dns\n10.0.0.0/30,ipv4CIDR,lab\n",
        )

        with make_uow() as uow:
            result = load_trusted_directory(uow, trusted_dir, archive_dir)

        assert result == {"files": 1, "rows": 2, "failed": []}
        assert db.query(TrustedObject).count() == 2
        assert re.fullmatch(r"allow\.csv_trusted_\d{8}_\d{6}", next(archive_dir.iterdir()).name)

    def test_trusted_file_with_bad_row_is_aborted(self, tmp_path, make_uow, db):
        trusted_dir = tmp_path / "trustedCSV"
        _write(trusted_dir / "allow.csv", "object,object_type\n8.8.8.8,ipv4\n300.1.1.1,ipv4\n")

        with make_uow() as uow:
            result = load_trusted_directory(uow, trusted_dir, tmp_path / "archive")

        assert result["failed"] == ["allow.csv"]
        assert db.query(TrustedObject).count() == 0
        assert (trusted_dir / "allow.csv").exists()
