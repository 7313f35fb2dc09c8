import json
import os
import pytest

from core.utils import (
    is_valid_account_id,
    normalize_account_id,
    safe_json_read,
    safe_json_write,
)


class TestAccountIdFormat:

    @pytest.mark.parametrize("raw", ["1", "1234567890", "123-456-789", " 42 ", "9" * 15])
    def test_valid(self, raw):
        assert is_valid_account_id(raw)

    @pytest.mark.parametrize("raw", ["", None, "abc", "---", "9" * 16])
    def test_invalid(self, raw):
        assert not is_valid_account_id(raw)

    def test_normalize_strips_non_digits(self):
        assert normalize_account_id("123-456 789") == "123456789"


class TestSafeJson:

    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "nested" / "data.json")
        assert safe_json_write(path, {"a": 1}) is True
        assert safe_json_read(path) == {"a": 1}
        assert not os.path.exists(path + ".tmp")

    def test_missing_file_returns_none(self, tmp_path):
        assert safe_json_read(str(tmp_path / "nope.json")) is None

    def test_backups_rotate(self, tmp_path):
        path = str(tmp_path / "data.json")
        for version in range(1, 5):
            safe_json_write(path, {"v": version}, max_backups=3)

        assert safe_json_read(path) == {"v": 4}
        with open(path + ".backup.1", encoding="utf-8") as fh:
            assert json.load(fh) == {"v": 3}
        with open(path + ".backup.3", encoding="utf-8") as fh:
            assert json.load(fh) == {"v": 1}

    def test_corrupt_primary_falls_back_to_backup(self, tmp_path):
        path = str(tmp_path / "data.json")
        safe_json_write(path, {"v": 1})
        safe_json_write(path, {"v": 2})
        with open(path, "w", encoding="utf-8") as fh:
            fh.write("{broken")

        assert safe_json_read(path) == {"v": 1}

    def test_unwritable_location_reports_failure(self, tmp_path):
        blocker = tmp_path / "file.txt"
        blocker.write_text("not a directory", encoding="utf-8")
        assert safe_json_write(str(blocker / "data.json"), {"a": 1}) is False
