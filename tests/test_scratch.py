"""Tests for plaintext scratch files and the editor step."""

import pytest

from finvault.errors import EditorFailure
from finvault.scratch import file_checksum, plaintext_scratch, run_editor, secure_delete

from helpers import write_editor


class TestScratch:
    def test_owner_only_and_removed(self):
        with plaintext_scratch() as path:
            assert path.exists()
            assert path.stat().st_mode & 0o777 == 0o600
            path.write_text("secret = 1\n")
        assert not path.exists()

    def test_removed_on_error(self):
        with pytest.raises(RuntimeError):
            with plaintext_scratch() as path:
                path.write_text("secret = 1\n")
                raise RuntimeError("boom")
        assert not path.exists()

    def test_removed_when_body_deletes_it(self):
        with plaintext_scratch() as path:
            path.unlink()
        assert not path.exists()

    def test_secure_delete(self, tmp_path):
        path = tmp_path / "plain.txt"
        path.write_text("top secret")
        secure_delete(path)
        assert not path.exists()
        secure_delete(path)  # missing file is fine

    def test_checksum_tracks_content(self, tmp_path):
        path = tmp_path / "f.txt"
        path.write_text("a")
        first = file_checksum(path)
        assert file_checksum(path) == first
        path.write_text("b")
        assert file_checksum(path) != first


class TestRunEditor:
    def test_success(self, tmp_path):
        editor = write_editor(tmp_path / "ed.sh", 'echo "edited" >> "$1"')
        target = tmp_path / "doc.toml"
        target.write_text("")
        run_editor(editor, target)
        assert target.read_text() == "edited\n"

    def test_editor_with_arguments(self, tmp_path):
        editor = write_editor(tmp_path / "ed.sh", 'echo "$1" >> "$2"')
        target = tmp_path / "doc.toml"
        target.write_text("")
        run_editor(f"{editor} --wait", target)
        assert target.read_text() == "--wait\n"

    def test_non_zero_exit(self, tmp_path):
        editor = write_editor(tmp_path / "ed.sh", "exit 3")
        with pytest.raises(EditorFailure, match="status 3"):
            run_editor(editor, tmp_path / "doc.toml")

    def test_missing_editor(self, tmp_path):
        with pytest.raises(EditorFailure, match="Could not start"):
            run_editor(str(tmp_path / "no-such-editor"), tmp_path / "doc.toml")

    def test_empty_editor(self, tmp_path):
        with pytest.raises(EditorFailure):
            run_editor("", tmp_path / "doc.toml")
