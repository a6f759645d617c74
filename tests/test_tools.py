"""Tests for the action executor in stepwise.tools."""

import os
import sys

import pytest

from stepwise.conversation import ErrorKind
from stepwise.errors import PathEscapeError
from stepwise.tools import EMPTY_DIRECTORY, NO_OUTPUT, Executor, safe_resolve


@pytest.fixture
def ex(tmp_path):
    return Executor(tmp_path)


needs_posix_shell = pytest.mark.skipif(
    sys.platform == "win32", reason="uses /bin/sh syntax"
)


# =========================================================================
# Path confinement
# =========================================================================


class TestSafeResolve:
    def test_inside_root(self, tmp_path):
        assert safe_resolve("a/b.txt", tmp_path) == (tmp_path / "a" / "b.txt").resolve()

    def test_root_itself(self, tmp_path):
        assert safe_resolve(".", tmp_path) == tmp_path.resolve()

    def test_dotdot_escape(self, tmp_path):
        with pytest.raises(PathEscapeError):
            safe_resolve("../outside.txt", tmp_path)

    def test_absolute_path_outside(self, tmp_path):
        with pytest.raises(PathEscapeError):
            safe_resolve("/etc/passwd", tmp_path)

    def test_inner_dotdot_that_stays_inside(self, tmp_path):
        assert safe_resolve("a/../b.txt", tmp_path) == (tmp_path / "b.txt").resolve()

    def test_sibling_with_common_prefix(self, tmp_path):
        root = tmp_path / "proj"
        root.mkdir()
        (tmp_path / "proj2").mkdir()
        with pytest.raises(PathEscapeError):
            safe_resolve("../proj2/x", root)

    @pytest.mark.skipif(not hasattr(os, "symlink"), reason="no symlinks")
    def test_symlink_out_of_root(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        outside = tmp_path / "secret.txt"
        outside.write_text("s", encoding="utf-8")
        (root / "link").symlink_to(outside)
        with pytest.raises(PathEscapeError):
            safe_resolve("link", root)


class TestPathEscapeResults:
    @pytest.mark.parametrize(
        "name,args",
        [
            ("read_file", {"path": "../x"}),
            ("write_file", {"path": "../x", "content": "nope"}),
            ("head_file", {"path": "../x"}),
            ("tail_file", {"path": "../x"}),
            ("list_dir", {"path": ".."}),
            ("edit_file", {"path": "../x", "old_string": "a", "new_string": "b"}),
        ],
    )
    def test_escape_is_a_result_not_an_exception(self, ex, tmp_path, name, args):
        result = ex.execute(name, args)
        assert not result.succeeded
        assert result.kind == ErrorKind.PATH_ESCAPE
        assert "Path traversal not allowed" in result.error

    def test_escaping_write_creates_nothing(self, tmp_path):
        root = tmp_path / "root"
        root.mkdir()
        Executor(root).execute("write_file", {"path": "../leak.txt", "content": "x"})
        assert not (tmp_path / "leak.txt").exists()


# =========================================================================
# read / write
# =========================================================================


class TestReadWrite:
    def test_round_trip(self, ex, tmp_path):
        content = "héllo\nwörld\n"
        w = ex.execute("write_file", {"path": "sub/dir/f.txt", "content": content})
        assert w.succeeded
        assert w.output == f"Wrote {len(content.encode('utf-8'))} bytes to sub/dir/f.txt"
        r = ex.execute("read_file", {"path": "sub/dir/f.txt"})
        assert r.output == content

    def test_write_is_idempotent(self, ex, tmp_path):
        args = {"path": "f.txt", "content": "same"}
        first = ex.execute("write_file", args)
        second = ex.execute("write_file", args)
        assert first == second
        assert (tmp_path / "f.txt").read_text(encoding="utf-8") == "same"

    def test_write_overwrites(self, ex, tmp_path):
        (tmp_path / "f.txt").write_text("old", encoding="utf-8")
        ex.execute("write_file", {"path": "f.txt", "content": "new"})
        assert (tmp_path / "f.txt").read_text(encoding="utf-8") == "new"

    def test_read_missing(self, ex):
        result = ex.execute("read_file", {"path": "nope.txt"})
        assert result.kind == ErrorKind.NOT_FOUND
        assert result.error == "File not found: nope.txt"

    def test_read_directory(self, ex, tmp_path):
        (tmp_path / "d").mkdir()
        result = ex.execute("read_file", {"path": "d"})
        assert result.kind == ErrorKind.IO_ERROR

    def test_read_binary(self, ex, tmp_path):
        (tmp_path / "b.bin").write_bytes(b"\x00\x01\x02")
        result = ex.execute("read_file", {"path": "b.bin"})
        assert result.kind == ErrorKind.IO_ERROR
        assert "Binary" in result.error

    def test_missing_required_argument(self, ex):
        result = ex.execute("write_file", {"path": "f.txt"})
        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert "content" in result.error

    def test_extra_arguments_ignored(self, ex, tmp_path):
        (tmp_path / "f.txt").write_text("x", encoding="utf-8")
        result = ex.execute("read_file", {"path": "f.txt", "encoding": "latin-1"})
        assert result.output == "x"

    def test_unknown_action(self, ex):
        result = ex.execute("delete_everything", {})
        assert result.kind == ErrorKind.UNKNOWN_ACTION

    def test_crlf_round_trip(self, ex, tmp_path):
        content = "line1\r\nline2\r\nlone\rcr\n"
        ex.execute("write_file", {"path": "w.txt", "content": content})
        assert (tmp_path / "w.txt").read_bytes() == content.encode("utf-8")
        assert ex.execute("read_file", {"path": "w.txt"}).output == content

    @pytest.mark.parametrize("name", ["read_file", "head_file", "list_dir"])
    def test_nul_in_path_is_a_result(self, ex, name):
        result = ex.execute(name, {"path": "a\x00b"})
        assert not result.succeeded
        assert result.kind in (ErrorKind.INVALID_ARGUMENTS, ErrorKind.NOT_FOUND)

    def test_nul_in_path_write(self, ex, tmp_path):
        result = ex.execute("write_file", {"path": "a\x00b", "content": "x"})
        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert list(tmp_path.iterdir()) == []


# =========================================================================
# head / tail
# =========================================================================


class TestHeadTail:
    @pytest.fixture
    def numbered(self, tmp_path):
        (tmp_path / "n.txt").write_text(
            "\n".join(f"line {i}" for i in range(1, 251)) + "\n", encoding="utf-8"
        )
        return "n.txt"

    def test_head_n(self, ex, numbered):
        result = ex.execute("head_file", {"path": numbered, "lines": 3})
        assert result.output == "line 1\nline 2\nline 3"

    def test_tail_n(self, ex, numbered):
        result = ex.execute("tail_file", {"path": numbered, "lines": 2})
        assert result.output == "line 249\nline 250"

    def test_default_is_100(self, ex, numbered):
        head = ex.execute("head_file", {"path": numbered}).output.split("\n")
        tail = ex.execute("tail_file", {"path": numbered}).output.split("\n")
        assert len(head) == 100
        assert head[-1] == "line 100"
        assert len(tail) == 100
        assert tail[0] == "line 151"

    def test_n_larger_than_file(self, ex, tmp_path):
        (tmp_path / "s.txt").write_text("a\nb\n", encoding="utf-8")
        assert ex.execute("head_file", {"path": "s.txt", "lines": 50}).output == "a\nb"
        assert ex.execute("tail_file", {"path": "s.txt", "lines": 50}).output == "a\nb"

    @pytest.mark.parametrize("bad", [0, -5, "lots", None])
    def test_bad_count_falls_back_to_default(self, ex, numbered, bad):
        result = ex.execute("head_file", {"path": numbered, "lines": bad})
        assert len(result.output.split("\n")) == 100

    def test_string_count_accepted(self, ex, numbered):
        result = ex.execute("head_file", {"path": numbered, "lines": "2"})
        assert result.output == "line 1\nline 2"

    def test_empty_file(self, ex, tmp_path):
        (tmp_path / "e.txt").write_text("", encoding="utf-8")
        assert ex.execute("head_file", {"path": "e.txt"}).output == ""

    def test_head_missing_file(self, ex):
        assert ex.execute("tail_file", {"path": "nope"}).kind == ErrorKind.NOT_FOUND

    def test_only_newline_ends_a_line(self, ex, tmp_path):
        (tmp_path / "ff.txt").write_text("a\x0cb c\nd\x85e\nf\n", encoding="utf-8")
        assert ex.execute("head_file", {"path": "ff.txt", "lines": 1}).output == "a\x0cb c"
        assert ex.execute("tail_file", {"path": "ff.txt", "lines": 2}).output == "d\x85e\nf"


# =========================================================================
# edit_file
# =========================================================================


class TestEditFile:
    def test_foobaz(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("foobaz", encoding="utf-8")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "foo", "new_string": "bar"}
        )
        assert result.succeeded
        assert f.read_text(encoding="utf-8") == "barbaz"

    def test_replaces_first_occurrence_only(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("foo bar foo", encoding="utf-8")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "foo", "new_string": "baz"}
        )
        assert result.output == "Edited a.txt"
        assert f.read_text(encoding="utf-8") == "baz bar foo"

    def test_no_match_leaves_file_alone(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("hello world", encoding="utf-8")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "bye", "new_string": "x"}
        )
        assert result.kind == ErrorKind.NO_MATCH
        assert result.error.startswith("String not found in file")
        assert f.read_text(encoding="utf-8") == "hello world"

    def test_empty_old_string_rejected(self, ex, tmp_path):
        (tmp_path / "a.txt").write_text("abc", encoding="utf-8")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "", "new_string": "x"}
        )
        assert result.kind == ErrorKind.INVALID_ARGUMENTS
        assert (tmp_path / "a.txt").read_text(encoding="utf-8") == "abc"

    def test_missing_file(self, ex):
        result = ex.execute(
            "edit_file", {"path": "ghost.txt", "old_string": "a", "new_string": "b"}
        )
        assert result.kind == ErrorKind.NOT_FOUND

    def test_delete_by_empty_new_string(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_text("keep DROP keep", encoding="utf-8")
        ex.execute("edit_file", {"path": "a.txt", "old_string": " DROP", "new_string": ""})
        assert f.read_text(encoding="utf-8") == "keep keep"

    def test_crlf_preserved(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_bytes(b"foo\r\nbaz\r\n")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "foo", "new_string": "bar"}
        )
        assert result.succeeded
        assert f.read_bytes() == b"bar\r\nbaz\r\n"

    def test_old_string_spanning_crlf(self, ex, tmp_path):
        f = tmp_path / "a.txt"
        f.write_bytes(b"one\r\ntwo\r\n")
        result = ex.execute(
            "edit_file", {"path": "a.txt", "old_string": "one\r\ntwo", "new_string": "2"}
        )
        assert result.succeeded
        assert f.read_bytes() == b"2\r\n"


# =========================================================================
# list_dir
# =========================================================================


class TestListDir:
    def test_sorted_with_dir_suffix(self, ex, tmp_path):
        (tmp_path / "b.txt").write_text("", encoding="utf-8")
        (tmp_path / "a").mkdir()
        (tmp_path / "c.txt").write_text("", encoding="utf-8")
        assert ex.execute("list_dir", {"path": "."}).output == "a/\nb.txt\nc.txt"

    def test_recursive(self, ex, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.py").write_text("", encoding="utf-8")
        (tmp_path / "README").write_text("", encoding="utf-8")
        result = ex.execute("list_dir", {"path": ".", "recursive": True})
        assert result.output == "README\nsrc/\nsrc/main.py"

    def test_non_recursive_does_not_descend(self, ex, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "main.py").write_text("", encoding="utf-8")
        assert ex.execute("list_dir", {"path": "."}).output == "src/"

    def test_empty_directory(self, ex, tmp_path):
        (tmp_path / "empty").mkdir()
        assert ex.execute("list_dir", {"path": "empty"}).output == EMPTY_DIRECTORY

    def test_missing_directory(self, ex):
        result = ex.execute("list_dir", {"path": "nowhere"})
        assert result.kind == ErrorKind.NOT_FOUND
        assert result.error == "Directory not found: nowhere"

    def test_file_is_not_a_directory(self, ex, tmp_path):
        (tmp_path / "f.txt").write_text("", encoding="utf-8")
        assert ex.execute("list_dir", {"path": "f.txt"}).kind == ErrorKind.IO_ERROR


# =========================================================================
# run_command
# =========================================================================


@needs_posix_shell
class TestRunCommand:
    def test_stdout(self, ex):
        assert ex.execute("run_command", {"command": "echo hi"}).output == "hi\n"

    def test_runs_in_root(self, ex, tmp_path):
        (tmp_path / "marker.txt").write_text("", encoding="utf-8")
        assert "marker.txt" in ex.execute("run_command", {"command": "ls"}).output

    def test_no_output(self, ex):
        assert ex.execute("run_command", {"command": "true"}).output == NO_OUTPUT

    def test_nonzero_exit_is_failure(self, ex):
        result = ex.execute("run_command", {"command": "exit 1"})
        assert not result.succeeded
        assert result.kind == ErrorKind.COMMAND_FAILURE
        assert result.error == "Command failed with exit code 1"

    def test_failure_carries_both_streams(self, ex):
        result = ex.execute(
            "run_command", {"command": "echo out; echo err >&2; exit 3"}
        )
        assert result.kind == ErrorKind.COMMAND_FAILURE
        assert "exit code 3" in result.error
        assert "out" in result.error
        assert "err" in result.error

    def test_timeout(self, tmp_path):
        ex = Executor(tmp_path, command_timeout=1)
        result = ex.execute("run_command", {"command": "sleep 30"})
        assert result.kind == ErrorKind.TIMEOUT
        assert result.error.startswith("Command timed out after 1s")

    def test_timeout_keeps_partial_output(self, tmp_path):
        ex = Executor(tmp_path, command_timeout=1)
        result = ex.execute("run_command", {"command": "echo early; sleep 30"})
        assert result.kind == ErrorKind.TIMEOUT
        assert "early" in result.error

    def test_missing_command_argument(self, ex):
        result = ex.execute("run_command", {})
        assert result.kind == ErrorKind.INVALID_ARGUMENTS
