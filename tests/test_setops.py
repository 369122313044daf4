import io
import sys

import pyperclip
import pytest
import yaml

import setops
from db_logger import get_entries, get_sessions
from set_algebra import INTERSECTION, UNION


@pytest.fixture
def out(tmp_path):
    return tmp_path / "out.txt"


@pytest.fixture(autouse=True)
def no_ini(tmp_path, monkeypatch):
    """Keep a developer's own setops.ini out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.chdir(tmp_path)


def run(argv, out):
    code = setops.main(argv + ["-f", str(out)])
    return code, out.read_bytes() if out.exists() else None


class TestParseArgs:
    def test_literals_switch_to_second_set_after_operator(self):
        inv = setops.parse_args(["a", "b", "-u", "c"])
        assert inv["operation"] == UNION
        assert inv["feeds"] == [(1, "literal", "a"), (1, "literal", "b"), (2, "literal", "c")]

    def test_files_and_literals_keep_their_order(self):
        inv = setops.parse_args(["x", "-1", "f1", "y", "-i", "-2", "f2", "-P", "1"])
        assert inv["operation"] == INTERSECTION
        assert inv["feeds"] == [
            (1, "literal", "x"),
            (1, "file", "f1"),
            (1, "literal", "y"),
            (2, "file", "f2"),
            (1, "clipboard", None),
        ]

    def test_quote_adds_flag_as_literal(self):
        inv = setops.parse_args(["-q", "-u", "-d", "-q", "-v"])
        assert inv["feeds"] == [(1, "literal", "-u"), (2, "literal", "-v")]
        assert inv["verbose"] == 0

    def test_last_switch_wins(self):
        inv = setops.parse_args(["-b", "-e", "-B", "-o", "-n", "-u"])
        assert inv["overrides"] == {
            "basenames": False, "extensions": True,
            "maintain_order": True, "terminator": " ",
        }

    def test_unknown_dash_argument_is_a_literal(self):
        assert setops.parse_args(["-x", "-u"])["feeds"] == [(1, "literal", "-x")]

    def test_quoted_help_flag_is_a_literal(self):
        inv = setops.parse_args(["-q", "-h", "-u"])
        assert inv["feeds"] == [(1, "literal", "-h")]
        assert inv["help"] is False
        assert "-q -h" in setops.USAGE

    @pytest.mark.parametrize("argv", [["-F"], ["-f"], ["-1"], ["-q"], ["-P", "3"], ["-F", "ab"]])
    def test_usage_errors(self, argv):
        with pytest.raises(setops.UsageError):
            setops.parse_args(argv)

    @pytest.mark.parametrize("text,expected", [("NULL", None), ("null", None), ("", None), (",", ",")])
    def test_separator(self, text, expected):
        assert setops.parse_separator(text) == expected


class TestOperations:
    def test_union(self, out):
        assert run(["a", "b", "c", "-u", "b", "c", "d"], out) == (0, b"a\nb\nc\nd\n")

    def test_difference(self, out):
        assert run(["a", "b", "c", "-d", "b", "c", "d"], out) == (0, b"a\n")

    def test_intersection_ignoring_extensions(self, out):
        assert run(["-e", "x.txt", "y.txt", "-i", "x.csv"], out) == (0, b"x.txt\n")

    def test_symmetric_difference(self, out):
        assert run(["-s", "a"], out) == (0, b"a\n")

    def test_basenames(self, out):
        assert run(["-b", "/bin/ls", "/bin/cat", "-d", "/usr/bin/ls"], out) == (0, b"/bin/cat\n")

    def test_separator(self, out):
        assert run(["-F", ":", "a:1", "b:2", "-i", "a:9"], out) == (0, b"a:1\n")

    def test_space_terminator(self, out):
        assert run(["-n", "b", "a", "-u"], out) == (0, b"a b ")

    def test_quoted_flag(self, out):
        assert run(["-q", "-u", "x", "-u"], out) == (0, b"-u\nx\n")

    def test_quoted_help(self, out):
        assert run(["-q", "-h", "-u", "x"], out) == (0, b"-h\nx\n")

    def test_stdout(self, capsys):
        assert setops.main(["b", "a", "-u", "c"]) == 0
        assert capsys.readouterr().out == "a\nb\nc\n"

    def test_help(self, capsys):
        assert setops.main(["-h"]) == 0
        assert capsys.readouterr().out.startswith("Usage:")


class TestFiles:
    def test_maintain_order_and_last_line_without_newline(self, tmp_path, out):
        src = tmp_path / "set1.txt"
        src.write_bytes(b"3\n1\n2")
        assert run(["-o", "-1", str(src), "-u"], out) == (0, b"3\n1\n2\n")

    def test_interleaved_file_and_literals(self, tmp_path, out):
        src = tmp_path / "set1.txt"
        src.write_bytes(b"m\nk\n")
        assert run(["-o", "z", "-1", str(src), "a", "-u"], out) == (0, b"z\nm\nk\na\n")

    def test_empty_lines_and_carriage_returns_are_kept(self, tmp_path, out):
        src = tmp_path / "set2.txt"
        src.write_bytes(b"a\r\n\nb\n")
        assert run(["-u", "-2", str(src)], out) == (0, b"\na\r\nb\n")

    def test_undecodable_bytes_round_trip(self, tmp_path, out):
        src = tmp_path / "latin1.txt"
        src.write_bytes(b"caf\xe9\n")
        assert run(["-1", str(src), "-u"], out) == (0, b"caf\xe9\n")

    def test_stdin(self, monkeypatch, out):
        monkeypatch.setattr(sys, "stdin", io.TextIOWrapper(io.BytesIO(b"b\na\n")))
        assert run(["-1", "-", "-d", "a"], out) == (0, b"b\n")

    def test_unreadable_input(self, tmp_path, out, capsys):
        code, data = run(["-1", str(tmp_path / "missing.txt"), "-u"], out)
        assert code == 1
        assert data is None
        assert "Unable to open file" in capsys.readouterr().err

    def test_unwritable_output(self, tmp_path, capsys):
        code = setops.main(["a", "-u", "-f", str(tmp_path / "nodir" / "out.txt")])
        assert code == 1
        assert "for writing" in capsys.readouterr().err


class TestErrors:
    def test_no_operation(self, out, capsys):
        code, data = run(["a", "b"], out)
        assert code == 1
        assert data is None
        err = capsys.readouterr().err
        assert "no operation selected" in err
        assert "Usage:" in err

    def test_bad_separator(self, out, capsys):
        assert run(["-F", "::", "-u"], out)[0] == 1
        assert "separator" in capsys.readouterr().err

    def test_clipboard_failure(self, monkeypatch, out, capsys):
        def broken():
            raise pyperclip.PyperclipException("no clipboard mechanism")
        monkeypatch.setattr(pyperclip, "paste", broken)
        assert run(["-P", "1", "-u"], out)[0] == 1
        assert "no clipboard mechanism" in capsys.readouterr().err


class TestClipboard:
    def test_paste_into_set_and_copy_result(self, monkeypatch):
        copied = []
        monkeypatch.setattr(pyperclip, "paste", lambda: "x\ny\n")
        monkeypatch.setattr(pyperclip, "copy", copied.append)
        assert setops.main(["-P", "1", "-C", "-s", "y", "z"]) == 0
        assert copied == ["x\nz\n"]

    def test_lone_surrogate_written_to_file(self, monkeypatch, out):
        monkeypatch.setattr(pyperclip, "paste", lambda: "ok\n\ud800bad\n")
        assert run(["-P", "1", "-u"], out) == (0, b"ok\n\xed\xa0\x80bad\n")

    def test_lone_surrogate_copied(self, monkeypatch):
        copied = []
        monkeypatch.setattr(pyperclip, "paste", lambda: "ok\n\ud800bad\n")
        monkeypatch.setattr(pyperclip, "copy", copied.append)
        assert setops.main(["-P", "1", "-C", "-u"]) == 0
        assert copied == ["ok\n\ud800bad\n"]


class TestWriteValues:
    def test_failed_result_leaves_no_output_file(self, out):
        def values():
            yield "a"
            raise MemoryError

        with pytest.raises(MemoryError):
            setops.write_values(values(), str(out), "\n")
        assert not out.exists()


class TestConfig:
    def write_ini(self, path, body):
        path.write_text("[setops]\n" + body, encoding="utf-8")
        return path

    def test_explicit_config(self, tmp_path, out):
        ini = self.write_ini(tmp_path / "custom.ini", "extensions = yes\nterminator = space\n")
        assert run(["--config", str(ini), "x.txt", "-i", "x.csv"], out) == (0, b"x.txt ")

    def test_command_line_overrides_config(self, tmp_path, out):
        ini = self.write_ini(tmp_path / "custom.ini", "extensions = yes\n")
        assert run(["--config", str(ini), "-E", "x.txt", "-i", "x.csv"], out) == (0, b"")

    def test_ini_in_working_directory(self, tmp_path, out):
        self.write_ini(tmp_path / "setops.ini", "separator = =\nmaintain_order = yes\n")
        assert run(["b=1", "a=1", "-u", "b=2", "c=3"], out) == (0, b"b=1\na=1\nc=3\n")

    def test_defaults_without_ini(self):
        settings = setops.load_settings(setops.load_ini(setops.find_ini()))
        assert settings == {
            "basenames": False, "extensions": False, "maintain_order": False,
            "verbose": 0, "separator": None, "log_db": None, "terminator": "\n",
        }

    def test_percent_separator(self, tmp_path, out):
        ini = self.write_ini(tmp_path / "pct.ini", "separator = %\n")
        assert run(["--config", str(ini), "a%1", "-u", "a%2"], out) == (0, b"a%1\n")

    def test_percent_in_log_db_path(self, tmp_path, out):
        db = tmp_path / "run%1.db"
        ini = self.write_ini(tmp_path / "pct.ini", f"log_db = {db}\n")
        assert run(["--config", str(ini), "a", "-u"], out) == (0, b"a\n")
        assert db.exists()

    def test_missing_explicit_config(self, tmp_path, out, capsys):
        assert run(["--config", str(tmp_path / "nope.ini"), "-u"], out)[0] == 1
        assert "not found" in capsys.readouterr().err

    @pytest.mark.parametrize("body", ["terminator = tab\n", "basenames = perhaps\n", "separator = ab\n"])
    def test_bad_values(self, tmp_path, out, body):
        ini = self.write_ini(tmp_path / "bad.ini", body)
        with pytest.raises(setops.ConfigError):
            setops.load_settings(setops.load_ini(ini))
        assert run(["--config", str(ini), "-u"], out)[0] == 1


class TestDiagnostics:
    def test_summary(self, tmp_path, out):
        summary = tmp_path / "summary.yaml"
        assert run(["-S", str(summary), "a", "a", "b", "-u", "c"], out)[0] == 0
        data = yaml.safe_load(summary.read_text(encoding="utf-8"))
        assert data["operation"] == "union"
        assert data["sets"] == [
            {"name": "Set 1", "read": 3, "distinct": 2},
            {"name": "Set 2", "read": 1, "distinct": 1},
        ]
        assert data["emitted"] == 3

    def test_verbose_dumps_sets(self, out, capsys):
        assert run(["-v", "-e", "x.txt", "-u"], out)[0] == 0
        err = capsys.readouterr().err
        assert "Compared As" in err
        assert "Set 1" in err and "Set 2" in err
        assert "is_a_member" not in err

    def test_very_verbose_traces_membership(self, out, capsys):
        assert run(["-v", "-v", "a", "-d", "b"], out)[0] == 0
        assert "is_a_member: set Set 2, member a(a), returned 0" in capsys.readouterr().err


class TestRunLog:
    def test_successful_run_is_logged(self, tmp_path, out):
        db = tmp_path / "run.db"
        assert run(["--log-db", str(db), "a", "-u", "b"], out)[0] == 0
        sessions = get_sessions(str(db))
        assert len(sessions) == 1
        assert "--log-db" in sessions[0]["argv"]
        entries = get_entries(str(db), session_id=sessions[0]["id"])
        assert entries[-1]["tag"] == "ok"
        assert entries[-1]["operation"] == "union"
        assert entries[-1]["message"].startswith("2 line(s) written")

    def test_failure_is_logged(self, tmp_path, out):
        db = tmp_path / "run.db"
        assert run(["--log-db", str(db), "-1", str(tmp_path / "missing"), "-u"], out)[0] == 1
        errors = get_entries(str(db), tag="err")
        assert len(errors) == 1
        assert "Unable to open file" in errors[0]["message"]

    def test_unwritten_entries_are_reported(self, monkeypatch, out, capsys):
        class LossyLogger:
            write_errors = 2
            db_path      = "run.db"

            def __init__(self, db_path, argv=""):
                pass

            def log(self, message, tag="info", operation=""):
                pass

            def stop(self):
                pass

        monkeypatch.setattr(setops, "DBLogger", LossyLogger)
        assert run(["--log-db", "run.db", "a", "-u"], out) == (0, b"a\n")
        assert "2 log entr(ies) could not be written" in capsys.readouterr().err
