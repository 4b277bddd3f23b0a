"""Tests for line splitting, continuation joining, classification and labels."""

from pathlib import Path

from hypothesis import given
from hypothesis import strategies as st
import pytest

from batchdbg.core.errors import ParseError, UnknownLabelError
from batchdbg.script import directives
from batchdbg.script import model as model_module
from batchdbg.script.directives import (
    Call,
    Chain,
    Comment,
    Exit,
    ExitB,
    Goto,
    Label,
    Pause,
    PlainCommand,
    classify,
    normalize_label,
    paren_balance,
    split_composite,
)
from batchdbg.script.model import join_continuations, load, load_path, split_physical_lines


class TestClassify:
    """Each logical line maps onto exactly one directive."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("", Comment()),
            ("   ", Comment()),
            ("REM a remark", Comment()),
            ("@rem quiet remark", Comment()),
            ("rem", Comment()),
            (":: double colon comment", Comment()),
            (":Loop", Label(name="loop")),
            (":  Main   Entry ", Label(name="main")),
            (":end   rem finish here", Label(name="end")),
            ("goto :Loop", Goto(target="loop")),
            ("GOTO loop", Goto(target="loop")),
            ("goto:loop", Goto(target="loop")),
            ("goto :End  trailing words", Goto(target="end")),
            ("GOTO :EOF", Goto(target="eof")),
            ("call :Sub", Call(target="sub")),
            ('call :sub one "two three"', Call(target="sub", args=("one", '"two three"'))),
            ("exit /b 3", ExitB(code=3)),
            ("EXIT /B", ExitB(code=None)),
            ("exit /b %ERRORLEVEL%", ExitB(code=None)),
            ("exit /b nonsense", ExitB(code=0)),
            ("exit 2", Exit(code=2)),
            ("exit", Exit(code=None)),
            ("pause", Pause()),
            ("PAUSE >nul", Pause()),
            ("@echo off", PlainCommand(text="@echo off")),
            ("call other.bat", PlainCommand(text="call other.bat")),
            ("echo goto :loop", PlainCommand(text="echo goto :loop")),
            ("remark.exe", PlainCommand(text="remark.exe")),
            ("gotoo :x", PlainCommand(text="gotoo :x")),
        ],
    )
    def test_directive_for_line(self, text: str, expected: directives.Directive) -> None:
        """Test the directive produced for common line shapes."""
        assert classify(text) == expected

    def test_eof_targets(self) -> None:
        """Test that GOTO :EOF and CALL :EOF are recognised as returns."""
        assert classify("goto :eof").is_eof
        assert classify("call :EOF").is_eof
        assert not classify("goto :eofx").is_eof

    @pytest.mark.parametrize("text", ["goto", "GOTO   ", "goto :", "call :", "call :   "])
    def test_missing_target(self, text: str) -> None:
        """Test that GOTO/CALL without a label are rejected."""
        with pytest.raises(directives.MissingTarget):
            classify(text)


class TestNormalizeLabel:
    """Label names compare case-insensitively with whitespace collapsed."""

    @pytest.mark.parametrize("spelling", [":Loop", ":loop", ": loop ", ":LOOP"])
    def test_spellings_resolve_to_same_target(self, spelling: str) -> None:
        """Test the documented spellings of one label."""
        model = load("echo first\n:Loop\necho body\n")
        assert model.resolve_label(spelling) == 1

    @given(
        name=st.text(alphabet="abcdefghijklmnopqrstuvwxyz_0123456789", min_size=1, max_size=12),
        padding=st.text(alphabet=" \t", max_size=3),
        upper=st.booleans(),
    )
    def test_case_and_padding_do_not_matter(self, name: str, padding: str, upper: bool) -> None:
        """Test that label lookups ignore case and surrounding whitespace."""
        spelled = name.upper() if upper else name
        assert normalize_label(f"{padding}{spelled}{padding}") == name


class TestCompositeLines:
    """Splitting lines on &, && and ||."""

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("call :sub && echo ok", [(None, "call :sub"), (Chain.ON_SUCCESS, "echo ok")]),
            ("call :sub || echo failed", [(None, "call :sub"), (Chain.ON_FAILURE, "echo failed")]),
            (
                "cd build & make && echo done || echo broke",
                [
                    (None, "cd build"),
                    (Chain.ALWAYS, "make"),
                    (Chain.ON_SUCCESS, "echo done"),
                    (Chain.ON_FAILURE, "echo broke"),
                ],
            ),
            ("goto end & rem done", [(None, "goto end"), (Chain.ALWAYS, "rem done")]),
        ],
    )
    def test_operators_split_parts(self, text: str, expected: list) -> None:
        """Test that each operator starts a new part joined by that operator."""
        assert split_composite(text) == expected

    @pytest.mark.parametrize(
        "text",
        [
            'echo "a & b"',
            "echo a ^& b",
            "dir missing 2>&1",
            "type x | find y",
            "(echo a & echo b) > out.txt",
            "if errorlevel 1 echo bad & exit /b 1",
            "for %%f in (*.txt) do echo %%f & echo next",
            "rem this & that",
            ":: note && more",
            ":label & text",
        ],
    )
    def test_literal_operators_stay_whole(self, text: str) -> None:
        """Test quoted, escaped, grouped and redirection ampersands."""
        assert split_composite(text) == [(None, text)]

    def test_empty_parts_are_dropped(self) -> None:
        """Test that a trailing operator does not add an empty command."""
        assert split_composite("echo a &") == [(None, "echo a &")]
        assert split_composite("echo a & & echo b") == [(None, "echo a"), (Chain.ALWAYS, "echo b")]

    def test_parts_become_logical_lines(self) -> None:
        """Test that each part is classified and shares its physical line."""
        model = load("call :sub && echo ok\nexit /b 0\n:sub\nexit /b 0\n")
        first, second = model.line(0), model.line(1)
        assert first.directive == Call(target="sub")
        assert first.chain is None
        assert second.directive == PlainCommand(text="echo ok")
        assert second.chain is Chain.ON_SUCCESS
        assert first.display_line == second.display_line == 1
        assert model.index_for_physical(1) == 0
        assert model.resolve_label("sub") == 3

    def test_goto_part_resolves(self) -> None:
        """Test that a GOTO followed by a comment part keeps a clean target."""
        model = load("goto end & rem done\n:end\n")
        assert model.line(0).directive == Goto(target="end")
        assert model.resolve_label("end") == 2

    def test_missing_target_in_part(self) -> None:
        """Test that a bare GOTO part is reported on its physical line."""
        with pytest.raises(ParseError) as excinfo:
            load("echo a\necho b && goto\n")
        assert excinfo.value.line == 2

    @pytest.mark.parametrize(
        ("op", "error_level", "runs"),
        [
            (Chain.ALWAYS, 0, True),
            (Chain.ALWAYS, 5, True),
            (Chain.ON_SUCCESS, 0, True),
            (Chain.ON_SUCCESS, 1, False),
            (Chain.ON_FAILURE, 0, False),
            (Chain.ON_FAILURE, -1, True),
        ],
    )
    def test_chain_rules(self, op: Chain, error_level: int, runs: bool) -> None:
        """Test when each operator lets its part run."""
        assert op.allows(error_level) is runs


class TestBlocks:
    """Parenthesised multi-line blocks."""

    def test_if_block_is_one_command(self) -> None:
        """Test that an IF block becomes a single dispatch unit."""
        model = load("if 1==1 (\n  echo a\n)\n")
        assert len(model) == 1
        block = model.line(0)
        assert block.directive == PlainCommand(text="if 1==1 (\n  echo a\n)")
        assert (block.physical_start, block.physical_end) == (0, 2)
        assert model.physical_count == 3

    def test_breakpoints_map_into_block(self) -> None:
        """Test that every physical line of a block maps to the block."""
        model = load("@echo off\nfor %%f in (*.txt) do (\n  echo %%f\n  type %%f\n)\necho after\n")
        assert [model.index_for_physical(line) for line in range(1, 7)] == [0, 1, 1, 1, 1, 2]
        assert model.line(2).text == "echo after"

    def test_nested_and_else_blocks(self) -> None:
        """Test that nested groups and ELSE branches stay in one block."""
        script = "if exist a (\n  if exist b (\n    echo ab\n  )\n) else (\n  echo none\n)\necho tail\n"
        model = load(script)
        assert len(model) == 2
        assert model.line(0).physical_end == 6
        assert model.line(1).text == "echo tail"

    def test_bare_group(self) -> None:
        """Test that a line opening with a parenthesis starts a block."""
        model = load("(\n  echo a\n  echo b\n) > out.txt\n")
        assert len(model) == 1
        assert model.line(0).directive == PlainCommand(text="(\n  echo a\n  echo b\n) > out.txt")

    def test_balanced_lines_are_not_blocks(self) -> None:
        """Test that single-line groups and quoted parentheses stay single lines."""
        model = load('if 1==1 (echo a) else (echo b)\necho "(" & echo x\nif "(" == "(" echo y\n')
        assert [source.text for source in model] == [
            "if 1==1 (echo a) else (echo b)",
            'echo "("',
            "echo x",
            'if "(" == "(" echo y',
        ]

    def test_unclosed_block_runs_to_end(self) -> None:
        """Test that a block missing its closing parenthesis takes the rest of the file."""
        model = load("echo a\nif 1==1 (\n  echo b\n")
        assert len(model) == 2
        assert model.line(1).physical_end == 2

    @pytest.mark.parametrize(
        ("text", "balance"),
        [("if x (", 1), ("echo ^(", 0), ('echo "(("', 0), (") else (", 0), ("))", -2)],
    )
    def test_paren_balance(self, text: str, balance: int) -> None:
        """Test the parenthesis count outside quotes and escapes."""
        assert paren_balance(text) == balance


class TestLineSplitting:
    """Physical line splitting and caret continuation."""

    def test_mixed_line_endings(self) -> None:
        """Test that CRLF, LF and bare CR all terminate lines."""
        assert split_physical_lines("a\r\nb\nc\rd") == ["a", "b", "c", "d"]

    def test_trailing_newline_does_not_add_line(self) -> None:
        """Test that the final line terminator is not an extra empty line."""
        assert split_physical_lines("a\r\nb\r\n") == ["a", "b"]
        assert split_physical_lines("a\n\n") == ["a", ""]
        assert split_physical_lines("") == []

    def test_caret_joins_next_line(self) -> None:
        """Test that an odd run of trailing carets continues the line."""
        joined = join_continuations(["echo one ^", "two ^", "three", "echo four"])
        assert joined == [("echo one  two  three", 0, 2), ("echo four", 3, 3)]

    def test_escaped_caret_does_not_continue(self) -> None:
        """Test that a doubled caret is a literal character."""
        joined = join_continuations(["echo up^^", "echo next"])
        assert [text for text, _, _ in joined] == ["echo up^^", "echo next"]

    def test_caret_on_last_line(self) -> None:
        """Test that a dangling continuation at EOF keeps the line."""
        assert join_continuations(["echo end ^"]) == [("echo end ", 0, 0)]


class TestLoad:
    """Building the ScriptModel."""

    def test_logical_lines_map_back_to_physical(self) -> None:
        """Test the physical line range recorded for joined lines."""
        model = load("@echo off\r\necho a ^\r\n  b\r\n:done\r\n")
        assert len(model) == 3
        assert model.physical_count == 4
        assert model.line(1).physical_start == 1
        assert model.line(1).physical_end == 2
        assert model.line(2).display_line == 4
        assert model.index_for_physical(3) == 1
        assert model.index_for_physical(4) == 2

    def test_index_for_physical_out_of_range(self) -> None:
        """Test that physical lines outside the script are rejected."""
        model = load("echo a\n")
        with pytest.raises(IndexError):
            model.index_for_physical(0)
        with pytest.raises(IndexError):
            model.index_for_physical(2)

    def test_duplicate_labels_first_wins(self) -> None:
        """Test that the first definition of a label is the jump target."""
        model = load(":a\necho one\n:A\necho two\n")
        assert model.resolve_label("a") == 0
        assert model.labels.duplicates == (("a", 2),)

    def test_eof_label_is_not_indexed(self) -> None:
        """Test that a user-defined :eof does not shadow the implicit return."""
        model = load(":eof\necho x\n")
        assert "eof" not in model.labels
        assert len(model.labels) == 0

    def test_unknown_label(self) -> None:
        """Test the error raised for a missing label."""
        model = load("echo x\n")
        with pytest.raises(UnknownLabelError) as excinfo:
            model.resolve_label(":Missing", line=0)
        assert excinfo.value.name == "missing"
        assert excinfo.value.line == 0

    def test_enclosing_label(self) -> None:
        """Test the nearest label at or before a line."""
        model = load("echo main\n:first\necho a\n:second\necho b\n")
        assert model.enclosing_label(0) is None
        assert model.enclosing_label(2) == "first"
        assert model.enclosing_label(3) == "second"
        assert model.enclosing_label(99) == "second"

    def test_goto_without_target_is_parse_error(self) -> None:
        """Test that the physical line number of the bad GOTO is reported."""
        with pytest.raises(ParseError) as excinfo:
            load("echo ok\r\ngoto\r\n")
        assert excinfo.value.line == 2
        assert excinfo.value.code == "parse_error"

    def test_nul_is_parse_error(self) -> None:
        """Test that binary content is refused."""
        with pytest.raises(ParseError) as excinfo:
            load("echo a\necho \x00b\n")
        assert excinfo.value.line == 2

    def test_empty_script(self) -> None:
        """Test that an empty file is a valid, empty model."""
        model = load("")
        assert len(model) == 0
        assert model.physical_count == 0

    def test_label_with_trailing_words_is_reachable(self) -> None:
        """Test that only the first word of a label line names it."""
        model = load("goto end\necho skipped\n:end   rem finish here\n")
        assert model.resolve_label("end") == 2
        assert model.resolve_label(": END ") == 2


class TestLoadPath:
    """Reading scripts from disk."""

    def test_utf8_bom_is_stripped(self, tmp_path: Path) -> None:
        """Test that a UTF-8 BOM does not leak into the first line."""
        script = tmp_path / "bom.bat"
        script.write_bytes(b"\xef\xbb\xbf:start\r\necho hi\r\n")
        model = load_path(script)
        assert model.resolve_label("start") == 0
        assert model.name == str(script)

    def test_missing_file_is_parse_error(self, tmp_path: Path) -> None:
        """Test that unreadable paths surface as ParseError."""
        with pytest.raises(ParseError) as excinfo:
            load_path(tmp_path / "missing.bat")
        assert excinfo.value.detail

    def test_cp1252_file_is_decoded(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a Windows ANSI script keeps its accented characters."""
        script = tmp_path / "ansi.bat"
        script.write_bytes("echo Café résumé – naïve\r\n".encode("cp1252"))
        monkeypatch.setattr(
            model_module.chardet,
            "detect",
            lambda _data: {"encoding": "Windows-1252", "confidence": 0.73, "language": ""},
        )
        model = load_path(script)
        assert model.line(0).text == "echo Café résumé – naïve"

    def test_cp1252_without_confident_detection(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that cp1252 is tried before the OEM code page."""
        script = tmp_path / "ansi.bat"
        script.write_bytes("echo Café résumé – naïve\r\n".encode("cp1252"))
        monkeypatch.setattr(
            model_module.chardet,
            "detect",
            lambda _data: {"encoding": "ascii", "confidence": 0.2, "language": ""},
        )
        monkeypatch.setattr(model_module.locale, "getpreferredencoding", lambda _do_setlocale: "utf-8")
        assert model_module.read_script_text(script) == "echo Café résumé – naïve\r\n"

    def test_unusable_detection_falls_back(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an unknown or failing detected encoding is skipped."""
        script = tmp_path / "ansi.bat"
        script.write_bytes(b"echo ok\r\n")
        monkeypatch.setattr(
            model_module.chardet,
            "detect",
            lambda _data: {"encoding": "no-such-codec", "confidence": 0.99, "language": ""},
        )
        assert model_module.read_script_text(script) == "echo ok\r\n"

    def test_utf8_detected_by_chardet(self, tmp_path: Path) -> None:
        """Test that UTF-8 text is read unchanged."""
        script = tmp_path / "utf8.bat"
        script.write_text("echo Grüße aus Köln, naïve café\n", encoding="utf-8")
        assert load_path(script).line(0).text == "echo Grüße aus Köln, naïve café"

    def test_undefined_cp1252_bytes_use_oem_page(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that bytes no other candidate accepts decode as cp437."""
        script = tmp_path / "oem.bat"
        script.write_bytes(b"echo \x81\x8d\r\n")
        monkeypatch.setattr(
            model_module.chardet,
            "detect",
            lambda _data: {"encoding": None, "confidence": 0.0, "language": None},
        )
        monkeypatch.setattr(model_module.locale, "getpreferredencoding", lambda _do_setlocale: "utf-8")
        assert model_module.read_script_text(script) == "echo üì\r\n"
