from .directives import (
    EOF_TARGET,
    Call,
    Chain,
    Comment,
    Directive,
    Exit,
    ExitB,
    Goto,
    Label,
    Pause,
    PlainCommand,
    classify,
    normalize_label,
    split_composite,
)
from .model import LabelTable, ScriptModel, SourceLine, load, load_path

__all__ = [
    "EOF_TARGET",
    "Call",
    "Chain",
    "Comment",
    "Directive",
    "Exit",
    "ExitB",
    "Goto",
    "Label",
    "LabelTable",
    "Pause",
    "PlainCommand",
    "ScriptModel",
    "SourceLine",
    "classify",
    "load",
    "load_path",
    "normalize_label",
    "split_composite",
]
