from __future__ import annotations

from pathlib import Path
from string import Template


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Read a prompt template from disk.
    Inputs/Outputs: Path of a Markdown template; output is its text without a BOM.
    Side Effects / State: One file read.
    Dependencies: The orchestrator loads general_assistant.md on first use.
    Failure Modes: Bytes that are not UTF-8 are dropped rather than raising;
        a missing file raises FileNotFoundError.
    If Removed: Open questions cannot be sent to the generator.
    Testing Notes: A file saved as utf-8-sig must load without "\\ufeff".
    """
    # utf-8-sig drops a leading BOM; fall back to a lossy decode.
    raw = prompt_path.read_bytes()
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff")


def render_prompt(template: str, **values: str) -> str:
    # $name placeholders; unknown placeholders are left as typed.
    return Template(template).safe_substitute(values)
