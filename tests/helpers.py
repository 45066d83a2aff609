"""Helpers shared by unit and integration tests.

Provides:
- FakeMongoexport, a stand-in mongoexport with canned output
- option(), reading a value out of a recorded argument list
"""

from __future__ import annotations

import json
import sys
import textwrap
from pathlib import Path
from typing import Any, Dict, List, Optional

from mongo_extractor.lib.command import CommandBuilder


# Prints canned output chosen by the arguments it was called with.  A call
# with "--limit 1" is an incremental probe; anything else is the main export.
FAKE_MONGOEXPORT = textwrap.dedent(
    """
    import json
    import sys
    from pathlib import Path

    here = Path(__file__).parent
    scenario = json.loads((here / "scenario.json").read_text(encoding="utf-8"))
    args = sys.argv[1:]
    with open(here / "calls.jsonl", "a", encoding="utf-8") as log:
        log.write(json.dumps(args) + "\\n")

    probe = "--limit" in args and args[args.index("--limit") + 1] == "1"
    result = scenario["probe" if probe else "export"]
    output = "".join(line + "\\n" for line in result.get("stdout", []))
    sys.stdout.buffer.write(output.encode("utf-8"))
    sys.stdout.flush()
    if result.get("stderr"):
        sys.stderr.buffer.write(result["stderr"].encode("utf-8"))
        sys.stderr.flush()
    sys.exit(result.get("exit_code", 0))
    """
)


class FakeMongoexport:
    """A mongoexport stand-in run by the current interpreter."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self.script = directory / "mongoexport.py"
        self.script.write_text(FAKE_MONGOEXPORT, encoding="utf-8")
        # Same script, runnable on its own for callers taking a single executable
        self.executable = directory / "mongoexport"
        self.executable.write_text(f"#!{sys.executable}\n{FAKE_MONGOEXPORT}", encoding="utf-8")
        self.executable.chmod(0o755)
        self.configure()

    @property
    def builder(self) -> CommandBuilder:
        return CommandBuilder(executable=(sys.executable, str(self.script)))

    def configure(
        self,
        *,
        stdout: Optional[List[str]] = None,
        stderr: str = "",
        exit_code: int = 0,
        probe_stdout: Optional[List[str]] = None,
        probe_stderr: str = "",
        probe_exit_code: int = 0,
    ) -> None:
        scenario: Dict[str, Any] = {
            "export": {"stdout": stdout or [], "stderr": stderr, "exit_code": exit_code},
            "probe": {"stdout": probe_stdout or [], "stderr": probe_stderr, "exit_code": probe_exit_code},
        }
        (self.directory / "scenario.json").write_text(json.dumps(scenario), encoding="utf-8")

    def calls(self) -> List[List[str]]:
        """Arguments of every invocation so far, without the executable."""
        log = self.directory / "calls.jsonl"
        if not log.exists():
            return []
        return [json.loads(line) for line in log.read_text(encoding="utf-8").splitlines() if line]


def option(args: List[str], name: str) -> Optional[str]:
    """Value following ``name`` in an argument list."""
    return args[args.index(name) + 1] if name in args else None

