#!/usr/bin/env python3
"""Gate: PII check for runtime source files.

Fails if:
- print( is called in runtime code (src/**)
- A logger call passes message content or a sender identity (body, sender,
  address, display_name, caption, params, payload) without going through a
  redaction helper (safe_log_context, mask_address, redact_value, redact_string)

The whole call expression is inspected, so multi-line logger calls are
covered. String literals are ignored: "unreadable webhook body" is fine.

Usage:
    python scripts/gate_security_pii.py [SRC_DIR]
"""

import ast
import sys
from pathlib import Path

# Identifiers that hold message text or who sent it
SENSITIVE_NAMES = frozenset(
    {
        "body",
        "sender",
        "address",
        "display_name",
        "caption",
        "params",
        "payload",
    }
)

LOG_METHODS = frozenset({"debug", "info", "warning", "error", "critical", "exception"})

REDACTION_HELPERS = frozenset(
    {"safe_log_context", "mask_address", "redact_value", "redact_string"}
)


def _call_name(node: ast.Call) -> str | None:
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _is_logger_call(node: ast.Call) -> bool:
    func = node.func
    return (
        isinstance(func, ast.Attribute)
        and func.attr in LOG_METHODS
        and isinstance(func.value, ast.Name)
        and func.value.id in ("logger", "log", "logging")
    )


def _unredacted_names(node: ast.AST) -> list[str]:
    """Sensitive identifiers reachable from node without passing a redaction helper."""
    if isinstance(node, ast.Call) and _call_name(node) in REDACTION_HELPERS:
        return []
    found = []
    if isinstance(node, ast.Name) and node.id in SENSITIVE_NAMES:
        found.append(node.id)
    elif isinstance(node, ast.Attribute) and node.attr in SENSITIVE_NAMES:
        found.append(node.attr)
    for child in ast.iter_child_nodes(node):
        found.extend(_unredacted_names(child))
    return found


def check_source(source: str, filename: str = "<string>") -> list[str]:
    """Check one module's source. Returns a list of error messages."""
    try:
        tree = ast.parse(source, filename=filename)
    except SyntaxError as exc:
        return [f"{filename}:{exc.lineno}: cannot parse ({exc.msg})"]

    errors = []
    for node in ast.walk(tree):
        if not isinstance(node, ast.Call):
            continue

        if isinstance(node.func, ast.Name) and node.func.id == "print":
            errors.append(f"{filename}:{node.lineno}: print() not allowed in runtime code")
            continue

        if _is_logger_call(node):
            parts = list(node.args) + [kw.value for kw in node.keywords]
            for name in sorted({n for part in parts for n in _unredacted_names(part)}):
                errors.append(
                    f"{filename}:{node.lineno}: logger call uses '{name}' "
                    "without redaction (safe_log_context/mask_address)"
                )

    return errors


def check_file(filepath: Path) -> list[str]:
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []
    return check_source(content, str(filepath))


def main(argv: list[str] | None = None) -> int:
    """Run gate check on the src directory."""
    argv = sys.argv[1:] if argv is None else argv
    src_dir = Path(argv[0]) if argv else Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - no violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
