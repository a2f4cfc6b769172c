#!/usr/bin/env python3
"""
Multi-tenancy scoping lint check.

This script scans the backend for common multi-tenancy violations:
1. Queries on tenant tables without an owner_uid filter
2. Hardcoded tenant uids
3. Tenant uids taken from request bodies instead of the RequestContext

USAGE:
    python scripts/check_tenant_scoping.py

    # Or with verbose output
    python scripts/check_tenant_scoping.py -v

EXIT CODES:
    0 - Clean, or findings without --strict
    1 - Critical/high issues found with --strict
"""

import argparse
import re
import sys
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import List, Tuple

# ────────────────────────────────────────────────────────────────
# Configuration
# ────────────────────────────────────────────────────────────────

SCAN_ROOT = Path(__file__).parent.parent / "Backend" / "salonops"

EXCLUDE_PATTERNS = [
    "__pycache__",
    ".pyc",
    "tenancy/",  # The scoping helpers themselves
    "test_",
]

TENANT_MODELS = ("Branch", "Service", "Booking", "BookingRequest", "BookingActivity", "AuditLog")

BAD_PATTERNS: List[Tuple[str, str, str]] = [
    # (pattern, severity, description)
    (
        r"owner_uid\s*=\s*[\"'][\w-]+[\"']",
        "CRITICAL",
        "Hardcoded owner_uid - should come from the RequestContext",
    ),
    (
        r"owner_uid\s*=\s*payload\.",
        "CRITICAL",
        "owner_uid taken from the request body - use require_tenant(ctx)",
    ),
] + [
    (
        rf"select\({model}\)",
        "HIGH",
        f"{model} query without owner_uid filter - potential cross-tenant leak",
    )
    for model in TENANT_MODELS
] + [
    (
        r"session\.get\((Branch|Service|BookingRequest),",
        "MEDIUM",
        "Primary key lookup - check assert_tenant_row or use require_owned",
    ),
]

# Lines matching these are never reported
IGNORE_PATTERNS = [
    r"^\s*#",
    r"noqa:\s*tenant-scoping",
    r"owner_uid: ",  # Annotations and field declarations
]

# A HIGH finding is dropped when one of these appears near it
SCOPED_CONTEXT = r"\.owner_uid\s*==|tenant_filter\(|scoped_select\("
CHECKED_CONTEXT = r"assert_tenant_row\(|\.owner_uid\s*!="


# ────────────────────────────────────────────────────────────────
# Data Classes
# ────────────────────────────────────────────────────────────────

@dataclass
class Finding:
    """A single tenant scoping issue."""

    file: Path
    line_num: int
    line_text: str
    severity: str
    description: str

    def __str__(self):
        return f"{self.severity}: {self.file}:{self.line_num} - {self.description}\n  > {self.line_text.strip()}"


# ────────────────────────────────────────────────────────────────
# Scanning Logic
# ────────────────────────────────────────────────────────────────

def should_exclude(path: Path) -> bool:
    path_str = path.as_posix()
    return any(excl in path_str for excl in EXCLUDE_PATTERNS)


def should_ignore_line(line: str) -> bool:
    return any(re.search(pattern, line) for pattern in IGNORE_PATTERNS)


def scan_file(file_path: Path) -> List[Finding]:
    """Scan a single file for tenant scoping issues."""
    findings = []

    try:
        content = file_path.read_text(encoding="utf-8")
    except OSError as e:
        print(f"Warning: Could not read {file_path}: {e}", file=sys.stderr)
        return []

    lines = content.split("\n")

    for line_num, line in enumerate(lines, 1):
        if should_ignore_line(line):
            continue

        for pattern, severity, description in BAD_PATTERNS:
            if not re.search(pattern, line):
                continue
            # Multi-line statements: look at this line plus the next few
            window = "\n".join(lines[line_num - 1:line_num + 6])
            if severity == "HIGH" and re.search(SCOPED_CONTEXT, window):
                continue
            if severity == "MEDIUM" and re.search(CHECKED_CONTEXT, window):
                continue

            findings.append(Finding(
                file=file_path,
                line_num=line_num,
                line_text=line,
                severity=severity,
                description=description,
            ))

    return findings


def scan_directory(root: Path) -> List[Finding]:
    all_findings = []
    for path in sorted(root.rglob("*.py")):
        if should_exclude(path):
            continue
        all_findings.extend(scan_file(path))
    return all_findings


# ────────────────────────────────────────────────────────────────
# Reporting
# ────────────────────────────────────────────────────────────────

SEVERITY_ORDER = ["CRITICAL", "HIGH", "MEDIUM"]


def print_report(findings: List[Finding], verbose: bool = False) -> None:
    if not findings:
        print("✅ Every tenant-table query is scoped by owner_uid")
        return

    counts = Counter(f.severity for f in findings)
    print(f"\n{len(findings)} tenant scoping issue(s): " + ", ".join(
        f"{counts[sev]} {sev.lower()}" for sev in SEVERITY_ORDER if counts[sev]
    ))

    if not verbose:
        print("Re-run with -v to list them.")
        return

    for finding in sorted(findings, key=lambda f: (SEVERITY_ORDER.index(f.severity), str(f.file), f.line_num)):
        print(f"\n{finding}")


# ────────────────────────────────────────────────────────────────
# Main
# ────────────────────────────────────────────────────────────────

def main() -> int:
    parser = argparse.ArgumentParser(description="Lint the backend for unscoped tenant queries")
    parser.add_argument("-v", "--verbose", action="store_true", help="print every finding")
    parser.add_argument("--strict", action="store_true", help="fail on critical/high findings (CI)")
    parser.add_argument("--path", type=Path, default=SCAN_ROOT)
    args = parser.parse_args()

    if not args.path.is_dir():
        print(f"{args.path} is not a directory", file=sys.stderr)
        return 1

    findings = scan_directory(args.path)
    print_report(findings, verbose=args.verbose)

    blocking = [f for f in findings if f.severity in ("CRITICAL", "HIGH")]
    if args.strict and blocking:
        print(f"\n❌ Failing: {len(blocking)} critical/high finding(s)")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
