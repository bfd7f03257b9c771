"""
Migration Verification Module
=============================

Reconciles per-kind record counts between the source document store and
the SQLite target after a migration, and optionally compares content
checksums. Any mismatch fails the whole run.

Only entity kinds are compared. Junction rows (textbook/passage-set links)
are not counted, so a relationship pass that silently dropped every link
would still verify.
"""

import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from ..exceptions import ChecksumMismatchError, CountMismatchError
from .models import EntityKind, IMPORT_ORDER, to_model
from .source import SourceConnector
from .target import TargetStore

logger = logging.getLogger(__name__)


@dataclass
class VerificationResult:
    """Results from a verification check."""

    check_name: str
    kind: str
    passed: bool
    source_count: int = 0
    target_count: int = 0
    source_checksum: Optional[str] = None
    target_checksum: Optional[str] = None
    error: Optional[str] = None

    @property
    def summary(self) -> str:
        """Human-readable summary of the verification result."""
        status = "✓ PASSED" if self.passed else "✗ FAILED"
        msg = f"{status}: {self.check_name} ({self.kind})"
        if not self.passed:
            if self.error:
                msg += f" - Error: {self.error}"
            elif self.source_count != self.target_count:
                msg += f" - Count mismatch: source={self.source_count}, target={self.target_count}"
            else:
                msg += " - Content checksum mismatch"
        return msg


@dataclass
class MigrationVerificationReport:
    """Complete verification report for a migration."""

    source_backend: str = "mongodb"
    target_backend: str = "sqlite"
    checks: List[VerificationResult] = field(default_factory=list)
    passed: bool = True
    total_checks: int = 0
    passed_checks: int = 0
    failed_checks: int = 0

    def add_check(self, result: VerificationResult) -> None:
        """Add a verification check result."""
        self.checks.append(result)
        self.total_checks += 1
        if result.passed:
            self.passed_checks += 1
        else:
            self.failed_checks += 1
            self.passed = False

    def count_mismatches(self):
        return [
            (c.kind, c.source_count, c.target_count)
            for c in self.checks
            if c.source_count != c.target_count
        ]

    def checksum_mismatches(self) -> List[str]:
        return [
            c.kind for c in self.checks
            if c.source_checksum is not None and c.source_checksum != c.target_checksum
        ]

    def raise_for_mismatch(self) -> None:
        """Raise the failure that describes this report, if any."""
        counts = self.count_mismatches()
        if counts:
            raise CountMismatchError(counts)
        checksums = self.checksum_mismatches()
        if checksums:
            raise ChecksumMismatchError(checksums)

    def to_dict(self) -> dict:
        """Convert report to dictionary for serialization."""
        return {
            "source_backend": self.source_backend,
            "target_backend": self.target_backend,
            "passed": self.passed,
            "total_checks": self.total_checks,
            "passed_checks": self.passed_checks,
            "failed_checks": self.failed_checks,
            "checks": [
                {
                    "check_name": c.check_name,
                    "kind": c.kind,
                    "passed": c.passed,
                    "source_count": c.source_count,
                    "target_count": c.target_count,
                    "source_checksum": c.source_checksum,
                    "target_checksum": c.target_checksum,
                    "error": c.error,
                }
                for c in self.checks
            ],
        }

    def print_report(self, console: Optional[Console] = None) -> None:
        """Print formatted verification report."""
        console = console or Console()
        table = Table(title=f"Migration verification: {self.source_backend} → {self.target_backend}")
        table.add_column("Kind")
        table.add_column("Source", justify="right")
        table.add_column("Target", justify="right")
        table.add_column("Result")

        for check in self.checks:
            result = "[green]✓[/green]" if check.passed else f"[red]✗ {check.check_name}[/red]"
            table.add_row(check.kind, str(check.source_count), str(check.target_count), result)

        console.print(table)
        status = "✓ ALL CHECKS PASSED" if self.passed else "✗ VERIFICATION FAILED"
        console.print(f"{status} ({self.passed_checks}/{self.total_checks} passed)")


def _checksum(values) -> str:
    canonical = json.dumps(sorted(values, key=repr), ensure_ascii=False, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


class IntegrityVerifier:
    """
    Verifies record counts (and optionally content) after migration.

    Args:
        source: Connected source connector
        target: Connected target store
        verify_checksums: Also compare content checksums per kind
    """

    def __init__(
        self,
        source: SourceConnector,
        target: TargetStore,
        verify_checksums: bool = False,
    ):
        self.source = source
        self.target = target
        self.verify_checksums = verify_checksums

    def verify_all(self) -> MigrationVerificationReport:
        """Run every check and return the report; never raises on mismatch."""
        report = MigrationVerificationReport()
        for kind in IMPORT_ORDER:
            report.add_check(self.verify_kind(kind))

        for check in report.checks:
            log = logger.info if check.passed else logger.error
            log(f"{check.summary} [{check.source_count} → {check.target_count}]")
        return report

    def verify(self) -> MigrationVerificationReport:
        """Run every check and raise if any failed."""
        report = self.verify_all()
        report.raise_for_mismatch()
        return report

    def verify_kind(self, kind: EntityKind) -> VerificationResult:
        """Compare one entity kind between source and target."""
        source_count = self.source.count(kind)
        target_count = self.target.count(kind)
        result = VerificationResult(
            check_name="Count Verification",
            kind=kind.value,
            passed=source_count == target_count,
            source_count=source_count,
            target_count=target_count,
        )

        if self.verify_checksums and result.passed:
            result.check_name = "Content Verification"
            source_values = [to_model(kind, r).checksum_values() for r in self.source.fetch(kind)]
            result.source_checksum = _checksum(source_values)
            result.target_checksum = _checksum(self.target.checksum_values(kind))
            result.passed = result.source_checksum == result.target_checksum

        return result
