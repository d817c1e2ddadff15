"""Scan session result data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScanError:
    """A scanned code that could not be processed."""

    barcode: str
    error_type: str
    message: str
    details: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "barcode": self.barcode,
            "error_type": self.error_type,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass
class ScanSessionResult:
    """Running tally of a scan session."""

    mode: str
    scanned_count: int = 0
    found_count: int = 0
    missing_count: int = 0
    adjusted_count: int = 0
    ignored_count: int = 0
    errors: List[ScanError] = field(default_factory=list)
    duration: float = 0.0  # seconds
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        """Initialize timestamps if not set."""
        if self.start_time is None:
            self.start_time = _utcnow()

    def add_error(self, barcode: str, error_type: str, message: str, details: Optional[Dict[str, Any]] = None):
        """Add an error to the result."""
        self.errors.append(ScanError(
            barcode=barcode,
            error_type=error_type,
            message=message,
            details=details
        ))

    def finalize(self):
        """Stamp end time and duration."""
        self.end_time = _utcnow()
        if self.start_time:
            self.duration = (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "mode": self.mode,
            "success": self.success,
            "scanned_count": self.scanned_count,
            "found_count": self.found_count,
            "missing_count": self.missing_count,
            "adjusted_count": self.adjusted_count,
            "ignored_count": self.ignored_count,
            "duration": round(self.duration, 2),
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "errors": [error.to_dict() for error in self.errors]
        }

    def get_summary(self) -> str:
        """Get a human-readable summary."""
        summary_lines = [
            f"Scan session ({self.mode}) finished in {self.duration:.2f}s",
            f"Scanned: {self.scanned_count}",
            f"Found: {self.found_count}",
            f"Missing: {self.missing_count}",
            f"Adjusted: {self.adjusted_count}",
            f"Ignored: {self.ignored_count}"
        ]

        if self.errors:
            summary_lines.append(f"\nErrors ({len(self.errors)}):")
            for error in self.errors[:5]:
                summary_lines.append(f"  - {error.barcode}: {error.message}")
            if len(self.errors) > 5:
                summary_lines.append(f"  ... and {len(self.errors) - 5} more errors")

        return "\n".join(summary_lines)
