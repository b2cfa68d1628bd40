"""
BuildRecord schema - the persisted result of building one service image.

BuildRecords are derived, never declared. They survive across orchestrator
runs (see build_store) and are only reusable while the fingerprint of the
build context still matches.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class BuildRecord:
    """
    A record of a completed image build.

    Attributes:
        service: Name of the service the image was built for
        fingerprint: SHA256 over the build context at build time
        image_id: Identifier reported by the build tool
        built_at: When the build finished
    """
    service: str
    fingerprint: str
    image_id: str
    built_at: datetime = field(default_factory=_utcnow)

    def matches(self, fingerprint: str) -> bool:
        """True if this record is still valid for the given fingerprint."""
        return self.fingerprint == fingerprint

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        return {
            "service": self.service,
            "fingerprint": self.fingerprint,
            "image_id": self.image_id,
            "built_at": self.built_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildRecord":
        """Deserialize from dictionary."""
        return cls(
            service=data["service"],
            fingerprint=data["fingerprint"],
            image_id=data["image_id"],
            built_at=datetime.fromisoformat(data["built_at"]),
        )
