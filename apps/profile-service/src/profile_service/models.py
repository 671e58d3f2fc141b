from __future__ import annotations

from dataclasses import asdict, dataclass, field

from devkit.timezone import now_wib_iso


@dataclass
class ProfileRecord:
    id: str
    name: str
    role: str = "user"
    created_at: str = field(default_factory=now_wib_iso)
    updated_at: str = field(default_factory=now_wib_iso)

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True)
class Caller:
    """The signed-in identity behind a request, with the role its own profile grants."""

    identity_id: str
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
