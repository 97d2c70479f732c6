"""Session and participant models plus the fixed demo step table."""

from __future__ import annotations

import random
import re
import uuid
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, Field

Role = Literal["user", "maintainer", "contributor"]

# Step index -> (step name, acting role). A session's step counter points into
# this table; the guarded operation for entry N may run only while step == N.
DEMO_STEPS: tuple[tuple[str, Role], ...] = (
    ("obtain_sunshine", "user"),
    ("create_issue", "user"),
    ("assign_contributor", "maintainer"),
    ("move_to_roadmap", "maintainer"),
    ("create_patch", "maintainer"),
    ("mark_version_complete", "maintainer"),
    ("test_completed", "user"),
    ("place_star_in_galaxy", "user"),
    ("place_star_in_galaxy", "maintainer"),
    ("place_star_in_galaxy", "contributor"),
)

_DEMO_NAMES = (
    "alex-johnson",
    "sam-taylor",
    "jordan-smith",
    "casey-brown",
    "morgan-davis",
    "riley-wilson",
    "avery-martinez",
    "quinn-anderson",
    "sage-thompson",
    "river-garcia",
)


def describe_step(step: int) -> tuple[str, Role] | None:
    if 0 <= step < len(DEMO_STEPS):
        return DEMO_STEPS[step]
    return None


def steps_named(name: str) -> frozenset[int]:
    """Indices of the step table entries called `name`."""

    return frozenset(i for i, (step_name, _role) in enumerate(DEMO_STEPS) if step_name == name)


class ParticipantIdentity(BaseModel):
    """One role-tagged actor of a session."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    handle: str
    role: Role
    sunshines: float = Field(default=0.0, description="Primary reward accumulator")
    stars: float = Field(default=0.0, description="Secondary reward accumulator")
    x: float | None = None
    y: float | None = None


class StepSession(BaseModel):
    identity_key: str
    created_at: str
    members: list[str] = Field(default_factory=list)
    step: int | None = None

    @property
    def current_step(self) -> int:
        return self.step or 0


class GuardedOutcome(BaseModel):
    """Result of a named guarded operation, as reported to callers."""

    success: bool
    result: dict[str, object] | None = None
    error: str | None = None
    message: str | None = None


@dataclass(frozen=True, slots=True)
class SessionCreation:
    created: bool
    session: StepSession
    members: list[ParticipantIdentity]


def nickname_from_key(identity_key: str) -> str:
    local = identity_key.split("@", 1)[0].lower()
    return re.sub(r"[^a-z0-9]+", "-", local).strip("-") or "demo-user"


def default_demo_members(
    identity_key: str, *, rng: random.Random | None = None
) -> list[ParticipantIdentity]:
    """The demo trio: the initiating user plus a maintainer and a contributor."""

    rng = rng or random.Random()
    members = [ParticipantIdentity(handle=nickname_from_key(identity_key), role="user")]
    for role in ("maintainer", "contributor"):
        members.append(
            ParticipantIdentity(
                handle=rng.choice(_DEMO_NAMES),
                role=role,
                sunshines=float(rng.randint(10_000, 60_000)),
                stars=round(rng.uniform(10, 110), 2),
            )
        )
    return members
