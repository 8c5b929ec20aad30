"""Task domain models and enums for delivery/errand requests."""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from src.domain.money import Money


class TaskStatus(StrEnum):
    """Task lifecycle and negotiation state (values match stored rows)."""

    PENDING = "pending"
    COST_REVIEW = "cost_review"
    COST_PROPOSED = "cost_proposed"
    USER_COUNTER_PROPOSED = "user_counter_proposed"
    DELIVERY_COUNTER_PROPOSED = "delivery_counter_proposed"
    COST_ACCEPTED = "cost_accepted"
    NEGOTIATION_FINALIZED = "negotiation_finalized"
    ASSIGNED = "assigned"
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    EXPIRED = "expired"

    @classmethod
    def parse(cls, value: str | None) -> "TaskStatus":
        """Parse a stored status string, falling back to PENDING for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.PENDING


# Statuses in which proposed_cost must be set, and outside of which it must be empty
COST_BEARING_STATUSES = frozenset(
    {
        TaskStatus.COST_PROPOSED,
        TaskStatus.USER_COUNTER_PROPOSED,
        TaskStatus.DELIVERY_COUNTER_PROPOSED,
        TaskStatus.COST_ACCEPTED,
        TaskStatus.NEGOTIATION_FINALIZED,
        TaskStatus.ASSIGNED,
    }
)


# The stored row has two phone columns
MAX_CONTACT_PHONES = 2


def as_utc(value: datetime) -> datetime:
    """Timezone-aware UTC datetime; naive values are taken to be UTC already."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


def open_pool_status(scheduled_at: datetime | None, at: datetime) -> TaskStatus:
    """Status of a task waiting for an agent: SCHEDULED while its time is still ahead, else PENDING."""
    if scheduled_at is not None and as_utc(scheduled_at) > as_utc(at):
        return TaskStatus.SCHEDULED
    return TaskStatus.PENDING


class TaskLocation(BaseModel):
    """A pickup/drop-off point attached to a task."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    address: str = Field(default="", description="Resolved, human-readable label")
    purpose: str | None = Field(default=None, description="What happens at this stop (e.g. 'pick up keys')")


class ContactPhone(BaseModel):
    """Phone number the agent can call about the task."""

    model_config = ConfigDict(frozen=True)

    number: str = Field(..., min_length=1)
    is_primary: bool = False


class StopNote(BaseModel):
    """Free-text note about one stop; index 0 is the main location."""

    model_config = ConfigDict(frozen=True)

    stop_index: int = Field(..., ge=0)
    note: str = Field(..., min_length=1)


class TaskRecord(BaseModel):
    """Immutable snapshot of a task and its negotiation fields.

    Every change produces a new record through evolve(), which re-runs validation
    so the cost invariants hold for every record the engine hands out.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Opaque task ID")
    user_id: str = Field(..., min_length=1, description="Requester (owner) user ID")
    description: str = Field(default="", description="What the requester needs done")
    location: TaskLocation
    additional_locations: tuple[TaskLocation, ...] = Field(default=())
    contacts: tuple[ContactPhone, ...] = Field(default=())
    scheduled_at: datetime | None = Field(default=None, description="When the task should happen")
    image_url: str | None = Field(default=None, description="Reference to an uploaded photo")
    status: TaskStatus = Field(default=TaskStatus.PENDING)

    # Negotiation
    reviewer_id: str | None = Field(default=None, description="Agent reviewing or pricing the task")
    agent_id: str | None = Field(default=None, description="Agent the task is assigned to")
    proposed_cost: Money | None = None
    cost_notes: str | None = None
    user_counter_cost: Money | None = None
    user_counter_notes: str | None = None
    accepted_cost: Money | None = None

    # Multi-stop progress
    stop_notes: tuple[StopNote, ...] = Field(default=(), description="At most one note per stop, ordered by stop")
    completed_stops: tuple[int, ...] = Field(default=(), description="Sorted indexes of stops the agent has finished")

    # Timestamps
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cost_proposed_at: datetime | None = None
    user_counter_at: datetime | None = None
    cost_accepted_at: datetime | None = None
    assigned_at: datetime | None = None
    completed_at: datetime | None = None

    version: int = Field(default=0, ge=0, description="Optimistic-concurrency version, owned by the repository")

    @field_validator(
        "scheduled_at",
        "created_at",
        "updated_at",
        "cost_proposed_at",
        "user_counter_at",
        "cost_accepted_at",
        "assigned_at",
        "completed_at",
    )
    @classmethod
    def _normalize_timestamps(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @field_validator("contacts")
    @classmethod
    def _normalize_contacts(cls, contacts: tuple[ContactPhone, ...]) -> tuple[ContactPhone, ...]:
        """Primary first; with no primary flagged, the first number becomes primary."""
        if len(contacts) > MAX_CONTACT_PHONES:
            msg = f"A task holds at most {MAX_CONTACT_PHONES} contact phones, got {len(contacts)}"
            raise ValueError(msg)
        primaries = [contact for contact in contacts if contact.is_primary]
        if len(primaries) > 1:
            msg = "A task cannot have more than one primary contact phone"
            raise ValueError(msg)
        if not contacts:
            return contacts
        if not primaries:
            return (contacts[0].model_copy(update={"is_primary": True}), *contacts[1:])
        return (*primaries, *(contact for contact in contacts if not contact.is_primary))

    @model_validator(mode="after")
    def _check_invariants(self) -> "TaskRecord":
        cost_expected = self.status in COST_BEARING_STATUSES
        if cost_expected and self.proposed_cost is None:
            msg = f"Task {self.id} in {self.status} must carry a proposed cost"
            raise ValueError(msg)
        if not cost_expected and self.proposed_cost is not None:
            msg = f"Task {self.id} in {self.status} must not carry a proposed cost"
            raise ValueError(msg)

        counter_expected = self.status == TaskStatus.USER_COUNTER_PROPOSED
        if counter_expected != (self.user_counter_cost is not None):
            msg = f"Task {self.id}: user counter cost is only valid in {TaskStatus.USER_COUNTER_PROPOSED}"
            raise ValueError(msg)

        stop_count = len(self.additional_locations) + 1
        indexes = [note.stop_index for note in self.stop_notes]
        if len(set(indexes)) != len(indexes) or any(index >= stop_count for index in indexes):
            msg = f"Task {self.id} has stop notes for unknown or repeated stops: {indexes}"
            raise ValueError(msg)
        if list(self.completed_stops) != sorted(set(self.completed_stops)) or any(
            index < 0 or index >= stop_count for index in self.completed_stops
        ):
            msg = f"Task {self.id} has invalid completed stops: {list(self.completed_stops)}"
            raise ValueError(msg)
        return self

    @classmethod
    def new(
        cls,
        *,
        task_id: str,
        user_id: str,
        location: TaskLocation,
        now: datetime,
        description: str = "",
        additional_locations: tuple[TaskLocation, ...] | list[TaskLocation] = (),
        contacts: tuple[ContactPhone, ...] | list[ContactPhone] = (),
        scheduled_at: datetime | None = None,
        image_url: str | None = None,
    ) -> "TaskRecord":
        """Create a task as the requester submits it.

        The task starts SCHEDULED when it is booked for a future time, otherwise PENDING.
        """
        return cls(
            id=task_id,
            user_id=user_id,
            description=description,
            location=location,
            additional_locations=tuple(additional_locations),
            contacts=tuple(contacts),
            scheduled_at=scheduled_at,
            image_url=image_url,
            status=open_pool_status(scheduled_at, now),
            created_at=now,
            updated_at=now,
        )

    def evolve(self, **changes: Any) -> "TaskRecord":
        """Return a validated copy with the given fields replaced."""
        data = {name: getattr(self, name) for name in type(self).model_fields}
        data.update(changes)
        return type(self).model_validate(data)

    @property
    def primary_contact(self) -> ContactPhone | None:
        # Contacts are normalized primary-first
        return self.contacts[0] if self.contacts else None

    @property
    def effective_cost(self) -> Money | None:
        """Cost used downstream: the agreed amount once accepted, else the open proposal."""
        return self.accepted_cost if self.accepted_cost is not None else self.proposed_cost

    @property
    def all_locations(self) -> tuple[TaskLocation, ...]:
        return (self.location, *self.additional_locations)

    @property
    def stop_count(self) -> int:
        return len(self.additional_locations) + 1

    def note_for(self, stop_index: int) -> str | None:
        return next((n.note for n in self.stop_notes if n.stop_index == stop_index), None)

    # Storage row mapping

    @classmethod
    def from_row(cls, row: dict[str, Any], *, currency: str) -> "TaskRecord":
        """Build a record from a stored task row (snake_case columns, major-unit costs)."""

        def _money(key: str) -> Money | None:
            value = row.get(key)
            if value is None:
                return None
            # Legacy rows store doubles; go through their shortest repr, never float arithmetic
            return Money.from_major(str(value) if isinstance(value, float) else value, currency)

        def _when(key: str) -> datetime | None:
            value = row.get(key)
            if value is None or isinstance(value, datetime):
                return value
            return datetime.fromisoformat(value)

        contacts = []
        if row.get("contact_phone"):
            contacts.append(ContactPhone(number=row["contact_phone"], is_primary=True))
        if row.get("contact_phone_2"):
            contacts.append(ContactPhone(number=row["contact_phone_2"]))

        location_notes = row.get("location_notes") or {}
        stop_notes = sorted(
            (
                StopNote(stop_index=int(key.removeprefix("location_")), note=value)
                for key, value in location_notes.items()
                if key.startswith("location_") and key.removeprefix("location_").isdigit() and value
            ),
            key=lambda n: n.stop_index,
        )

        status = TaskStatus.parse(row.get("status"))
        # Older rows keep stale quotes after a task moves on; only carry what the status allows
        proposed_cost = _money("proposed_cost") if status in COST_BEARING_STATUSES else None
        user_counter_cost = _money("user_counter_cost") if status == TaskStatus.USER_COUNTER_PROPOSED else None
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            description=row.get("description") or "",
            location=TaskLocation(
                latitude=row["latitude"],
                longitude=row["longitude"],
                address=row.get("location_name") or "",
                purpose=row.get("location_purpose"),
            ),
            additional_locations=tuple(
                TaskLocation.model_validate(item) for item in row.get("additional_locations") or ()
            ),
            contacts=tuple(contacts),
            scheduled_at=_when("scheduled_at"),
            image_url=row.get("image_url"),
            status=status,
            reviewer_id=row.get("reviewer_id"),
            agent_id=row.get("delivery_man_id"),
            proposed_cost=proposed_cost,
            cost_notes=row.get("cost_notes"),
            user_counter_cost=user_counter_cost,
            user_counter_notes=row.get("user_counter_notes"),
            accepted_cost=_money("accepted_cost"),
            stop_notes=tuple(stop_notes),
            completed_stops=tuple(sorted(set(row.get("location_completions") or ()))),
            created_at=_when("created_at"),
            updated_at=_when("updated_at"),
            cost_proposed_at=_when("cost_proposed_at"),
            user_counter_at=_when("user_counter_at"),
            cost_accepted_at=_when("cost_accepted_at"),
            assigned_at=_when("assigned_at"),
            completed_at=_when("completed_at"),
            version=row.get("version") or 0,
        )

    def to_row(self) -> dict[str, Any]:
        """Serialize to the stored row shape; costs as major-unit decimal strings."""

        def _major(money: Money | None) -> str | None:
            return str(money.to_major()) if money is not None else None

        def _iso(value: datetime | None) -> str | None:
            return value.isoformat() if value is not None else None

        primary = self.primary_contact
        secondary = self.contacts[1] if len(self.contacts) > 1 else None
        return {
            "id": self.id,
            "user_id": self.user_id,
            "description": self.description,
            "location_name": self.location.address,
            "location_purpose": self.location.purpose,
            "latitude": self.location.latitude,
            "longitude": self.location.longitude,
            "additional_locations": [loc.model_dump() for loc in self.additional_locations],
            "contact_phone": primary.number if primary else None,
            "contact_phone_2": secondary.number if secondary else None,
            "scheduled_at": _iso(self.scheduled_at),
            "image_url": self.image_url,
            "status": self.status.value,
            "reviewer_id": self.reviewer_id,
            "delivery_man_id": self.agent_id,
            "proposed_cost": _major(self.proposed_cost),
            "cost_notes": self.cost_notes,
            "user_counter_cost": _major(self.user_counter_cost),
            "user_counter_notes": self.user_counter_notes,
            "accepted_cost": _major(self.accepted_cost),
            "location_notes": {f"location_{n.stop_index}": n.note for n in self.stop_notes},
            "location_completions": list(self.completed_stops),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "cost_proposed_at": _iso(self.cost_proposed_at),
            "user_counter_at": _iso(self.user_counter_at),
            "cost_accepted_at": _iso(self.cost_accepted_at),
            "assigned_at": _iso(self.assigned_at),
            "completed_at": _iso(self.completed_at),
            "version": self.version,
        }


def cost_currency_of(task: TaskRecord) -> str | None:
    """Currency already in play on a task, if any cost has been quoted."""
    for money in (task.proposed_cost, task.user_counter_cost, task.accepted_cost):
        if money is not None:
            return money.currency
    return None

