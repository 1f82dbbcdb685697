from __future__ import annotations

from ..extensions import db
from loyalty.time_utils import to_utc_z


event_organizers = db.Table(
    "event_organizers",
    db.Column("event_id", db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)

event_guests = db.Table(
    "event_guests",
    db.Column("event_id", db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), primary_key=True),
    db.Column("user_id", db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Event(db.Model):
    """
    Event with guest capacity and a points budget.

    INVARIANTS:
    - space_remain is null iff capacity is null; otherwise it equals
      capacity - len(guests) after every committed change
    - points_remain + points_awarded is the total budget; awards move
      points from remain to awarded, only manager edits change the total
    - points_awarded never decreases
    """
    __tablename__ = "events"
    __table_args__ = (
        db.CheckConstraint("points_remain >= 0", name="ck_events_points_remain_non_negative"),
        db.CheckConstraint("points_awarded >= 0", name="ck_events_points_awarded_non_negative"),
        db.CheckConstraint("space_remain IS NULL OR space_remain >= 0", name="ck_events_space_remain_non_negative"),
        db.CheckConstraint("start_time < end_time", name="ck_events_window"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=False, default="")
    location = db.Column(db.String(255), nullable=False)

    start_time = db.Column(db.DateTime, nullable=False, index=True)
    end_time = db.Column(db.DateTime, nullable=False, index=True)

    capacity = db.Column(db.Integer, nullable=True)
    space_remain = db.Column(db.Integer, nullable=True)

    points_remain = db.Column(db.Integer, nullable=False, default=0)
    points_awarded = db.Column(db.Integer, nullable=False, default=0)

    published = db.Column(db.Boolean, nullable=False, default=False, index=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    organizers = db.relationship(
        "User",
        secondary=event_organizers,
        lazy="selectin",
        order_by="User.id",
        backref=db.backref("organizing_events", lazy=True),
    )
    guests = db.relationship(
        "User",
        secondary=event_guests,
        lazy="selectin",
        order_by="User.id",
        backref=db.backref("attending_events", lazy=True),
    )

    @property
    def total_points(self) -> int:
        return self.points_remain + self.points_awarded

    @property
    def num_guests(self) -> int:
        return len(self.guests)

    def is_organizer(self, user_id: int) -> bool:
        return any(o.id == user_id for o in self.organizers)

    def is_guest(self, user_id: int) -> bool:
        return any(g.id == user_id for g in self.guests)

    def to_public_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "startTime": to_utc_z(self.start_time),
            "endTime": to_utc_z(self.end_time),
            "capacity": self.capacity,
            "organizers": [o.to_summary() for o in self.organizers],
            "numGuests": self.num_guests,
        }

    def to_dict(self) -> dict:
        data = self.to_public_dict()
        data.update({
            "spaceRemain": self.space_remain,
            "pointsRemain": self.points_remain,
            "pointsAwarded": self.points_awarded,
            "published": self.published,
            "guests": [g.to_summary() for g in self.guests],
        })
        return data

    def __repr__(self) -> str:
        return f"<Event {self.id} space={self.space_remain}/{self.capacity} points={self.points_remain}+{self.points_awarded}>"
