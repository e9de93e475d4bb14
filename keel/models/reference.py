"""
Reference rows owned by the external vessel / identity administration.

Models:
    - ShipType:  vessel taxonomy (tanker, bulk carrier, ...)
    - Vessel:    a ship a cadet can be posted to
    - Cadet:     a trainee mariner and the category that selects their task set

Only the columns the familiarisation core reads are kept here. Creating,
editing and retiring these rows belongs to the reference-data service; the
core never deletes them.
"""

from datetime import datetime, timezone

from keel.models import db


class ShipType(db.Model):
    """Vessel taxonomy entry."""

    __tablename__ = "ship_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False, unique=True)

    vessels = db.relationship("Vessel", back_populates="ship_type", lazy="select")

    def to_dict(self):
        return {"id": self.id, "name": self.name}

    def __repr__(self):
        return f"<ShipType {self.id}: {self.name}>"


class Vessel(db.Model):
    """A registered vessel. ``ship_type_id`` drives template applicability."""

    __tablename__ = "vessels"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    imo_number = db.Column(db.String(20), nullable=True, unique=True)
    ship_type_id = db.Column(
        db.Integer,
        db.ForeignKey("ship_types.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    ship_type = db.relationship("ShipType", back_populates="vessels")

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "imo_number": self.imo_number,
            "ship_type_id": self.ship_type_id,
            "ship_type_name": self.ship_type.name if self.ship_type else None,
            "is_active": self.is_active,
        }

    def __repr__(self):
        return f"<Vessel {self.id}: {self.name}>"


class Cadet(db.Model):
    """
    A trainee mariner.

    ``category`` is one of ``CADET_CATEGORIES`` (DECK, ENGINE, ETO, CATERING,
    RATING) and selects which task templates apply. Cadet rows are never
    hard-deleted: assignment and completion history reference them.
    """

    __tablename__ = "cadets"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    category = db.Column(
        db.String(20), nullable=False,
        comment="DECK | ENGINE | ETO | CATERING | RATING",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "full_name": self.full_name,
            "email": self.email,
            "category": self.category,
        }

    def __repr__(self):
        return f"<Cadet {self.id}: {self.full_name} ({self.category})>"
