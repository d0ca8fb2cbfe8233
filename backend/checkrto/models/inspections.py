from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class InspectionStep(db.Model):
    """
    Workshop-configured checklist step.

    Configuration data owned by the workshop settings collaborator; the core
    reads the active steps, in position order, to seed new attempts.
    """
    __tablename__ = "inspection_steps"
    __table_args__ = (
        db.UniqueConstraint("workshop_id", "name", name="uq_inspection_steps_workshop_name"),
        db.Index("ix_inspection_steps_workshop_position", "workshop_id", "position"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    description = db.Column(db.Text, nullable=True)
    position = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    def to_dict(self) -> dict:
        return {
            "step_id": self.id,
            "workshop_id": self.workshop_id,
            "name": self.name,
            "description": self.description,
            "order": self.position,
            "is_active": self.is_active,
        }


class StepObservation(db.Model):
    """Canned observation text an inspector can tick for a step."""
    __tablename__ = "step_observations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    step_id = db.Column(db.Integer, db.ForeignKey("inspection_steps.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    step = db.relationship("InspectionStep", backref=db.backref("observations", lazy=True))


class Inspection(db.Model):
    """
    One inspection attempt (first or second) of an application.

    The unique (application_id, is_second) constraint is the storage-level
    guarantee that an application never gets a duplicate attempt.
    """
    __tablename__ = "inspections"
    __table_args__ = (
        db.UniqueConstraint("application_id", "is_second", name="uq_inspections_application_kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    application_id = db.Column(db.Integer, db.ForeignKey("applications.id"), nullable=False, index=True)
    is_second = db.Column(db.Boolean, nullable=False, default=False)
    global_observations = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    application = db.relationship("Application", backref=db.backref("inspections", lazy=True))
    step_results = db.relationship(
        "InspectionStepResult",
        backref="inspection",
        lazy=True,
        order_by="InspectionStepResult.position",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, include_steps: bool = True) -> dict:
        data = {
            "inspection_id": self.id,
            "application_id": self.application_id,
            "is_second": self.is_second,
            "global_observations": self.global_observations,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_steps:
            data["steps"] = [r.to_dict() for r in self.step_results]
        return data


class InspectionStepResult(db.Model):
    """Status of one configured step within one attempt; NULL status means Unset."""
    __tablename__ = "inspection_step_results"
    __table_args__ = (
        db.UniqueConstraint("inspection_id", "step_id", name="uq_step_results_inspection_step"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inspection_id = db.Column(db.Integer, db.ForeignKey("inspections.id"), nullable=False, index=True)
    step_id = db.Column(db.Integer, db.ForeignKey("inspection_steps.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=True)
    observations = db.Column(db.Text, nullable=True)

    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    step = db.relationship("InspectionStep")

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "name": self.step.name if self.step else None,
            "order": self.position,
            "status": self.status,
            "observations": self.observations,
        }


class InspectionObservationCheck(db.Model):
    """A canned observation ticked for a step within one attempt."""
    __tablename__ = "inspection_observation_checks"
    __table_args__ = (
        db.UniqueConstraint("inspection_id", "observation_id", name="uq_observation_checks_inspection_obs"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inspection_id = db.Column(db.Integer, db.ForeignKey("inspections.id"), nullable=False, index=True)
    step_id = db.Column(db.Integer, db.ForeignKey("inspection_steps.id"), nullable=False, index=True)
    observation_id = db.Column(db.Integer, db.ForeignKey("step_observations.id"), nullable=False)
