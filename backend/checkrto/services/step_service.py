# Overview: Workshop step configuration; ordered checklist steps and canned observations.

"""
Step configuration collaborator.

Each workshop owns an ordered list of checklist steps. The inspection
tracker only reads it (get_steps) when seeding a new attempt; editing the
configuration never alters attempts that already exist.

Deactivated steps are kept so old attempts still resolve their names.
"""

from __future__ import annotations

from ..extensions import db
from ..errors import InvalidFormatError, NotFoundError
from ..models import InspectionStep, StepObservation
from .workshop_service import require_workshop


def get_steps(workshop_id: int, *, include_inactive: bool = False) -> list[InspectionStep]:
    """Configured steps of a workshop in (order, id) order."""
    q = db.session.query(InspectionStep).filter(InspectionStep.workshop_id == workshop_id)
    if not include_inactive:
        q = q.filter(InspectionStep.is_active.is_(True))
    return q.order_by(InspectionStep.position.asc(), InspectionStep.id.asc()).all()


def require_step(step_id: int, workshop_id: int) -> InspectionStep:
    step = db.session.get(InspectionStep, step_id)
    if step is None or step.workshop_id != workshop_id:
        raise NotFoundError(
            f"Step {step_id} not found",
            entity_type="step",
            entity_id=step_id,
        )
    return step


def set_steps(workshop_id: int, steps: list[dict]) -> list[InspectionStep]:
    """
    Replace a workshop's step configuration.

    Each item: {"name": str, "order": int (optional), "description": str (optional)}.
    Steps are matched by name: existing ones are updated and reactivated,
    new ones created, and steps missing from the list deactivated.
    """
    require_workshop(workshop_id)

    seen: set[str] = set()
    cleaned = []
    for index, item in enumerate(steps or []):
        name = str(item.get("name") or "").strip()
        if not name:
            raise InvalidFormatError(f"Step #{index + 1} has no name", entity_type="step")
        if name in seen:
            raise InvalidFormatError(f"Duplicate step name '{name}'", entity_type="step")
        seen.add(name)
        order = item.get("order", index + 1)
        if not isinstance(order, int) or isinstance(order, bool):
            raise InvalidFormatError(f"Step '{name}' order must be an integer", entity_type="step")
        cleaned.append((name, order, item.get("description")))

    existing = {
        s.name: s
        for s in db.session.query(InspectionStep).filter_by(workshop_id=workshop_id).all()
    }

    for name, order, description in cleaned:
        step = existing.get(name)
        if step is None:
            step = InspectionStep(workshop_id=workshop_id, name=name)
            db.session.add(step)
        step.position = order
        step.description = description
        step.is_active = True

    for name, step in existing.items():
        if name not in seen:
            step.is_active = False

    db.session.commit()
    return get_steps(workshop_id)


def set_step_observations(step_id: int, workshop_id: int, descriptions: list[str]) -> list[StepObservation]:
    """Replace the canned observations offered for a step."""
    step = require_step(step_id, workshop_id)

    wanted = [d.strip() for d in descriptions if d and d.strip()]
    current = {o.description: o for o in step.observations}

    for text in wanted:
        obs = current.get(text)
        if obs is None:
            db.session.add(StepObservation(step_id=step.id, description=text, is_active=True))
        else:
            obs.is_active = True

    for text, obs in current.items():
        if text not in wanted:
            obs.is_active = False

    db.session.commit()
    return list_step_observations(step_id)


def list_step_observations(step_id: int) -> list[StepObservation]:
    return (
        db.session.query(StepObservation)
        .filter(StepObservation.step_id == step_id, StepObservation.is_active.is_(True))
        .order_by(StepObservation.id.asc())
        .all()
    )
