from .tenancy import Workshop
from .vehicles import Vehicle
from .stickers import StickerOrder, Sticker
from .applications import Application
from .inspections import InspectionStep, StepObservation, Inspection, InspectionStepResult, InspectionObservationCheck
from .audit import AuditEvent

__all__ = [
    'Workshop',
    'Vehicle',
    'StickerOrder', 'Sticker',
    'Application',
    'InspectionStep', 'StepObservation', 'Inspection', 'InspectionStepResult', 'InspectionObservationCheck',
    'AuditEvent',
]
