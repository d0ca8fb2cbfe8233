from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


# Application status values (wire values used by the workshop screens)
STATUS_PENDIENTE = "Pendiente"
STATUS_EN_CURSO = "En curso"
STATUS_A_INSPECCIONAR = "A Inspeccionar"
STATUS_SEGUNDA_INSPECCION = "Segunda Inspección"
STATUS_EMITIR_CRT = "Emitir CRT"
STATUS_COMPLETADO = "Completado"
STATUS_CANCELADO = "Cancelado"

APPLICATION_STATUSES = (
    STATUS_PENDIENTE,
    STATUS_EN_CURSO,
    STATUS_A_INSPECCIONAR,
    STATUS_SEGUNDA_INSPECCION,
    STATUS_EMITIR_CRT,
    STATUS_COMPLETADO,
    STATUS_CANCELADO,
)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETADO, STATUS_CANCELADO})

# Inspection results
RESULT_APTO = "Apto"
RESULT_CONDICIONAL = "Condicional"
RESULT_RECHAZADO = "Rechazado"

RESULTS = (RESULT_APTO, RESULT_CONDICIONAL, RESULT_RECHAZADO)


class Application(db.Model):
    """
    One vehicle's technical-inspection case.

    LIFECYCLE: created Pendiente, never deleted, terminal in Completado or
    Cancelado. result and result_2 are write-once slots; result_2 can only be
    written when result is Condicional.

    Concurrency: version_id is the optimistic lock. ORM flushes check it
    (StaleDataError on a lost race) and conditional UPDATEs bump it.
    """
    __tablename__ = "applications"
    __table_args__ = (
        db.Index("ix_applications_workshop_status", "workshop_id", "status"),
        db.Index("ix_applications_workshop_plate", "workshop_id", "license_plate"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    workshop_id = db.Column(db.Integer, db.ForeignKey("workshops.id"), nullable=False, index=True)

    status = db.Column(db.String(32), nullable=False, default=STATUS_PENDIENTE, index=True)
    result = db.Column(db.String(16), nullable=True)
    result_2 = db.Column(db.String(16), nullable=True)

    license_plate = db.Column(db.String(16), nullable=False, index=True)

    # Opaque references to owner/driver records held by the intake collaborator
    owner_ref = db.Column(db.String(64), nullable=True)
    driver_ref = db.Column(db.String(64), nullable=True)

    inspection_1_date = db.Column(db.DateTime(timezone=True), nullable=True)
    inspection_2_date = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    workshop = db.relationship("Workshop", backref=db.backref("applications", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Application id={self.id} status={self.status!r} plate={self.license_plate!r}>"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def state(self) -> dict:
        """The (status, result, result_2) tuple polled by certificate issuance."""
        return {
            "status": self.status,
            "result": self.result,
            "result_2": self.result_2,
        }

    def to_dict(self) -> dict:
        return {
            "application_id": self.id,
            "workshop_id": self.workshop_id,
            "status": self.status,
            "result": self.result,
            "result_2": self.result_2,
            "license_plate": self.license_plate,
            "owner_ref": self.owner_ref,
            "driver_ref": self.driver_ref,
            "inspection_1_date": to_utc_z(self.inspection_1_date),
            "inspection_2_date": to_utc_z(self.inspection_2_date),
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
