"""
Tests for dual-write orchestration

Tests cover:
- Remote then local writes per operation
- Queueing on auth, remote and local failures (no silent loss)
- Validation and mapping short-circuits (never queued)
- Status translation on incident updates and approvals
"""

from unittest.mock import patch

import httpx

from portal_sync.models import Incident, Reservation
from portal_sync.services.dual_write import (
    DualWriteOrchestrator,
    IncidentRequest,
    ReservationRequest,
)
from portal_sync.services.errors import (
    AuthError,
    InputError,
    LocalStoreError,
    MappingError,
    NetworkError,
    PortalApplicationError,
)
from portal_sync.services.local_store import StoreResult
from portal_sync.services.portal_session import PortalCredential, PortalSessionStore, SessionContext
from portal_sync.services.sync_queue import (
    IncidentLocalPayload,
    ReservationLocalPayload,
    SyncQueueStore,
)

from conftest import login_ok


def reservation_request(**overrides):
    values = dict(
        razon_social="Ana Resident",
        cantidad_personas=8,
        correo="resident@example.com",
        celular="0981123456",
        observacion="Cumpleaños",
    )
    values.update(overrides)
    return ReservationRequest(**values)


def reservation_local(catalog, unit=None):
    return ReservationLocalPayload(
        user_id=catalog.user.id,
        amenity_id=catalog.amenity.id,
        unit_id=(unit or catalog.unit).id,
        reservation_date="2026-11-14",
        start_time="18:00",
        end_time="23:00",
        notes="Cumpleaños",
    )


def incident_local(catalog, **overrides):
    values = dict(
        user_id=catalog.user.id,
        building_id=catalog.building.id,
        unit_id=catalog.unit.id,
        title="Pérdida de agua",
        description="Gotea el techo del baño",
        priority="high",
    )
    values.update(overrides)
    return IncidentLocalPayload(**values)


def make_orchestrator(db, client):
    return DualWriteOrchestrator(db, client=client)


class TestCreateReservation:

    def test_remote_then_local(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "reservas", (200, {"status": "ok", "data": {"idReserva": 900}}))

        result = make_orchestrator(db, client).create_reservation(
            session, reservation_request(), reservation_local(catalog)
        )

        assert result.ok and not result.queued
        assert result.record.portal_id == 900
        assert result.record.status == "pending"
        assert SyncQueueStore(db).all() == []

        sent = portal.bodies("POST", "reservas")[0]
        assert sent["idUnidad"] == 101
        assert sent["idQuincho"] == 201
        assert sent["cantidadPersonas"] == 8
        assert sent["abonado"] == "NO"
        assert sent["fecha"] == "2026-11-14"

    def test_invalid_fields_are_not_queued(self, db, portal, client, session, catalog):
        result = make_orchestrator(db, client).create_reservation(
            session, reservation_request(cantidad_personas=0), reservation_local(catalog)
        )

        assert isinstance(result.error, InputError)
        assert not result.accepted
        assert portal.calls == []
        assert SyncQueueStore(db).all() == []

    def test_unmapped_unit_short_circuits(self, db, portal, client, session, catalog):
        result = make_orchestrator(db, client).create_reservation(
            session, reservation_request(), reservation_local(catalog, unit=catalog.unmapped_unit)
        )

        assert isinstance(result.error, MappingError)
        assert not result.error.retryable
        assert not result.queued
        assert portal.calls == []
        assert SyncQueueStore(db).all() == []

    def test_auth_failure_queues_remote_job(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", (401, {"message": "Correo no registrado"}))

        result = make_orchestrator(db, client).create_reservation(
            session, reservation_request(), reservation_local(catalog)
        )

        assert result.queued
        assert isinstance(result.error, AuthError)
        assert portal.count("POST", "reservas") == 0

        jobs = SyncQueueStore(db).all()
        assert [j.type for j in jobs] == ["remote-create-reservation"]
        assert jobs[0].id == result.job_id
        assert jobs[0].last_error == "Correo no registrado"
        assert jobs[0].remote_payload.id_unidad == 101

    def test_remote_failure_queues_remote_job(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "reservas", httpx.ConnectError("portal down"))

        result = make_orchestrator(db, client).create_reservation(
            session, reservation_request(), reservation_local(catalog)
        )

        assert result.queued
        assert isinstance(result.error, NetworkError)
        assert db.query(Reservation).count() == 0
        assert [j.type for j in SyncQueueStore(db).all()] == ["remote-create-reservation"]

    def test_remote_and_local_down_leaves_exactly_one_job(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "reservas", (500, {"message": "Internal"}))
        orchestrator = make_orchestrator(db, client)

        with patch.object(
            orchestrator.store, "create_reservation",
            return_value=StoreResult(error=LocalStoreError(message="disk full"))
        ):
            result = orchestrator.create_reservation(session, reservation_request(), reservation_local(catalog))

        assert result.queued
        assert len(SyncQueueStore(db).all()) == 1

    def test_local_failure_queues_local_job_with_remote_id(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "reservas", (200, {"data": {"idReserva": 901}}))
        orchestrator = make_orchestrator(db, client)

        with patch.object(
            orchestrator.store, "create_reservation",
            return_value=StoreResult(error=LocalStoreError(message="disk full"))
        ):
            result = orchestrator.create_reservation(session, reservation_request(), reservation_local(catalog))

        assert result.queued
        assert isinstance(result.error, LocalStoreError)
        jobs = SyncQueueStore(db).all()
        assert [j.type for j in jobs] == ["local-create-reservation"]
        assert jobs[0].local_payload.portal_id == 901

    def test_existing_row_is_reused_and_backfilled(self, db, portal, client, session, catalog):
        orchestrator = make_orchestrator(db, client)
        local = reservation_local(catalog)
        orchestrator.store.create_reservation(
            local.user_id, local.amenity_id, local.reservation_date, local.start_time, local.end_time
        )
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "reservas", (200, {"data": {"idReserva": 902}}))

        result = orchestrator.create_reservation(session, reservation_request(), local)

        assert result.ok
        assert db.query(Reservation).count() == 1
        assert db.query(Reservation).one().portal_id == 902


class TestCreateIncident:

    def test_remote_then_local(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "incidencias", (200, {"idIncidencia": 44}))

        result = make_orchestrator(db, client).create_incident(
            session,
            IncidentRequest(titulo="Pérdida de agua", descripcion="Gotea el techo", prioridad="ALTA"),
            incident_local(catalog),
        )

        assert result.ok
        assert result.record.portal_id == 44
        assert result.record.status == "open"
        sent = portal.bodies("POST", "incidencias")[0]
        assert sent == {
            "idPropiedad": 10,
            "idUnidad": 101,
            "titulo": "Pérdida de agua",
            "descripcion": "Gotea el techo",
            "prioridad": "ALTA",
        }

    def test_optional_amenity_is_resolved(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "incidencias", (200, {"data": {"idIncidencia": 45}}))

        make_orchestrator(db, client).create_incident(
            session,
            IncidentRequest(titulo="Parrilla rota", descripcion="No enciende", prioridad="MEDIA"),
            incident_local(catalog, amenity_id=catalog.amenity.id),
        )

        assert portal.bodies("POST", "incidencias")[0]["idQuincho"] == 201

    def test_unmapped_building(self, db, portal, client, session, catalog):
        catalog.building.portal_id = None
        db.commit()

        result = make_orchestrator(db, client).create_incident(
            session,
            IncidentRequest(titulo="t", descripcion="d", prioridad="BAJA"),
            incident_local(catalog),
        )

        assert isinstance(result.error, MappingError)
        assert SyncQueueStore(db).all() == []

    def test_portal_rejection_is_queued(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "incidencias", (400, {"error": {"message": "Unidad bloqueada", "code": 409}}))

        result = make_orchestrator(db, client).create_incident(
            session,
            IncidentRequest(titulo="t", descripcion="d", prioridad="BAJA"),
            incident_local(catalog),
        )

        assert result.queued
        assert isinstance(result.error, PortalApplicationError)
        assert result.error.status == 409
        assert [j.type for j in SyncQueueStore(db).all()] == ["remote-create-incident"]


class TestUpdateIncident:

    def _incident(self, db, catalog, portal_id=55):
        incident = Incident(
            user_id=catalog.user.id,
            building_id=catalog.building.id,
            title="Pérdida de agua",
            description="Gotea",
            portal_id=portal_id,
        )
        db.add(incident)
        db.commit()
        return incident

    def test_status_is_translated(self, db, portal, client, session, catalog):
        incident = self._incident(db, catalog)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "incidencias/55", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).update_incident(
            session, {"estado": "RESUELTA"}, local_incident_id=incident.id
        )

        assert result.ok
        db.refresh(incident)
        assert incident.status == "resolved"
        assert incident.resolved_at is not None
        assert portal.bodies("PUT", "incidencias/55") == [{"estado": "RESUELTA"}]

    def test_unmapped_status_keeps_other_fields(self, db, portal, client, session, catalog):
        incident = self._incident(db, catalog)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "incidencias/55", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).update_incident(
            session,
            {"estado": "ESCALADA", "titulo": "Pérdida grave"},
            local_incident_id=incident.id,
            local_updates={"title": "Pérdida grave", "status": "in_progress"},
        )

        assert result.ok
        db.refresh(incident)
        assert incident.title == "Pérdida grave"
        assert incident.status == "open"

    def test_local_row_found_by_portal_id(self, db, portal, client, session, catalog):
        incident = self._incident(db, catalog, portal_id=60)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "incidencias/60", (200, {"status": "ok"}))

        make_orchestrator(db, client).update_incident(session, {"estado": "CERRADA"}, portal_incident_id=60)

        db.refresh(incident)
        assert incident.status == "closed"

    def test_missing_portal_id(self, db, portal, client, session, catalog):
        incident = self._incident(db, catalog, portal_id=None)

        result = make_orchestrator(db, client).update_incident(
            session, {"estado": "CERRADA"}, local_incident_id=incident.id
        )

        assert isinstance(result.error, MappingError)
        assert portal.calls == []

    def test_local_failure_queues_local_update(self, db, portal, client, session, catalog):
        incident = self._incident(db, catalog)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "incidencias/55", (200, {"status": "ok"}))
        orchestrator = make_orchestrator(db, client)

        with patch.object(
            orchestrator.store, "update_incident",
            return_value=StoreResult(error=LocalStoreError(message="locked"))
        ):
            result = orchestrator.update_incident(session, {"estado": "EN_PROCESO"}, local_incident_id=incident.id)

        assert result.queued
        jobs = SyncQueueStore(db).all()
        assert [j.type for j in jobs] == ["local-update-incident"]
        assert jobs[0].local_payload.updates == {"status": "in_progress"}

    def test_invalid_change_value_is_rejected(self, db, portal, client, session):
        result = make_orchestrator(db, client).update_incident(session, {"prioridad": 3}, portal_incident_id=5)

        assert isinstance(result.error, InputError)
        assert not result.accepted
        assert SyncQueueStore(db).all() == []
        assert portal.calls == []

    def test_incident_id_in_changes_is_rejected(self, db, portal, client, session):
        result = make_orchestrator(db, client).update_incident(
            session, {"incident_id": 9, "estado": "CERRADA"}, portal_incident_id=5
        )

        assert isinstance(result.error, InputError)
        assert portal.calls == []

    def test_non_numeric_portal_id(self, db, portal, client, session):
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "incidencias/INC-7", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).update_incident(
            session, {"titulo": "Ascensor detenido"}, portal_incident_id="INC-7"
        )

        assert result.ok
        assert portal.bodies("PUT", "incidencias/INC-7") == [{"titulo": "Ascensor detenido"}]


class TestApproveReservation:

    def _reservation(self, db, catalog, portal_id=700):
        reservation = Reservation(
            user_id=catalog.user.id,
            amenity_id=catalog.amenity.id,
            reservation_date="2026-11-20",
            start_time="12:00",
            end_time="16:00",
            portal_id=portal_id,
        )
        db.add(reservation)
        db.commit()
        return reservation

    def test_approves_locally(self, db, portal, client, session, catalog):
        reservation = self._reservation(db, catalog)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "approvals/reservations/700", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).approve_reservation(session, local_reservation_id=reservation.id)

        assert result.ok
        db.refresh(reservation)
        assert reservation.status == "approved"

    def test_portal_reported_status_wins(self, db, portal, client, session, catalog):
        reservation = self._reservation(db, catalog)
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "approvals/reservations/700", (200, {"data": {"estado": "RECHAZADA"}}))

        make_orchestrator(db, client).approve_reservation(session, local_reservation_id=reservation.id)

        db.refresh(reservation)
        assert reservation.status == "rejected"

    def test_remote_only_when_no_local_row(self, db, portal, client, session):
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "approvals/reservations/701", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).approve_reservation(session, portal_reservation_id=701)

        assert result.ok
        assert result.record is None

    def test_non_numeric_portal_id(self, db, portal, client, session):
        portal.on("POST", "auth/login", login_ok())
        portal.on("PUT", "approvals/reservations/RES-9", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).approve_reservation(session, portal_reservation_id="RES-9")

        assert result.ok
        assert portal.count("PUT", "approvals/reservations/RES-9") == 1

    def test_unmapped_reservation(self, db, portal, client, session, catalog):
        reservation = self._reservation(db, catalog, portal_id=None)
        result = make_orchestrator(db, client).approve_reservation(session, local_reservation_id=reservation.id)

        assert isinstance(result.error, MappingError)
        assert portal.calls == []


class TestProvisionUser:

    def test_synonym_fields(self, db, portal, client, session):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "auth/usuarios", (200, {"status": "ok"}))

        result = make_orchestrator(db, client).provision_user(
            session, {"fullName": " Nuevo Usuario ", "email": "nuevo@example.com"}
        )

        assert result.ok
        assert portal.bodies("POST", "auth/usuarios") == [
            {"nombreCompleto": "Nuevo Usuario", "correo": "nuevo@example.com"}
        ]

    def test_missing_email(self, db, portal, client, session):
        result = make_orchestrator(db, client).provision_user(session, {"nombreCompleto": "Sin Correo"})

        assert isinstance(result.error, InputError)
        assert portal.calls == []

    def test_failure_is_queued(self, db, portal, client, session):
        portal.on("POST", "auth/login", login_ok())
        portal.on("POST", "auth/usuarios", (503, {}))

        result = make_orchestrator(db, client).provision_user(
            session, {"nombreCompleto": "Nuevo Usuario", "correo": "nuevo@example.com"}
        )

        assert result.queued
        assert result.error.message == "Unexpected portal API error"
        assert [j.type for j in SyncQueueStore(db).all()] == ["remote-provision-user"]

    def test_rejected_credential_is_cleared(self, db, portal, client, session):
        PortalSessionStore(db).set(PortalCredential(token="expired"))
        portal.on("POST", "auth/usuarios", (401, {"message": "Token expirado"}))

        result = make_orchestrator(db, client).provision_user(
            session, {"nombreCompleto": "Nuevo Usuario", "correo": "nuevo.com"}
        )

        assert result.queued
        assert session.credential is None
        assert PortalSessionStore(db).get() is None
        assert portal.count("POST", "auth/login") == 0


class TestReplay:

    def test_remote_replay_without_session_fails_fast(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", (401, {"message": "no"}))
        orchestrator = make_orchestrator(db, client)
        orchestrator.create_reservation(session, reservation_request(), reservation_local(catalog))
        job = SyncQueueStore(db).all()[0]
        calls_before = len(portal.calls)

        result = orchestrator.replay(SessionContext(), job)

        assert isinstance(result.error, AuthError)
        assert len(portal.calls) == calls_before

    def test_remote_replay_does_not_requeue_remote_failure(self, db, portal, client, session, catalog):
        portal.on("POST", "auth/login", (401, {"message": "no"}))
        orchestrator = make_orchestrator(db, client)
        orchestrator.create_reservation(session, reservation_request(), reservation_local(catalog))
        job = SyncQueueStore(db).all()[0]
        portal.on("POST", "reservas", (500, {"message": "still down"}))

        result = orchestrator.replay(SessionContext(credential=PortalCredential(token="t")), job)

        assert not result.accepted
        assert result.error.message == "still down"
        assert len(SyncQueueStore(db).all()) == 1
