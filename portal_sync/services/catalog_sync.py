"""
Portal catalog sync.

Pulls properties, units and amenities from the Portal and upserts them into the
local buildings/units/amenities tables so later writes can resolve Portal ids.
Rows are matched by portal_id first, then by name within the parent building.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.property import Amenity, Building, Unit
from ..utils.portal_payload import read_boolean, read_number, read_string, to_portal_list
from .errors import PortalSyncError
from .local_store import LocalStore
from .portal_auth import AuthSessionManager
from .portal_client import PortalClient
from .portal_session import SessionContext

logger = logging.getLogger(__name__)

PROPERTY_ID_KEYS = ["idPropiedad", "id_propiedad", "propiedadId", "propiedad_id"]
PROPERTY_NAME_KEYS = ["nombre", "name", "razonSocial", "razon_social", "propiedad"]
PROPERTY_ADDRESS_KEYS = ["direccion", "address", "domicilio", "ubicacion"]

UNIT_ID_KEYS = ["idUnidad", "id_unidad", "unidadId", "unidad_id"]
UNIT_NUMBER_KEYS = ["unidad", "unit_number", "numero", "numeroUnidad", "nro_unidad"]

AMENITY_ID_KEYS = ["idAmenity", "idQuincho", "amenity_id", "id_amenity"]


@dataclass
class CatalogSyncResult:
    buildings: int = 0
    units: int = 0
    amenities: int = 0
    errors: List[str] = field(default_factory=list)
    error: Optional[PortalSyncError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": {"buildings": self.buildings, "units": self.units, "amenities": self.amenities},
            "errors": self.errors,
            "error": self.error.to_dict() if self.error else None,
        }


class CatalogSyncService:

    def __init__(
        self,
        db: Session,
        client: Optional[PortalClient] = None,
        auth: Optional[AuthSessionManager] = None,
        store: Optional[LocalStore] = None
    ):
        self.db = db
        self.client = client or PortalClient()
        self.store = store or LocalStore(db)
        self.auth = auth or AuthSessionManager(db, client=self.client, store=self.store)

    def sync_catalog(
        self,
        session: SessionContext,
        email: Optional[str] = None,
        include_units: bool = True,
        include_amenities: bool = True
    ) -> CatalogSyncResult:
        result = CatalogSyncResult()

        auth = self.auth.ensure_auth(session, email)
        if auth.error:
            result.error = auth.error
            return result

        properties = self.client.get_properties(session)
        if properties.error:
            result.error = properties.error
            result.errors.append(properties.error.message)
            return result

        for prop in to_portal_list(properties.data):
            property_portal_id = read_number(prop, PROPERTY_ID_KEYS)
            if not property_portal_id:
                continue

            building = self._upsert_building(prop, int(property_portal_id), result)
            if building is None:
                continue

            if include_units:
                self._sync_units(session, building, int(property_portal_id), result)
            if include_amenities:
                self._sync_amenities(session, building, int(property_portal_id), result)

        logger.info(
            f"Catalog sync finished: {result.buildings} buildings, {result.units} units, "
            f"{result.amenities} amenities, {len(result.errors)} errors"
        )
        return result

    def _upsert_building(self, prop: Dict[str, Any], portal_id: int, result: CatalogSyncResult) -> Optional[Building]:
        name = read_string(prop, PROPERTY_NAME_KEYS) or f"Propiedad {portal_id}"
        values = {
            "name": name,
            "address": read_string(prop, PROPERTY_ADDRESS_KEYS),
            "portal_id": portal_id,
        }
        existing = self.store.get_building_by_portal_id(portal_id) or self.store.get_building_by_name(name)

        saved = self.store.save(Building, values, instance=existing)
        if saved.error:
            result.errors.append(saved.error.message)
            return None
        result.buildings += 1
        return saved.result

    def _sync_units(self, session: SessionContext, building: Building, property_portal_id: int, result: CatalogSyncResult) -> None:
        units = self.client.get_units(session, property_portal_id)
        if units.error:
            # A property without units answers 404
            if units.error.status != 404:
                result.errors.append(units.error.message)
            return

        for unit in to_portal_list(units.data):
            unit_portal_id = read_number(unit, UNIT_ID_KEYS)
            if not unit_portal_id:
                continue

            unit_number = read_string(unit, UNIT_NUMBER_KEYS) or str(int(unit_portal_id))
            floor = read_number(unit, ["piso", "floor"])
            values = {
                "building_id": building.id,
                "unit_number": unit_number,
                "floor": int(floor) if floor is not None else None,
                "area_sqm": read_number(unit, ["area", "area_sqm", "metros2", "m2"]),
                "portal_id": int(unit_portal_id),
            }
            existing = (
                self.store.get_unit_by_portal_id(int(unit_portal_id))
                or self.store.get_unit_by_number_in_building(building.id, unit_number)
            )

            saved = self.store.save(Unit, values, instance=existing)
            if saved.error:
                result.errors.append(saved.error.message)
            else:
                result.units += 1

    def _sync_amenities(self, session: SessionContext, building: Building, property_portal_id: int, result: CatalogSyncResult) -> None:
        amenities = self.client.get_amenities(session, property_portal_id)
        if amenities.error:
            if amenities.error.status != 404:
                result.errors.append(amenities.error.message)
            return

        for amenity in to_portal_list(amenities.data):
            amenity_portal_id = read_number(amenity, AMENITY_ID_KEYS)
            if not amenity_portal_id:
                continue

            name_es = read_string(amenity, ["nombre", "name", "nombre_es", "nombreEs"]) or f"Amenity {int(amenity_portal_id)}"
            capacity = read_number(amenity, ["capacidad", "max_capacity", "maxCapacity"])
            values = {
                "building_id": building.id,
                "portal_id": int(amenity_portal_id),
                "name_es": name_es,
                "name_en": read_string(amenity, ["name_en", "nombre_en", "nombreEn"]),
                "description_es": read_string(amenity, ["descripcion", "description", "descripcion_es", "descripcionEs"]),
                "description_en": read_string(amenity, ["description_en", "descripcion_en", "descripcionEn"]),
                "max_capacity": int(capacity) if capacity is not None else None,
                "requires_approval": read_boolean(amenity, ["requiere_aprobacion", "requires_approval", "requiresApproval"]),
                "is_active": read_boolean(amenity, ["activo", "is_active", "active", "habilitado"]),
            }
            existing = (
                self.store.get_amenity_by_portal_id(int(amenity_portal_id))
                or self.store.get_amenity_by_name_in_building(building.id, name_es)
            )

            saved = self.store.save(Amenity, values, instance=existing)
            if saved.error:
                result.errors.append(saved.error.message)
            else:
                result.amenities += 1
