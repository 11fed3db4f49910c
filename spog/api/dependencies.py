"""
Service wiring for the HTTP layer.

The application lifespan builds one ``Services`` container around the datastore
handle and keeps it on ``app.state``; route handlers get their service through
the functions below, which tests point at a MemoryDatastore by setting ``app.state.services``.
"""
from dataclasses import dataclass

from fastapi import Header, HTTPException, Request, status

from spog.core.config import ADMIN_ROLE
from spog.core.datastore import Datastore
from spog.services.consumption_service import ConsumptionService
from spog.services.inventory_service import InventoryService
from spog.services.ledger_service import LedgerService


@dataclass
class Services:
    datastore: Datastore
    ledger: LedgerService
    inventory: InventoryService
    consumption: ConsumptionService


def build_services(datastore: Datastore, **consumption_options) -> Services:
    ledger = LedgerService(datastore)
    inventory = InventoryService(datastore, ledger)
    consumption = ConsumptionService(datastore, inventory, ledger, **consumption_options)
    return Services(datastore=datastore, ledger=ledger, inventory=inventory, consumption=consumption)


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is not initialised.")
    return services


def get_inventory_service(request: Request) -> InventoryService:
    return get_services(request).inventory


def get_ledger_service(request: Request) -> LedgerService:
    return get_services(request).ledger


def get_consumption_service(request: Request) -> ConsumptionService:
    return get_services(request).consumption


# Identity comes from the auth layer in front of this service
def get_user_id(x_user_id: str = Header(..., alias="X-User-Id")) -> str:
    if not x_user_id.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing acting user.")
    return x_user_id.strip()


def require_admin(role: str = Header("user", alias="X-User-Role")) -> str:
    if role.strip().lower() != ADMIN_ROLE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Balance adjustments require the admin role.")
    return role
