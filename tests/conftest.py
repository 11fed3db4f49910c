from uuid import uuid4

import pytest
import pytest_asyncio

from spog.api.dependencies import build_services
from spog.testing.memory_datastore import MemoryDatastore


@pytest.fixture
def datastore():
    return MemoryDatastore()


@pytest.fixture
def services(datastore):
    return build_services(datastore)


@pytest_asyncio.fixture
async def location(services):
    return await services.inventory.create_location("Hangar 1", "Main maintenance hangar")


@pytest.fixture
def make_item(services, location):
    """Factory for stored items; defaults to 100 ml stocked and consumed in ml."""
    async def _make(**overrides):
        data = {
            "item_code": f"SEA-{uuid4().hex[:6]}",
            "name": "PR-1422 Sealant",
            "location_id": location.id,
            "unit": "ml",
            "original_amount": "100",
        }
        data.update(overrides)
        return await services.inventory.create_item(data)
    return _make
