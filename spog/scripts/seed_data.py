# spog/scripts/seed_data.py
import asyncio
import logging

from spog.api.dependencies import build_services
from spog.core.datastore import TortoiseDatastore
from spog.core.db import close_db, init_db

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
log = logging.getLogger("seed_data")

SEED_USER = "seed-script"

LOCATIONS = [
    ("Hangar 1", "Main maintenance hangar"),
    ("Paint Shop", "Paint booth and mixing room"),
]

# (location, item_code, name, category, unit, consumption_unit, original_amount)
ITEMS = [
    ("Hangar 1", "SEA-001", "PR-1422 Sealant", "Sealant", "l", "ml", "5"),
    ("Hangar 1", "GRS-010", "Aeroshell Grease 33", "Grease", "kg", "g", "2"),
    ("Hangar 1", "OIL-100", "Turbine Oil 2380", "Oil", "gal", "qt", "10"),
    ("Paint Shop", "PNT-204", "Epoxy Primer", "Paint", "l", "ml", "20"),
    ("Paint Shop", "PNT-310", "Masking Tape Rolls", None, "box", "pcs", "4"),
]


async def seed():
    services = build_services(TortoiseDatastore())
    inventory = services.inventory

    existing = {l.name: l for l in await inventory.list_locations()}
    location_ids = {}
    for name, description in LOCATIONS:
        location = existing.get(name) or await inventory.create_location(name, description)
        location_ids[name] = location.id
        log.info(f"Location: {name} {location.id}")

    for location, code, name, category, unit, consumption_unit, amount in ITEMS:
        # Idempotent: items are keyed by their code
        if await inventory.get_item_by_code(code):
            log.info(f"Item {code} already present, skipping")
            continue
        item = await inventory.create_item({
            "item_code": code,
            "name": name,
            "category": category,
            "location_id": location_ids[location],
            "unit": unit,
            "consumption_unit": consumption_unit,
            "original_amount": amount,
        }, user_id=SEED_USER)
        log.info(f"Item: {item.item_code} {item.id} ({item.current_balance} {item.unit})")

    log.info("Inventory seeded.")


async def main():
    await init_db()
    try:
        await seed()
    finally:
        await close_db()

if __name__ == "__main__":
    asyncio.run(main())
