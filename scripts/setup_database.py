"""Script to initialize database tables and seed resources and rules."""

import asyncio
import json
import sys
from pathlib import Path

from src.tour_booking.infrastructure.database.connection import DatabaseManager
from src.tour_booking.infrastructure.database.models import (
    AvailabilityRuleModel,
    Base,
    HolidayModel,
    PricingRuleModel,
    ResourceModel,
)
from src.tour_booking.infrastructure.rule_loader import dump_pricing_condition, load_seed_document
from src.tour_booking.presentation.api.config import get_settings

DEFAULT_SEED_FILE = Path(__file__).with_name("seed_data.json")

_AVAILABILITY_META_FIELDS = {"id", "rule_type", "is_active"}


async def setup_database(seed_path: Path):
    """Set up database tables and load the seed file."""
    with open(seed_path, encoding="utf-8") as handle:
        document = json.load(handle)
    # Validate everything before touching the database.
    seed = load_seed_document(document)

    database = DatabaseManager(get_settings().database_url, echo=True)
    await database.connect()

    try:
        async with database.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        print("✅ Database tables created successfully!")

        async with database.get_session() as session:
            for resource in seed.resources:
                await session.merge(ResourceModel(
                    kind=resource.kind.value,
                    resource_id=resource.id,
                    name=resource.name,
                    capacity=resource.capacity,
                    vehicle_type=resource.vehicle_type,
                    is_active=resource.is_active,
                ))

            for raw in document.get("availability_rules", []):
                await session.merge(AvailabilityRuleModel(
                    id=raw["id"],
                    rule_type=raw["rule_type"],
                    rule_data={k: v for k, v in raw.items() if k not in _AVAILABILITY_META_FIELDS},
                    is_active=raw.get("is_active", True),
                ))

            for rule in seed.pricing_rules:
                await session.merge(PricingRuleModel(
                    id=rule.rule_id,
                    name=rule.name,
                    conditions=[dump_pricing_condition(c) for c in rule.conditions],
                    base_price=rule.base_price,
                    price_per_hour=rule.per_hour,
                    price_per_person=rule.per_person,
                    multiplier=rule.multiplier,
                    min_price=rule.min_price,
                    max_price=rule.max_price,
                    priority=rule.priority,
                    is_active=rule.active,
                    valid_from=rule.valid_from,
                    valid_until=rule.valid_until,
                ))

            for holiday in seed.holidays:
                await session.merge(HolidayModel(holiday_date=holiday))

        print(
            f"✅ Seeded {len(seed.resources)} resources, {len(seed.availability_rules)} availability rules, "
            f"{len(seed.pricing_rules)} pricing rules and {len(seed.holidays)} holidays"
        )

    except Exception as e:
        print(f"❌ Error setting up database: {e}")
        raise
    finally:
        await database.disconnect()


if __name__ == "__main__":
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else DEFAULT_SEED_FILE
    asyncio.run(setup_database(path))
