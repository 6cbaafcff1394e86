# quote_engine/demo/seed_demo_data.py

from decimal import Decimal

from quote_engine.core.catalog import CatalogItem, CostComponents
from quote_engine.core.quote_builder import QuoteDraft
from quote_engine.core.taxes import DEFAULT_TAX_RULES
from quote_engine.storage.repository import get_repository, initialize_schema

initialize_schema()
repository = get_repository()

items = [
    CatalogItem(
        sku="PRN-100",
        description="Laser Printer",
        unit_cost=Decimal("400.00"),
        weight_kg=Decimal("12"),
        cost_components=CostComponents(
            inbound_freight=Decimal("20.00"),
            duty=Decimal("10.00"),
            insurance=Decimal("1.50"),
            packaging=Decimal("3.00"),
            other=Decimal("21.00"),
        ),
        stock=15,
    ),
    CatalogItem(
        sku="TNR-200",
        description="Toner Cartridge",
        unit_cost=Decimal("45.00"),
        weight_kg=Decimal("0.8"),
        cost_components=CostComponents(inbound_freight=Decimal("2.00")),
        markup_override_percent=Decimal("45"),  # consumables carry a higher markup
        stock=120,
    ),
]
repository.upsert_catalog_items(items)

if repository.current_tax_configuration() is None:
    repository.save_tax_configuration(DEFAULT_TAX_RULES, created_by="demo")

draft = QuoteDraft.from_dict({
    "customer_name": "Accra Office Supplies",
    "lines": [
        {"sku": "PRN-100", "quantity": 2},
        {"sku": "TNR-200", "quantity": 10},
    ],
    "charges": {"shipping": "50.00", "handling": "15.00"},
})
repository.save_draft("Q-DEMO-1", draft, actor="demo")

print("Demo catalog, tax configuration and draft Q-DEMO-1 inserted")
