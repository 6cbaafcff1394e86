"""
Configuration management and loading.

Reads pricing settings, approval thresholds, tax rules, catalog files and
quote drafts from YAML.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from quote_engine.core.allocation import AllocationMethod
from quote_engine.core.approval import ApprovalThresholds
from quote_engine.core.catalog import CatalogItem, CostComponents
from quote_engine.core.money import to_decimal
from quote_engine.core.pricing import PricingMode, PricingSettings
from quote_engine.core.quote_builder import QuoteDraft
from quote_engine.core.taxes import TaxRule, rules_from_dicts


@dataclass(frozen=True)
class EngineConfig:
    """Complete engine configuration."""
    pricing: PricingSettings = field(default_factory=PricingSettings)
    approval: ApprovalThresholds = field(default_factory=ApprovalThresholds)
    taxes: Optional[Tuple[TaxRule, ...]] = None


def _read_yaml(path: str, what: str) -> Any:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"{what} file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in {what.lower()} file {path}: {e}")

    if not data:
        raise ValueError(f"{what} file is empty")
    return data


def _optional_percent(data: Dict, key: str, path: str) -> Optional[Decimal]:
    if key not in data or data[key] is None:
        return None
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"'{key}' in {path} must be a number")
    try:
        return to_decimal(value, key)
    except ValueError:
        raise ValueError(f"'{key}' in {path} must be a number")


def load_engine_config(path: str) -> EngineConfig:
    """Load and validate engine configuration from a YAML file.

    Unknown keys are rejected so that a typo never silently falls back
    to a default markup or threshold.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated EngineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    raw_config = _read_yaml(path, "Configuration")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'pricing', 'approval', 'taxes'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    if 'pricing' not in raw_config:
        raise ValueError("Missing required 'pricing' section")
    pricing_data = raw_config['pricing']
    if not isinstance(pricing_data, dict):
        raise ValueError("'pricing' must be a dictionary")
    pricing = _parse_pricing_settings(pricing_data)

    approval_data = raw_config.get('approval') or {}
    if not isinstance(approval_data, dict):
        raise ValueError("'approval' must be a dictionary")
    approval = _parse_approval_thresholds(approval_data)

    taxes = None
    if 'taxes' in raw_config:
        taxes = _parse_tax_rules(raw_config['taxes'], "taxes")

    return EngineConfig(pricing=pricing, approval=approval, taxes=taxes)


def _parse_pricing_settings(data: Dict) -> PricingSettings:
    """Parse and validate the pricing section.

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {
        'default_markup_percent', 'default_margin_percent', 'pricing_mode',
        'allocation_method', 'rounding_decimals', 'default_incoterm',
        'default_currency', 'quote_expiry_days',
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in pricing: {unknown_keys}")

    if 'pricing_mode' not in data:
        raise ValueError("Missing required 'pricing_mode' in pricing")
    mode_str = data['pricing_mode']
    if not isinstance(mode_str, str):
        raise ValueError("'pricing_mode' in pricing must be a string")
    try:
        mode = PricingMode(mode_str.lower())
    except ValueError:
        valid_modes = [mode.value for mode in PricingMode]
        raise ValueError(f"'pricing_mode' in pricing must be one of: {valid_modes}")

    markup = _optional_percent(data, 'default_markup_percent', "pricing")
    margin = _optional_percent(data, 'default_margin_percent', "pricing")

    # Unknown methods are tolerated here and fall back at pricing time
    method = data.get('allocation_method', AllocationMethod.WEIGHT.value)
    if not isinstance(method, str):
        raise ValueError("'allocation_method' in pricing must be a string")
    known_methods = {member.value: member for member in AllocationMethod}
    method = known_methods.get(method.strip().lower(), method)

    decimals = data.get('rounding_decimals', 2)
    if isinstance(decimals, bool) or not isinstance(decimals, int):
        raise ValueError("'rounding_decimals' in pricing must be an integer")

    expiry = data.get('quote_expiry_days', 30)
    if isinstance(expiry, bool) or not isinstance(expiry, int):
        raise ValueError("'quote_expiry_days' in pricing must be an integer")

    return PricingSettings(
        default_markup_percent=markup,
        default_margin_percent=margin,
        pricing_mode=mode,
        allocation_method=method,
        rounding_decimals=decimals,
        default_incoterm=str(data.get('default_incoterm', 'FOB')),
        default_currency=str(data.get('default_currency', 'GHS')),
        quote_expiry_days=expiry,
    )


def _parse_approval_thresholds(data: Dict) -> ApprovalThresholds:
    allowed_keys = {'min_margin_percent', 'max_discount_percent', 'require_approval_above'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in approval: {unknown_keys}")

    defaults = ApprovalThresholds()
    values = {}
    for key in allowed_keys:
        values[key] = _optional_percent(data, key, "approval") if key in data else getattr(defaults, key)
    return ApprovalThresholds(**values)


def _parse_tax_rules(data: Any, path: str) -> Tuple[TaxRule, ...]:
    if not isinstance(data, list):
        raise ValueError(f"'{path}' must be a list of tax rules")
    for index, rule in enumerate(data):
        if not isinstance(rule, dict):
            raise ValueError(f"Tax rule {index} in {path} must be a dictionary")
    return rules_from_dicts(data)


def load_tax_rules(path: str) -> Tuple[TaxRule, ...]:
    """Load a tax-rule list from YAML (either a bare list or a 'taxes' key).

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If a rule is invalid
    """
    data = _read_yaml(path, "Tax rules")
    if isinstance(data, dict):
        if set(data.keys()) != {'taxes'}:
            raise ValueError("Tax rules file must contain only a 'taxes' list")
        data = data['taxes']
    return _parse_tax_rules(data, "taxes")


def load_catalog(path: str) -> List[CatalogItem]:
    """Load catalog items from YAML.

    Expected shape::

        items:
          - sku: PRN-100
            description: Laser Printer
            unit_cost: 400.00
            weight_kg: 12
            cost_components: {inbound_freight: 20.00, duty: 10.00}
            stock: 15

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If an item is invalid
    """
    data = _read_yaml(path, "Catalog")
    if not isinstance(data, dict) or 'items' not in data:
        raise ValueError("Catalog file must contain an 'items' list")
    raw_items = data['items']
    if not isinstance(raw_items, list):
        raise ValueError("'items' must be a list")

    allowed_keys = {
        'sku', 'description', 'unit_cost', 'weight_kg', 'cost_components',
        'markup_override_percent', 'pricing_tier', 'stock',
    }
    items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValueError(f"Catalog item {index} must be a dictionary")
        unknown_keys = set(raw.keys()) - allowed_keys
        if unknown_keys:
            raise ValueError(f"Unknown keys in catalog item {index}: {unknown_keys}")
        if 'sku' not in raw:
            raise ValueError(f"Missing required 'sku' in catalog item {index}")
        if 'unit_cost' not in raw:
            raise ValueError(f"Missing required 'unit_cost' in catalog item {index}")

        stock = raw.get('stock', 0)
        if isinstance(stock, bool) or not isinstance(stock, int):
            raise ValueError(f"'stock' in catalog item {index} must be an integer")

        weight = raw.get('weight_kg')
        items.append(CatalogItem(
            sku=str(raw['sku']),
            description=str(raw.get('description', raw['sku'])),
            unit_cost=to_decimal(raw['unit_cost'], 'unit_cost'),
            weight_kg=None if weight is None else to_decimal(weight, 'weight_kg'),
            cost_components=CostComponents.from_dict(raw.get('cost_components')),
            markup_override_percent=_optional_percent(raw, 'markup_override_percent', f"catalog item {index}"),
            pricing_tier=str(raw.get('pricing_tier', 'standard')),
            stock=stock,
        ))
    return items


def load_draft(path: str) -> QuoteDraft:
    """Load a quote draft from YAML.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the draft is malformed
    """
    data = _read_yaml(path, "Draft")
    if not isinstance(data, dict):
        raise ValueError("Draft must be a dictionary")
    return QuoteDraft.from_dict(data)
