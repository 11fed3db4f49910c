"""
Unit conversion for stocking and consumption units.

Every known unit belongs to exactly one dimension and carries a factor to that
dimension's base unit (ml, g, mm, cm², pcs). Any two units of the same dimension
convert as ``amount * factor[from] / factor[to]``; units of different dimensions
never convert.
"""
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Dict, List, NamedTuple, Optional, Union

from spog.core.config import PIECES_PER_BOX, PIECES_PER_PACK, PIECES_PER_SET
from spog.core.errors import UnsupportedConversion, ValidationFailure

Number = Union[Decimal, int, float, str]


class Dimension(str, Enum):
    VOLUME = "Volume"
    WEIGHT = "Weight"
    LENGTH = "Length"
    AREA = "Area"
    COUNT = "Count"


class UnitDefinition(NamedTuple):
    code: str
    label: str
    dimension: Dimension
    factor: Decimal  # Size of one unit expressed in the dimension's base unit


def _unit(code, label, dimension, factor) -> UnitDefinition:
    return UnitDefinition(code, label, dimension, Decimal(str(factor)))


UNITS: Dict[str, UnitDefinition] = {u.code: u for u in [
    # Volume, base ml (US customary sizes)
    _unit("ml", "Milliliter (ml)", Dimension.VOLUME, 1),
    _unit("cl", "Centiliter (cl)", Dimension.VOLUME, 10),
    _unit("l", "Liter (l)", Dimension.VOLUME, 1000),
    _unit("fl_oz", "Fluid Ounce (fl oz)", Dimension.VOLUME, "29.5735295625"),
    _unit("pt", "Pint (pt)", Dimension.VOLUME, "473.176473"),
    _unit("qt", "Quart (qt)", Dimension.VOLUME, "946.352946"),
    _unit("gal", "Gallon (gal)", Dimension.VOLUME, "3785.411784"),
    # Weight, base g
    _unit("mg", "Milligram (mg)", Dimension.WEIGHT, "0.001"),
    _unit("g", "Gram (g)", Dimension.WEIGHT, 1),
    _unit("kg", "Kilogram (kg)", Dimension.WEIGHT, 1000),
    _unit("oz_wt", "Ounce (oz)", Dimension.WEIGHT, "28.349523125"),
    _unit("lb", "Pound (lb)", Dimension.WEIGHT, "453.59237"),
    # Length, base mm
    _unit("mm", "Millimeter (mm)", Dimension.LENGTH, 1),
    _unit("cm", "Centimeter (cm)", Dimension.LENGTH, 10),
    _unit("m", "Meter (m)", Dimension.LENGTH, 1000),
    _unit("in", "Inch (in)", Dimension.LENGTH, "25.4"),
    _unit("ft", "Foot (ft)", Dimension.LENGTH, "304.8"),
    _unit("yd", "Yard (yd)", Dimension.LENGTH, "914.4"),
    # Area, base cm²
    _unit("cm²", "Square Centimeter (cm²)", Dimension.AREA, 1),
    _unit("m²", "Square Meter (m²)", Dimension.AREA, 10000),
    _unit("in²", "Square Inch (in²)", Dimension.AREA, "6.4516"),
    _unit("ft²", "Square Foot (ft²)", Dimension.AREA, "929.0304"),
    # Count, base pcs. Packaging sizes are global settings, not per item.
    _unit("pcs", "Pieces (pcs)", Dimension.COUNT, 1),
    _unit("dozen", "Dozen", Dimension.COUNT, 12),
    _unit("box", "Box", Dimension.COUNT, PIECES_PER_BOX),
    _unit("pack", "Pack", Dimension.COUNT, PIECES_PER_PACK),
    _unit("set", "Set", Dimension.COUNT, PIECES_PER_SET),
]}

# Spellings seen in item data, mapped to canonical codes (keys are lower case)
UNIT_ALIASES: Dict[str, str] = {
    "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "centiliter": "cl", "centiliters": "cl",
    "liter": "l", "liters": "l", "litre": "l", "litres": "l", "ltr": "l",
    "fl oz": "fl_oz", "floz": "fl_oz", "fl. oz": "fl_oz", "fluid ounce": "fl_oz", "fluid ounces": "fl_oz",
    "pint": "pt", "pints": "pt",
    "quart": "qt", "quarts": "qt",
    "gallon": "gal", "gallons": "gal",
    "milligram": "mg", "milligrams": "mg",
    "gram": "g", "grams": "g", "gr": "g",
    "kilogram": "kg", "kilograms": "kg", "kgs": "kg",
    "oz": "oz_wt", "ounce": "oz_wt", "ounces": "oz_wt",
    "lbs": "lb", "pound": "lb", "pounds": "lb",
    "millimeter": "mm", "millimeters": "mm",
    "centimeter": "cm", "centimeters": "cm",
    "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "inch": "in", "inches": "in",
    "foot": "ft", "feet": "ft",
    "yard": "yd", "yards": "yd",
    "cm2": "cm²", "sq cm": "cm²",
    "m2": "m²", "sq m": "m²",
    "in2": "in²", "sq in": "in²",
    "ft2": "ft²", "sq ft": "ft²",
    "pc": "pcs", "piece": "pcs", "pieces": "pcs", "ea": "pcs",
    "dozens": "dozen", "doz": "dozen",
    "boxes": "box",
    "packs": "pack", "pkg": "pack",
    "sets": "set",
}


def normalize_unit(unit: Optional[str]) -> str:
    """Returns the canonical code for ``unit``, or the trimmed input if it is unknown."""
    if unit is None:
        return ""
    cleaned = " ".join(str(unit).split())
    key = cleaned.lower()
    if key in UNITS:
        return key
    return UNIT_ALIASES.get(key, cleaned)


def is_known_unit(unit: Optional[str]) -> bool:
    return normalize_unit(unit) in UNITS


def dimension_of(unit: Optional[str]) -> Optional[Dimension]:
    definition = UNITS.get(normalize_unit(unit))
    return definition.dimension if definition else None


def compatible_units(unit: Optional[str]) -> List[UnitDefinition]:
    """Units a consumption can be reported in for an item stocked in ``unit``.

    Unknown units are compatible with everything, matching the add-item form.
    """
    dimension = dimension_of(unit)
    if dimension is None:
        return list(UNITS.values())
    return [u for u in UNITS.values() if u.dimension == dimension]


def list_units() -> Dict[Dimension, List[UnitDefinition]]:
    grouped: Dict[Dimension, List[UnitDefinition]] = {d: [] for d in Dimension}
    for definition in UNITS.values():
        grouped[definition.dimension].append(definition)
    return grouped


def to_decimal(value: Number, field: str = "amount") -> Decimal:
    """Parses user input into a finite Decimal, raising ValidationFailure otherwise."""
    if isinstance(value, bool):
        raise ValidationFailure(f"Invalid {field}: {value!r}", fields=[field])
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationFailure(f"Invalid {field}: {value!r}", fields=[field])
    if not result.is_finite():
        raise ValidationFailure(f"Invalid {field}: {value!r}", fields=[field])
    return result


def convert(amount: Number, from_unit: str, to_unit: str) -> Decimal:
    """
    Converts ``amount`` from ``from_unit`` to ``to_unit``.

    Identical units (after normalisation) return the amount unchanged, even when
    the unit is not in the table. Raises UnsupportedConversion when either unit
    is unknown or the two belong to different dimensions.
    """
    value = to_decimal(amount)
    source, target = normalize_unit(from_unit), normalize_unit(to_unit)
    if source == target:
        return value

    src, dst = UNITS.get(source), UNITS.get(target)
    if src is None or dst is None or src.dimension != dst.dimension:
        raise UnsupportedConversion(from_unit, to_unit)

    return value * src.factor / dst.factor
