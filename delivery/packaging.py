from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional, Tuple

# (max total quantity, (length, width, height) in cm); last tier is open ended.
SIZE_TIERS: Tuple[Tuple[Optional[int], Tuple[int, int, int]], ...] = (
    (5, (30, 30, 15)),
    (10, (40, 40, 20)),
    (None, (50, 40, 25)),
)
WEIGHT_PER_ITEM_KG = Decimal("0.5")
MIN_WEIGHT_KG = Decimal("1.0")


@dataclass(frozen=True)
class PackageItem:
    name: str
    quantity: int
    unit_price: Decimal = Decimal("0")
    description: str = ""

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price": str(self.unit_price),
        }


@dataclass(frozen=True)
class PackageManifest:
    weight_kg: Decimal
    length_cm: int
    width_cm: int
    height_cm: int
    declared_value: Decimal
    currency: str = "NGN"
    items: Tuple[PackageItem, ...] = field(default_factory=tuple)

    @property
    def total_quantity(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def dimensions(self) -> Tuple[int, int, int]:
        return (self.length_cm, self.width_cm, self.height_cm)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight_kg": str(self.weight_kg),
            "length_cm": self.length_cm,
            "width_cm": self.width_cm,
            "height_cm": self.height_cm,
            "declared_value": str(self.declared_value),
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageManifest":
        return cls(
            weight_kg=Decimal(str(data["weight_kg"])),
            length_cm=int(data["length_cm"]),
            width_cm=int(data["width_cm"]),
            height_cm=int(data["height_cm"]),
            declared_value=Decimal(str(data.get("declared_value") or "0")),
            currency=data.get("currency") or "NGN",
            items=tuple(
                PackageItem(
                    name=item.get("name", ""),
                    description=item.get("description", ""),
                    quantity=int(item.get("quantity", 0)),
                    unit_price=Decimal(str(item.get("unit_price") or "0")),
                )
                for item in data.get("items", [])
            ),
        )


def dimensions_for_quantity(quantity: int) -> Tuple[int, int, int]:
    for limit, dims in SIZE_TIERS:
        if limit is None or quantity <= limit:
            return dims
    return SIZE_TIERS[-1][1]


def weight_for_quantity(quantity: int) -> Decimal:
    return max(MIN_WEIGHT_KG, WEIGHT_PER_ITEM_KG * max(quantity, 0))


def _coerce_item(item) -> PackageItem:
    if isinstance(item, PackageItem):
        return item
    if isinstance(item, dict):
        name = item.get("name", "")
        description = item.get("description", "")
        quantity = item.get("quantity", 0)
        unit_price = item.get("unit_price", item.get("price", 0))
    else:
        name = getattr(item, "name", "")
        description = getattr(item, "description", "")
        quantity = getattr(item, "quantity", 0)
        unit_price = getattr(item, "unit_price", getattr(item, "price", 0))
    return PackageItem(
        name=str(name),
        description=str(description or ""),
        quantity=int(quantity),
        unit_price=Decimal(str(unit_price or 0)),
    )


def build_package_manifest(
    items: Iterable[Any],
    declared_value: Optional[Decimal] = None,
    currency: str = "NGN",
) -> PackageManifest:
    """Synthesize a package manifest from cart or order lines.

    Box size is picked from fixed tiers by total quantity, so adding items
    never shrinks the box. Declared value defaults to the sum of line totals.
    """
    package_items = tuple(_coerce_item(item) for item in items)
    quantity = sum(item.quantity for item in package_items)
    length, width, height = dimensions_for_quantity(quantity)
    if declared_value is None:
        declared_value = sum((item.total for item in package_items), Decimal("0"))
    return PackageManifest(
        weight_kg=weight_for_quantity(quantity),
        length_cm=length,
        width_cm=width,
        height_cm=height,
        declared_value=Decimal(str(declared_value)),
        currency=currency,
        items=package_items,
    )
