"""Product and stock adjustment data models."""

import math
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Dict, Any, List


def normalize_barcode(code: Any) -> str:
    """Trim and upper-case a barcode; every comparison and write uses this form."""
    if code is None:
        return ""
    return str(code).strip().upper()


def coerce_magnitude(value: Any) -> int:
    """Turn a requested stock delta into an integer >= 1.

    Fractions are floored; zero, negative and non-numeric values become 1.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return max(1, value)
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 1
    if math.isnan(number) or math.isinf(number):
        return 1
    return max(1, math.floor(number))


def coerce_quantity(value: Any) -> int:
    """Turn an edited stock count into an integer >= 0.

    Raises:
        ValueError: If the value is not a finite number
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return max(0, value)
    try:
        number = float(value)
    except OverflowError:
        raise ValueError(f"Quantity must be a finite number, got {value!r}")
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"Quantity must be a finite number, got {value!r}")
    return max(0, math.floor(number))


def parse_price(value: Any) -> Optional[Decimal]:
    """Parse an optional price; empty values mean no price."""
    if value is None or value == "":
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"Price must be a number, got {value!r}")
    if not price.is_finite():
        raise ValueError(f"Price must be a finite number, got {value!r}")
    return price


class Direction(str, Enum):
    """Which way a stock adjustment moves the quantity."""

    INCREASE = "in"
    DECREASE = "out"

    @classmethod
    def parse(cls, value: Any) -> "Direction":
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        aliases = {
            "in": cls.INCREASE,
            "increase": cls.INCREASE,
            "load": cls.INCREASE,
            "out": cls.DECREASE,
            "decrease": cls.DECREASE,
            "unload": cls.DECREASE,
        }
        if text not in aliases:
            raise ValueError(f"Unknown direction: {value!r}")
        return aliases[text]


@dataclass
class Product:
    """A product record as stored in the products collection."""

    barcode: str
    name: str
    quantity: int = 0
    price: Optional[Decimal] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    # Store-side last write time, used as the optimistic concurrency token
    update_time: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate and normalize data."""
        self.barcode = normalize_barcode(self.barcode)
        if not self.barcode:
            raise ValueError("Barcode cannot be empty")

        self.name = (self.name or "").strip()
        if not self.name:
            raise ValueError("Name cannot be empty")

        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError("Quantity must be an integer")
        if self.quantity < 0:
            raise ValueError("Quantity cannot be negative")

        if self.price is not None:
            self.price = parse_price(self.price)
            if self.price is not None and self.price < 0:
                raise ValueError("Price cannot be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "id": self.id,
            "barcode": self.barcode,
            "name": self.name,
            "quantity": self.quantity,
            "price": str(self.price) if self.price is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


@dataclass
class StockAdjustment:
    """Outcome of a load or unload against one product."""

    product: Product
    previous_quantity: int
    delta: int
    direction: Direction

    @property
    def new_quantity(self) -> int:
        return self.product.quantity

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "product": self.product.to_dict(),
            "previous_quantity": self.previous_quantity,
            "new_quantity": self.new_quantity,
            "delta": self.delta,
            "direction": self.direction.value
        }


@dataclass
class InventorySummary:
    """Totals shown under an inventory listing."""

    product_count: int
    total_quantity: int

    @classmethod
    def from_products(cls, products: List[Product]) -> "InventorySummary":
        return cls(
            product_count=len(products),
            total_quantity=sum(p.quantity for p in products)
        )
