"""Cart session aggregation and reward application."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping
from uuid import uuid4

DEFAULT_ELIGIBLE_CATEGORIES = frozenset({"Coffee", "Tea", "Hot Drink", "Iced"})
FREE_PRICE_LABEL = "£0.00"

# Menu labels carry size variants ("£3.5 / £4.2"); the first price wins.
_PRICE_PATTERN = re.compile(r"£(\d+(?:\.\d+)?)")


def parse_price(label: str | None) -> Decimal:
    """Return the first ``£<amount>`` in a display label, or zero."""

    if not label:
        return Decimal("0")
    match = _PRICE_PATTERN.search(label)
    if not match:
        return Decimal("0")
    try:
        return Decimal(match.group(1))
    except InvalidOperation:
        return Decimal("0")


class CartItemNotFoundError(LookupError):
    def __init__(self, item_id: str) -> None:
        super().__init__(f"Cart item {item_id} not found")
        self.item_id = item_id


@dataclass
class CartItem:
    id: str
    name: str
    price: str
    quantity: int = 1
    category: str | None = None
    reward_applied: bool = False
    original_price: str | None = None

    @property
    def unit_price(self) -> Decimal:
        return Decimal("0") if self.reward_applied else parse_price(self.price)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CartItem":
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            price=str(data["price"]),
            quantity=int(data.get("quantity", 1)),
            category=data.get("category"),
            reward_applied=bool(data.get("reward_applied", False)),
            original_price=data.get("original_price"),
        )


@dataclass
class CartSession:
    """Single-owner cart state for one customer session.

    At most one line carries ``reward_applied``; that line always holds
    exactly one unit priced at zero.
    """

    items: list[CartItem] = field(default_factory=list)
    notes: str = ""
    reward_applied: bool = False
    eligible_categories: frozenset[str] = DEFAULT_ELIGIBLE_CATEGORIES

    @staticmethod
    def _new_id() -> str:
        return uuid4().hex

    def is_empty(self) -> bool:
        return not self.items

    def is_eligible(self, item: CartItem) -> bool:
        return item.category is not None and item.category in self.eligible_categories

    def get_item(self, item_id: str) -> CartItem:
        for item in self.items:
            if item.id == item_id:
                return item
        raise CartItemNotFoundError(item_id)

    def add_item(self, name: str, price: str, category: str | None = None, quantity: int = 1) -> CartItem:
        """Merge into a matching ``(name, price)`` line or append a new one."""

        for item in self.items:
            if item.name == name and item.price == price and not item.reward_applied:
                item.quantity += quantity
                return item

        item = CartItem(
            id=self._new_id(),
            name=name,
            price=price,
            quantity=quantity,
            category=category,
        )
        self.items.append(item)
        return item

    def update_quantity(self, item_id: str, quantity: int) -> CartItem | None:
        item = self.get_item(item_id)
        if quantity <= 0:
            self.remove_item(item_id)
            return None

        if item.reward_applied and quantity > 1:
            # Extra units of the free line are paid for.
            self.add_item(
                item.name,
                item.original_price or item.price,
                item.category,
                quantity=quantity - 1,
            )
            return item

        item.quantity = quantity
        return item

    def remove_item(self, item_id: str) -> None:
        item = self.get_item(item_id)
        self.items.remove(item)
        if item.reward_applied:
            self.reward_applied = False

    def clear(self) -> None:
        self.items.clear()
        self.notes = ""
        self.reward_applied = False

    def set_notes(self, notes: str | None) -> None:
        self.notes = notes or ""

    def apply_reward(self, pending_reward: bool) -> CartItem | None:
        """Zero the price of the first eligible line; idempotent.

        Returns the rewarded line when the reward was applied by this call.
        """

        if self.reward_applied or not pending_reward or self.is_empty():
            return None

        for index, item in enumerate(self.items):
            if not self.is_eligible(item):
                continue

            if item.quantity > 1:
                item.quantity -= 1
                rewarded = CartItem(
                    id=self._new_id(),
                    name=item.name,
                    price=item.price,
                    quantity=1,
                    category=item.category,
                )
                self.items.insert(index, rewarded)
            else:
                rewarded = item

            rewarded.original_price = rewarded.price
            rewarded.price = FREE_PRICE_LABEL
            rewarded.reward_applied = True
            self.reward_applied = True
            return rewarded

        return None

    def revoke_reward(self) -> CartItem | None:
        """Put the free line back to its menu price.

        Used when the pending reward was redeemed somewhere else. The line
        merges back into a matching paid line so the cart looks as it did
        before the reward was applied.
        """

        rewarded = self.rewarded_item()
        self.reward_applied = False
        if rewarded is None:
            return None

        rewarded.price = rewarded.original_price or rewarded.price
        rewarded.original_price = None
        rewarded.reward_applied = False
        for item in self.items:
            if item is not rewarded and item.name == rewarded.name and item.price == rewarded.price:
                item.quantity += rewarded.quantity
                self.items.remove(rewarded)
                return item
        return rewarded

    def total(self) -> Decimal:
        return sum((item.line_total for item in self.items), Decimal("0"))

    def count(self) -> int:
        return sum(item.quantity for item in self.items)

    def eligible_units(self) -> int:
        return sum(item.quantity for item in self.items if self.is_eligible(item))

    def rewarded_item(self) -> CartItem | None:
        for item in self.items:
            if item.reward_applied:
                return item
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "notes": self.notes,
            "reward_applied": self.reward_applied,
        }

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any] | None,
        *,
        eligible_categories: Iterable[str] | None = None,
    ) -> "CartSession":
        data = data or {}
        categories = (
            frozenset(eligible_categories)
            if eligible_categories is not None
            else DEFAULT_ELIGIBLE_CATEGORIES
        )
        return cls(
            items=[CartItem.from_dict(entry) for entry in data.get("items") or []],
            notes=str(data.get("notes") or ""),
            reward_applied=bool(data.get("reward_applied", False)),
            eligible_categories=categories,
        )


__all__ = [
    "DEFAULT_ELIGIBLE_CATEGORIES",
    "FREE_PRICE_LABEL",
    "CartItem",
    "CartItemNotFoundError",
    "CartSession",
    "parse_price",
]
