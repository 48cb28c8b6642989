"""Cart engine for one kiosk session."""

from decimal import Decimal

from pydantic import BaseModel, Field

from openfridge.models.checkout import LineSummary, SettlementLine
from openfridge.models.inventory import InventoryItem


class CartLine(BaseModel):
    """A selected item with the price and stock seen when it was added."""

    item_id: str
    name: str
    unit_price: Decimal = Field(ge=0)
    stock_snapshot: int = Field(ge=0)
    quantity: int = Field(ge=1)

    @property
    def line_total(self) -> Decimal:
        """Price of this line."""
        return self.unit_price * self.quantity

    @property
    def at_cap(self) -> bool:
        """Check if no more units can be added."""
        return self.quantity >= self.stock_snapshot


class Cart(BaseModel):
    """
    Item to quantity mapping capped by stock.

    Every line satisfies ``1 <= quantity <= stock_snapshot``. Requests that
    would break that are ignored rather than raised, since they come from
    repeated taps on the touchscreen.
    """

    lines: list[CartLine] = Field(default_factory=list)

    def _find(self, item_id: str) -> CartLine | None:
        for line in self.lines:
            if line.item_id == item_id:
                return line
        return None

    def get(self, item_id: str) -> CartLine | None:
        """Return the line for an item, if any."""
        return self._find(item_id)

    def add(self, item: InventoryItem) -> bool:
        """
        Add one unit of an item.

        Returns:
            True if the cart changed
        """
        line = self._find(item.id)

        if line is not None:
            if line.at_cap:
                return False
            line.quantity += 1
            return True

        if item.stock_count <= 0:
            return False

        self.lines.append(
            CartLine(
                item_id=item.id,
                name=item.item_name,
                unit_price=item.price,
                stock_snapshot=item.stock_count,
                quantity=1,
            )
        )
        return True

    def update_quantity(self, item_id: str, delta: int) -> bool:
        """
        Change a line's quantity by ``delta``.

        A result at or below zero removes the line; a result above the stock
        snapshot is rejected and the line is left unchanged.

        Returns:
            True if the cart changed
        """
        line = self._find(item_id)
        if line is None:
            return False

        new_quantity = line.quantity + delta

        if new_quantity <= 0:
            self.lines.remove(line)
            return True

        if new_quantity > line.stock_snapshot or new_quantity == line.quantity:
            return False

        line.quantity = new_quantity
        return True

    def remove(self, item_id: str) -> bool:
        """Drop a line. Returns True if a line was removed."""
        line = self._find(item_id)
        if line is None:
            return False
        self.lines.remove(line)
        return True

    def clear(self) -> None:
        """Empty the cart."""
        self.lines.clear()

    def total(self) -> Decimal:
        """Sum of price snapshot times quantity."""
        return sum((line.line_total for line in self.lines), Decimal("0"))

    def count(self) -> int:
        """Sum of quantities, for the badge."""
        return sum(line.quantity for line in self.lines)

    @property
    def is_empty(self) -> bool:
        return not self.lines

    def line_summary(self) -> list[LineSummary]:
        """Name and quantity per line for the payment provider."""
        return [LineSummary(name=line.name, qty=line.quantity) for line in self.lines]

    def settlement_lines(self) -> list[SettlementLine]:
        """Lines with computed totals for the settlement call."""
        return [
            SettlementLine(
                inventory_id=line.item_id,
                name=line.name,
                qty=line.quantity,
                total=line.line_total,
            )
            for line in self.lines
        ]
