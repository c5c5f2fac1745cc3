"""Weight Reconciliation Service.

Variable-weight lines are priced twice. At checkout the estimate carries a
margin so the pre-authorization covers a heavier-than-expected final weight:

    estimated_price = unit_price * estimated_kg * margin

Once weighed:

    final_quantity = actual_grams / 1000
    final_price    = final_quantity * unit_price
    deviation      = (final_price - estimated_price) / estimated_price

A deviation beyond the tolerance still reconciles but is flagged for review.
"""

from dataclasses import dataclass

from protean.exceptions import ValidationError


def to_money(amount: float) -> float:
    return round(amount, 2)


@dataclass(frozen=True)
class ReconciledItem:
    item_id: str
    actual_weight_grams: int
    final_quantity: float
    final_price: float
    deviation: float
    requires_review: bool


@dataclass(frozen=True)
class WeightOutOfRange:
    item_id: str
    actual_weight_grams: int
    min_weight_grams: int | None
    max_weight_grams: int | None

    @property
    def message(self) -> str:
        return (
            f"Weight {self.actual_weight_grams}g for item {self.item_id} is outside "
            f"[{self.min_weight_grams}, {self.max_weight_grams}]"
        )


class WeightReconciliationService:
    def __init__(self, tolerance: float = 0.2, margin: float = 1.2) -> None:
        self.tolerance = tolerance
        self.margin = margin

    def estimate_price(self, unit_price: float, estimated_kg: float) -> float:
        return to_money(unit_price * estimated_kg * self.margin)

    def reconcile(self, item, actual_weight_grams: int) -> ReconciledItem | WeightOutOfRange:
        if not item.is_variable_weight:
            raise ValidationError({"item_id": [f"Item {item.id} is not sold by weight"]})

        if not self._within_bounds(item, actual_weight_grams):
            return WeightOutOfRange(
                item_id=str(item.id),
                actual_weight_grams=actual_weight_grams,
                min_weight_grams=item.min_weight_grams,
                max_weight_grams=item.max_weight_grams,
            )

        final_quantity = actual_weight_grams / 1000
        final_price = to_money(final_quantity * item.unit_price)
        estimated = item.estimated_price or 0
        deviation = (final_price - estimated) / estimated if estimated else 0.0

        return ReconciledItem(
            item_id=str(item.id),
            actual_weight_grams=actual_weight_grams,
            final_quantity=final_quantity,
            final_price=final_price,
            deviation=round(deviation, 4),
            requires_review=abs(deviation) > self.tolerance,
        )

    @staticmethod
    def _within_bounds(item, actual_weight_grams: int) -> bool:
        if actual_weight_grams <= 0:
            return False
        # Bounds are per piece; a line may hold several pieces.
        per_piece = actual_weight_grams / max(item.quantity or 1, 1)
        if item.min_weight_grams is not None and per_piece < item.min_weight_grams:
            return False
        if item.max_weight_grams is not None and per_piece > item.max_weight_grams:
            return False
        return True
