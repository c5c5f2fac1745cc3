"""Weight confirmation — command and handler.

Operators submit the weighed grams per variable-weight line. The whole batch
is rejected if any weight is outside the product's bounds.
"""

import json

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Identifier, Text
from protean.utils.globals import current_domain

from settlement.domain import settlement
from settlement.order.order import Order
from settlement.weighing import get_reconciliation_service
from settlement.weighing.reconciliation import WeightOutOfRange


@settlement.command(part_of="Order")
class ConfirmWeights:
    order_id = Identifier(required=True)
    weights = Text(required=True)  # JSON: {item_id: actual_weight_grams}


@settlement.command_handler(part_of=Order)
class ConfirmWeightsHandler:
    @handle(ConfirmWeights)
    def confirm_weights(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        weights = json.loads(command.weights) if isinstance(command.weights, str) else command.weights

        service = get_reconciliation_service()
        items = {str(item.id): item for item in order.items or []}
        results, rejected = [], []
        for item_id, grams in weights.items():
            item = items.get(str(item_id))
            if item is None:
                raise ValidationError({"item_id": [f"Item {item_id} not found in this order"]})
            outcome = service.reconcile(item, int(grams))
            if isinstance(outcome, WeightOutOfRange):
                rejected.append(outcome.message)
            else:
                results.append(outcome)

        if rejected:
            raise ValidationError({"weights": rejected})

        order.apply_weights(results)
        repo.add(order)
        return order.final_total
