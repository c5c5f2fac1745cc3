"""Weight reconciliation factory."""

from settlement.config import get_settings
from settlement.weighing.reconciliation import WeightReconciliationService


def get_reconciliation_service() -> WeightReconciliationService:
    settings = get_settings()
    return WeightReconciliationService(
        tolerance=settings.weight_tolerance,
        margin=settings.estimation_margin,
    )
