"""Courier vehicle selection from an order's weight and line count."""

CAR_THRESHOLD_KG = 50
BIKE_XL_THRESHOLD_KG = 20
BIKE_XL_MAX_LINES = 10


def select_vehicle_type(items) -> str:
    """Pick ``car``, ``bike_xl`` or ``bike`` for a list of order lines.

    Each line contributes ``line_weight_grams`` (actual weight once weighed,
    otherwise the estimate times the quantity).
    """
    items = list(items)
    total_kg = sum(item.line_weight_grams for item in items) / 1000

    if total_kg > CAR_THRESHOLD_KG:
        return "car"
    if total_kg > BIKE_XL_THRESHOLD_KG or len(items) > BIKE_XL_MAX_LINES:
        return "bike_xl"
    return "bike"
