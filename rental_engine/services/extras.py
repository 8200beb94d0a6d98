"""
Extras Stock Tracker
Remaining bookable quantity for quantity-limited rental extras.
"""
from datetime import date
from typing import Dict, Iterable, Mapping, Optional, Tuple, Union
import logging

from ..exceptions import InsufficientStockError, UnknownExtraError
from ..models import (
    ExtraRequest,
    ExtraSelectionSchema,
    RentalExtraSchema,
    StockLevel,
    StockReport,
)

logger = logging.getLogger(__name__)

StockWindow = Tuple[date, Optional[date]]


def merge_extra_requests(
    requested: Union[Iterable[ExtraRequest], Mapping[str, int]]
) -> Dict[str, int]:
    """Collapse repeated extra IDs into a single quantity per extra."""
    if isinstance(requested, Mapping):
        items = requested.items()
    else:
        items = ((item.extra_id, item.quantity) for item in requested)

    merged: Dict[str, int] = {}
    for extra_id, quantity in items:
        if quantity < 1:
            raise ValueError(f"Quantity for extra {extra_id} must be at least 1")
        merged[extra_id] = merged.get(extra_id, 0) + quantity
    return merged


def _selection_in_window(selection: ExtraSelectionSchema, window: StockWindow) -> bool:
    start, end = window
    if selection.rental_start_date is None:
        # Unknown dates count against stock
        return True
    selection_end = selection.rental_end_date
    return (
        (end is None or selection.rental_start_date <= end)
        and (selection_end is None or start <= selection_end)
    )


def compute_stock(
    extras: Iterable[RentalExtraSchema],
    selections: Iterable[ExtraSelectionSchema],
    window: Optional[StockWindow] = None
) -> Dict[str, StockLevel]:
    """
    Booked and remaining quantity per extra.

    remaining_stock is max(0, max_quantity - booked) for limited extras and
    None for unlimited ones. With a window, only selections on rentals that
    overlap it are counted.
    """
    booked: Dict[str, int] = {}
    for selection in selections:
        if window is not None and not _selection_in_window(selection, window):
            continue
        booked[selection.extra_id] = booked.get(selection.extra_id, 0) + selection.quantity

    levels = {}
    for extra in extras:
        booked_quantity = booked.get(extra.id, 0)
        remaining = None
        if extra.max_quantity is not None:
            remaining = max(0, extra.max_quantity - booked_quantity)
            if booked_quantity > extra.max_quantity:
                logger.warning(
                    f"Extra {extra.id} ({extra.name}) is oversold: "
                    f"{booked_quantity} booked, max {extra.max_quantity}"
                )
        levels[extra.id] = StockLevel(
            extra_id=extra.id,
            name=extra.name,
            max_quantity=extra.max_quantity,
            booked_quantity=booked_quantity,
            remaining_stock=remaining
        )
    return levels


def check_stock(
    requested: Union[Iterable[ExtraRequest], Mapping[str, int]],
    extras: Iterable[RentalExtraSchema],
    selections: Iterable[ExtraSelectionSchema],
    window: Optional[StockWindow] = None
) -> StockReport:
    """Report remaining stock and whether each requested quantity can be fulfilled."""
    extras = list(extras)
    levels = compute_stock(extras, selections, window)

    lines = {}
    for extra_id, quantity in merge_extra_requests(requested).items():
        level = levels.get(extra_id)
        if level is None:
            raise UnknownExtraError(extra_id)
        can_fulfill = level.remaining_stock is None or quantity <= level.remaining_stock
        lines[extra_id] = level.model_copy(update={"requested": quantity, "can_fulfill": can_fulfill})
    return StockReport(lines=lines)


def ensure_stock(
    requested: Union[Iterable[ExtraRequest], Mapping[str, int]],
    extras: Iterable[RentalExtraSchema],
    selections: Iterable[ExtraSelectionSchema],
    window: Optional[StockWindow] = None
) -> StockReport:
    """Like check_stock, but raise InsufficientStockError for the first short extra."""
    report = check_stock(requested, extras, selections, window)
    for extra_id in sorted(report.lines):
        line = report.lines[extra_id]
        if not line.can_fulfill:
            raise InsufficientStockError(
                extra_id=extra_id,
                extra_name=line.name,
                requested=line.requested,
                remaining=line.remaining_stock
            )
    return report
