"""
Order intake normalizer.

Turns raw order data, either a JSON-encoded string or an already decoded
mapping with the client's camelCase keys, into a validated OrderSpec. The
normalizer is pure: it performs no I/O and either returns a complete spec or
raises, naming the offending field.
"""

import json
import uuid
from datetime import date, datetime, time, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Optional

from src.core.logging import get_logger
from src.database.models.order import DeliveryTimeSlot, MealType
from src.services.errors import MalformedInputError, ValidationError
from src.services.orders.spec import ExpansionMode, OrderItemSpec, OrderSpec

logger = get_logger(__name__)

# Session labels accepted in orderTimes; legacy labels map 1:1 onto slots
ORDER_TIME_LABELS: dict[str, DeliveryTimeSlot] = {
    "morning": DeliveryTimeSlot.BREAKFAST,
    "noon": DeliveryTimeSlot.LUNCH,
    "night": DeliveryTimeSlot.DINNER,
    "breakfast": DeliveryTimeSlot.BREAKFAST,
    "lunch": DeliveryTimeSlot.LUNCH,
    "dinner": DeliveryTimeSlot.DINNER,
}


def _field(raw: Mapping[str, Any], camel: str, snake: str) -> Any:
    if camel in raw:
        return raw[camel]
    return raw.get(snake)


def _decode(raw_order_data: Any) -> Mapping[str, Any]:
    if isinstance(raw_order_data, (str, bytes, bytearray)):
        try:
            raw_order_data = json.loads(raw_order_data)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedInputError(
                "Invalid orderData format",
                error=str(e),
            ) from e

    if not isinstance(raw_order_data, Mapping):
        raise MalformedInputError(
            "orderData must be a JSON object",
            received=type(raw_order_data).__name__,
        )
    return raw_order_data


def _parse_uuid(value: Any, field: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError, AttributeError):
        raise ValidationError(f"{field} must be a valid id", field=field, value=value)


def parse_date(value: Any, field: str) -> date:
    """
    Parse a date-only value.

    Accepts ``date`` objects, ``YYYY-MM-DD`` strings, and ISO date-times
    (the date part is kept).

    Raises:
        ValidationError: If the value is not a recognizable date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            if len(text) == 10:
                return date.fromisoformat(text)
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise ValidationError(f"{field} must be a date (YYYY-MM-DD)", field=field, value=value)


def _parse_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(f"{field} must be an ISO date-time", field=field, value=value)
    else:
        raise ValidationError(f"{field} must be an ISO date-time", field=field, value=value)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_meal_type(value: Any, field: str) -> MealType:
    label = str(value).strip().lower() if value is not None else ""
    slot = ORDER_TIME_LABELS.get(label)
    if slot is None:
        raise ValidationError(
            f"{field} must be one of: breakfast, lunch, dinner",
            field=field,
            value=value,
        )
    return slot.meal_type


def _parse_quantity(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a positive integer", field=field, value=value)
    if isinstance(value, str):
        text = value.strip()
        # ASCII only, str.isdigit also accepts superscripts int() rejects
        if text.isascii() and text.isdigit():
            value = int(text)
    if not isinstance(value, int) or value < 1:
        raise ValidationError(f"{field} must be a positive integer", field=field, value=value)
    return value


def _require_sequence(value: Any, field: str) -> list[Any]:
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, (str, bytes, Mapping)) or not isinstance(value, Iterable):
        raise ValidationError(f"{field} must be a list", field=field)
    items = list(value)
    if not items:
        raise ValidationError(f"{field} must not be empty", field=field)
    return items


def _normalize_order_items(value: Any) -> tuple[OrderItemSpec, ...]:
    items = []
    for index, raw_item in enumerate(_require_sequence(value, "orderItems")):
        prefix = f"orderItems[{index}]"
        if not isinstance(raw_item, Mapping):
            raise ValidationError(f"{prefix} must be an object", field=prefix)

        menu_item_id = _field(raw_item, "menuItemId", "menu_item_id")
        if menu_item_id in (None, ""):
            raise ValidationError(f"{prefix}.menuItemId is required", field=f"{prefix}.menuItemId")

        meal_type = _field(raw_item, "mealType", "meal_type")
        if meal_type in (None, ""):
            raise ValidationError(f"{prefix}.mealType is required", field=f"{prefix}.mealType")

        items.append(
            OrderItemSpec(
                menu_item_id=_parse_uuid(menu_item_id, f"{prefix}.menuItemId"),
                meal_type=_parse_meal_type(meal_type, f"{prefix}.mealType"),
                quantity=_parse_quantity(raw_item.get("quantity"), f"{prefix}.quantity"),
            )
        )
    return tuple(items)


def _normalize_selected_dates(value: Any) -> tuple[date, ...]:
    dates: list[date] = []
    for index, raw_date in enumerate(_require_sequence(value, "selectedDates")):
        parsed = parse_date(raw_date, f"selectedDates[{index}]")
        if parsed not in dates:
            dates.append(parsed)
    return tuple(dates)


def _normalize_order_times(value: Any) -> tuple[DeliveryTimeSlot, ...]:
    slots: list[DeliveryTimeSlot] = []
    for index, label in enumerate(_require_sequence(value, "orderTimes")):
        slot = ORDER_TIME_LABELS.get(str(label).strip().lower())
        if slot is None:
            raise ValidationError(
                f"orderTimes[{index}] is not a recognized meal time",
                field=f"orderTimes[{index}]",
                value=label,
            )
        if slot not in slots:
            slots.append(slot)
    return tuple(slots)


def _normalize_delivery_locations(value: Any) -> dict[MealType, uuid.UUID]:
    if value in (None, ""):
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("deliveryLocations must be an object", field="deliveryLocations")

    locations = {}
    for meal_label, address_id in value.items():
        if address_id in (None, ""):
            continue
        field = f"deliveryLocations.{meal_label}"
        locations[_parse_meal_type(meal_label, field)] = _parse_uuid(address_id, field)
    return locations


def _normalize_skip_meals(value: Any) -> dict[date, frozenset[MealType]]:
    if value in (None, ""):
        return {}
    if not isinstance(value, Mapping):
        raise ValidationError("skipMeals must be an object", field="skipMeals")

    skips: dict[date, frozenset[MealType]] = {}
    for date_key, flags in value.items():
        field = f"skipMeals.{date_key}"
        skip_date = parse_date(date_key, field)
        if flags in (None, ""):
            continue
        if not isinstance(flags, Mapping):
            raise ValidationError(f"{field} must map meal types to flags", field=field)

        skipped = frozenset(
            _parse_meal_type(meal_label, f"{field}.{meal_label}")
            for meal_label, flag in flags.items()
            if flag
        )
        if skipped:
            skips[skip_date] = skips.get(skip_date, frozenset()) | skipped
    return skips


def _normalize_total_price(value: Any) -> Optional[Decimal]:
    if value in (None, ""):
        return None
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("totalPrice must be a number", field="totalPrice", value=value)
    if not price.is_finite() or price < 0:
        raise ValidationError("totalPrice must not be negative", field="totalPrice", value=value)
    return price


def _normalize_expansion_mode(value: Any, default: ExpansionMode) -> ExpansionMode:
    if value in (None, ""):
        return default
    try:
        return ExpansionMode(str(value).strip().lower())
    except ValueError:
        raise ValidationError(
            "expansionMode must be 'fixed_slots' or 'per_item'",
            field="expansionMode",
            value=value,
        )


def normalize_order_data(
    raw_order_data: Any,
    *,
    user_id: Optional[uuid.UUID] = None,
    delivery_address_id: Optional[uuid.UUID] = None,
    default_mode: ExpansionMode = ExpansionMode.PER_ITEM,
) -> OrderSpec:
    """
    Validate raw order data and produce an OrderSpec.

    Args:
        raw_order_data: JSON string or mapping with the client's order fields
        user_id: Owner to use when the payload does not name one
        delivery_address_id: Default address to use when the payload has none
        default_mode: Expansion mode when the payload does not choose one

    Returns:
        Normalized order spec

    Raises:
        MalformedInputError: If a string payload is not a JSON object
        ValidationError: If any required field is missing or invalid
    """
    raw = _decode(raw_order_data)

    raw_user_id = _field(raw, "userId", "user_id")
    if raw_user_id in (None, ""):
        if user_id is None:
            raise ValidationError("userId is required", field="userId")
        owner_id = user_id
    else:
        owner_id = _parse_uuid(raw_user_id, "userId")

    order_items = _normalize_order_items(_field(raw, "orderItems", "order_items"))
    selected_dates = _normalize_selected_dates(_field(raw, "selectedDates", "selected_dates"))
    order_times = _normalize_order_times(_field(raw, "orderTimes", "order_times"))

    raw_address_id = _field(raw, "deliveryAddressId", "delivery_address_id")
    address_id = (
        _parse_uuid(raw_address_id, "deliveryAddressId")
        if raw_address_id not in (None, "")
        else delivery_address_id
    )

    inline_address = raw.get("address")
    if inline_address is not None and not (isinstance(inline_address, Mapping) and inline_address):
        raise ValidationError("address must be a non-empty object", field="address")

    if address_id is None and inline_address is None:
        raise ValidationError(
            "deliveryAddressId or address is required",
            field="deliveryAddressId",
        )

    raw_order_date = _field(raw, "orderDate", "order_date")
    order_date = (
        _parse_datetime(raw_order_date, "orderDate")
        if raw_order_date not in (None, "")
        else None
    )

    delivery_note = _field(raw, "deliveryNote", "delivery_note")

    spec = OrderSpec(
        user_id=owner_id,
        order_date=order_date,
        selected_dates=selected_dates,
        order_items=order_items,
        order_times=order_times,
        delivery_address_id=address_id,
        inline_address=dict(inline_address) if inline_address else None,
        delivery_locations=_normalize_delivery_locations(
            _field(raw, "deliveryLocations", "delivery_locations")
        ),
        skip_meals=_normalize_skip_meals(_field(raw, "skipMeals", "skip_meals")),
        expansion_mode=_normalize_expansion_mode(
            _field(raw, "expansionMode", "expansion_mode"), default_mode
        ),
        total_price=_normalize_total_price(_field(raw, "totalPrice", "total_price")),
        delivery_note=str(delivery_note) if delivery_note else None,
    )

    logger.debug(
        "Order data normalized",
        user_id=str(spec.user_id),
        dates=len(spec.selected_dates),
        items=len(spec.order_items),
        sessions=len(spec.order_times),
        skipped_dates=len(spec.skip_meals),
        expansion_mode=spec.expansion_mode.value,
    )

    return spec
