"""Pure functions for collection movement and report calculations.

No database access, no async. All inputs are plain numbers/dicts.
"""

import math
from typing import Any, Iterable, Optional

from collectdesk.config import settings

RAM_CLEAR_METERS_WARNING = "Please enter last meters before Ram clear (or rollover)"


def _num(value: Optional[float]) -> float:
    return float(value) if value is not None else 0.0


def round2(value: float) -> float:
    """Round a money/meter value to 2 decimal places."""
    return round(value, 2)


def compute_movement(
    meters_in: Optional[float],
    meters_out: Optional[float],
    prev_in: Optional[float],
    prev_out: Optional[float],
    ram_clear: bool = False,
    ram_clear_meters_in: Optional[float] = None,
    ram_clear_meters_out: Optional[float] = None,
) -> dict[str, float]:
    """Compute the meter movement of a single machine collection.

    With a RAM clear (or meter rollover) the meters restarted from zero.
    When the last readings before the clear are known, the movement is the
    part counted before the clear plus everything counted since. Without
    them only the post-clear meters can be used.

    Args:
        meters_in: Current coin-in meter.
        meters_out: Current coin-out meter.
        prev_in: Coin-in meter at the previous collection.
        prev_out: Coin-out meter at the previous collection.
        ram_clear: Whether the machine's meters were cleared since.
        ram_clear_meters_in: Last coin-in reading before the clear.
        ram_clear_meters_out: Last coin-out reading before the clear.

    Returns:
        Dict with drop, cancelled_credits and gross, rounded to 2 decimals.
    """
    current_in, current_out = _num(meters_in), _num(meters_out)
    previous_in, previous_out = _num(prev_in), _num(prev_out)

    if ram_clear:
        if ram_clear_meters_in is not None and ram_clear_meters_out is not None:
            drop = (float(ram_clear_meters_in) - previous_in) + current_in
            cancelled = (float(ram_clear_meters_out) - previous_out) + current_out
        else:
            drop = current_in
            cancelled = current_out
    else:
        drop = current_in - previous_in
        cancelled = current_out - previous_out

    return {
        "drop": round2(drop),
        "cancelled_credits": round2(cancelled),
        "gross": round2(drop - cancelled),
    }


def validate_meter_entry(
    meters_in: Optional[float],
    meters_out: Optional[float],
    prev_in: Optional[float],
    prev_out: Optional[float],
    ram_clear: bool = False,
    ram_clear_meters_in: Optional[float] = None,
    ram_clear_meters_out: Optional[float] = None,
) -> dict[str, Any]:
    """Validate a meter entry before it is stored.

    Errors block the entry. Warnings are returned to the caller but never
    block, since a negative delta may be a legitimate undeclared rollover.

    Returns:
        Dict with is_valid, errors (list of str) and warnings (list of str).
    """
    errors: list[str] = []
    warnings: list[str] = []

    if meters_in is None or meters_out is None:
        errors.append("Meters in and meters out are required")
        return {"is_valid": False, "errors": errors, "warnings": warnings}

    if meters_in < 0:
        errors.append("Meters in cannot be negative")
    if meters_out < 0:
        errors.append("Meters out cannot be negative")

    previous_in, previous_out = _num(prev_in), _num(prev_out)

    if ram_clear:
        for label, value in (
            ("in", ram_clear_meters_in),
            ("out", ram_clear_meters_out),
        ):
            if value is not None and value < 0:
                errors.append(f"RAM clear meters {label} cannot be negative")

        if ram_clear_meters_in is None or ram_clear_meters_out is None:
            warnings.append(RAM_CLEAR_METERS_WARNING)
        else:
            if ram_clear_meters_in < previous_in:
                errors.append(
                    f"RAM clear meters in ({ram_clear_meters_in}) cannot be lower "
                    f"than previous meters in ({previous_in})"
                )
            if ram_clear_meters_out < previous_out:
                errors.append(
                    f"RAM clear meters out ({ram_clear_meters_out}) cannot be lower "
                    f"than previous meters out ({previous_out})"
                )
    else:
        if meters_in < previous_in:
            warnings.append(
                f"Meters in ({meters_in}) is lower than previous meters in "
                f"({previous_in}). Was there a RAM clear?"
            )
        if meters_out < previous_out:
            warnings.append(
                f"Meters out ({meters_out}) is lower than previous meters out "
                f"({previous_out}). Was there a RAM clear?"
            )

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}


def compute_report_totals(
    entries: Iterable[dict[str, float]],
    taxes: Optional[float] = 0,
    variance: Optional[float] = 0,
    advance: Optional[float] = 0,
    previous_balance: Optional[float] = 0,
    profit_share: Optional[int] = None,
) -> dict[str, float]:
    """Compute the revenue split of a collection report.

    ``partner_profit`` is floored (towards negative infinity) before the
    taxes are subtracted.

    Args:
        entries: Movement dicts with drop, cancelled_credits and gross.
        taxes: Taxes deducted from the partner's share.
        variance: Declared variance removed from the gross.
        advance: Advance already paid out at the location.
        previous_balance: Balance carried over from the previous report.
        profit_share: Partner's share in percent (defaults to the setting).

    Returns:
        Dict with drop, cancelled_credits, gross, partner_profit and
        amount_to_collect.
    """
    drop = cancelled = gross = 0.0
    for entry in entries:
        drop += _num(entry.get("drop"))
        cancelled += _num(entry.get("cancelled_credits"))
        gross += _num(entry.get("gross"))

    if profit_share is None:
        profit_share = settings.DEFAULT_PROFIT_SHARE

    net = gross - _num(variance) - _num(advance)
    partner_profit = math.floor(net * profit_share / 100) - _num(taxes)
    amount_to_collect = net - partner_profit + _num(previous_balance)

    return {
        "drop": round2(drop),
        "cancelled_credits": round2(cancelled),
        "gross": round2(gross),
        "partner_profit": round2(partner_profit),
        "amount_to_collect": round2(amount_to_collect),
    }


def compute_balance(
    amount_to_collect: float,
    amount_collected: Optional[float],
    balance_correction: Optional[float] = 0,
) -> dict[str, float]:
    """Compute what is still owed after the collector took the cash.

    Returns:
        Dict with current_balance (carried to the next report),
        amount_uncollected and balance_correction.
    """
    collected = _num(amount_collected)
    current_balance = amount_to_collect - collected
    return {
        "current_balance": round2(current_balance),
        "amount_uncollected": round2(max(current_balance, 0)),
        "balance_correction": round2(_num(balance_correction) + collected),
    }


def sum_sas_movement(readings: Iterable[dict[str, Any]]) -> dict[str, float]:
    """Sum the movement deltas of SAS meter readings.

    Args:
        readings: Meter reading documents, each with a ``movement`` dict.

    Returns:
        Dict with drop, total_cancelled_credits, gross, games_played and
        jackpot. All zero when there are no readings.
    """
    drop = cancelled = jackpot = 0.0
    games_played = 0
    for reading in readings:
        movement = reading.get("movement") or {}
        drop += _num(movement.get("drop"))
        cancelled += _num(movement.get("total_cancelled_credits"))
        jackpot += _num(movement.get("jackpot"))
        games_played += int(movement.get("games_played") or 0)

    return {
        "drop": round2(drop),
        "total_cancelled_credits": round2(cancelled),
        "gross": round2(drop - cancelled),
        "games_played": games_played,
        "jackpot": round2(jackpot),
    }


def movement_matches(
    stored: dict[str, float],
    expected: dict[str, float],
    tolerance: Optional[float] = None,
) -> bool:
    """Check whether a stored movement agrees with a recomputed one."""
    if tolerance is None:
        tolerance = settings.MOVEMENT_TOLERANCE
    return all(
        abs(_num(stored.get(key)) - _num(expected.get(key))) <= tolerance + 1e-9
        for key in ("drop", "cancelled_credits", "gross")
    )
