"""Human-readable rate formatting and daily summaries."""

from datetime import date, datetime
from statistics import fmean
from zoneinfo import ZoneInfo

from ..analysis.rates import best_average_windows, rates_for_day
from ..models import LOCAL_TIMEZONE, RateRecord

SUMMARY_WINDOW_HOURS = 2.0


def format_rate(value: float, show_rates_in_pounds: bool = False) -> str:
    """Format a pence-per-kWh value, e.g. '12.34p /kWh' or '£0.1234 /kWh'."""
    if show_rates_in_pounds:
        return f"£{value / 100:.4f} /kWh"
    return f"{value:.2f}p /kWh"


def format_time(dt: datetime, tz: ZoneInfo | None = None) -> str:
    """Local HH:MM for a UTC timestamp."""
    return dt.astimezone(tz or ZoneInfo(LOCAL_TIMEZONE)).strftime("%H:%M")


def get_day_summary(series: list[RateRecord], day: date, tz: ZoneInfo | None = None) -> dict:
    """Generate a summary of the rates for one local calendar day."""
    tz = tz or ZoneInfo(LOCAL_TIMEZONE)
    day_rates = rates_for_day(series, day, tz)

    if not day_rates:
        return {"date": day.isoformat(), "count": 0}

    cheapest = min(day_rates, key=lambda r: r.value_inc_vat)
    dearest = max(day_rates, key=lambda r: r.value_inc_vat)
    windows = best_average_windows(day_rates, SUMMARY_WINDOW_HOURS, 1)

    return {
        "date": day.isoformat(),
        "count": len(day_rates),
        "min_pence": round(cheapest.value_inc_vat, 2),
        "max_pence": round(dearest.value_inc_vat, 2),
        "mean_pence": round(fmean(r.value_inc_vat for r in day_rates), 2),
        "negative_slots": sum(1 for r in day_rates if r.value_inc_vat < 0),
        "cheapest_slot": {
            "start": format_time(cheapest.valid_from, tz),
            "end": format_time(cheapest.valid_to, tz),
            "pence": round(cheapest.value_inc_vat, 2),
        },
        "most_expensive_slot": {
            "start": format_time(dearest.valid_from, tz),
            "end": format_time(dearest.valid_to, tz),
            "pence": round(dearest.value_inc_vat, 2),
        },
        "best_window": (
            {
                "hours": SUMMARY_WINDOW_HOURS,
                "start": format_time(windows[0].start, tz),
                "end": format_time(windows[0].end, tz),
                "mean_pence": round(windows[0].average, 2),
            }
            if windows
            else None
        ),
    }


def format_day_summary_text(data: dict, show_rates_in_pounds: bool = False) -> str:
    """Format a day summary as plain text."""
    if not data["count"]:
        return f"No rates for {data['date']}"

    def rate(value):
        return format_rate(value, show_rates_in_pounds)

    lines = [
        f"Agile rates for {data['date']} ({data['count']} slots)",
        f"  Average: {rate(data['mean_pence'])}",
        f"  Cheapest: {rate(data['cheapest_slot']['pence'])} "
        f"({data['cheapest_slot']['start']}-{data['cheapest_slot']['end']})",
        f"  Most expensive: {rate(data['most_expensive_slot']['pence'])} "
        f"({data['most_expensive_slot']['start']}-{data['most_expensive_slot']['end']})",
    ]
    if data["negative_slots"]:
        lines.append(f"  Negative slots: {data['negative_slots']}")
    window = data["best_window"]
    if window:
        lines.append(
            f"  Best {window['hours']:g}h window: {window['start']}-{window['end']} "
            f"averaging {rate(window['mean_pence'])}"
        )
    return "\n".join(lines)
