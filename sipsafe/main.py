"""
SipSafe CLI demo. Run from project root: python -m sipsafe.main
Logs a few drinks into a session and prints BAC, zone and time to sober;
optionally summarizes a JSON file of historical drink logs.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta

from sipsafe.analytics import get_analytics
from sipsafe.calculations import PhysiologicalProfile, format_time_to_sober
from sipsafe.catalog import get_entry
from sipsafe.config import Settings
from sipsafe.drinks import DrinkEvent
from sipsafe.graph import chart_data, save_analytics_chart
from sipsafe.session import SessionTracker
from sipsafe.zones import ZONE_STYLES


def parse_drink(text: str, now: datetime) -> DrinkEvent:
    """LABEL[:STANDARD_DRINKS][@MINUTES_AGO], e.g. BEER, SHOT:2, WINE:1.5@90."""
    minutes_ago = 0.0
    if "@" in text:
        text, ago = text.split("@", 1)
        minutes_ago = float(ago)
    label, _, count = text.partition(":")
    entry = get_entry(label)
    standard = float(count) if count else (entry.standard_drinks if entry else 1.0)
    return DrinkEvent(
        label=label.upper(),
        timestamp=now - timedelta(minutes=minutes_ago),
        standard_drinks=standard,
        abv_percent=entry.abv if entry else None,
    )


def main():
    parser = argparse.ArgumentParser(description="SipSafe: estimate BAC and summarize drink history")
    parser.add_argument("--weight", type=float, default=130.0, help="Body weight (lb)")
    parser.add_argument("--male", action="store_true", help="Use the male body-water constant")
    parser.add_argument(
        "--drink",
        action="append",
        default=[],
        metavar="LABEL[:STD][@MIN]",
        help="Drink to log (repeatable), e.g. BEER, SHOT:2@30",
    )
    parser.add_argument("--logs", type=str, metavar="FILE", help="JSON list of historical drink logs")
    parser.add_argument("--range", type=str, default="1w", help="Analytics range: 1d, 1w, 1m, 1y, all")
    parser.add_argument("--chart", type=str, metavar="FILE", help="Save analytics chart to FILE (needs --logs)")
    args = parser.parse_args()

    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(levelname)s %(name)s: %(message)s")

    now = datetime.now()
    profile = PhysiologicalProfile(weight_lbs=args.weight, sex="male" if args.male else "female")
    tracker = SessionTracker(profile=profile, now=now)

    drinks = args.drink or ["BEER@60", "BEER@30", "SHOT"]
    for text in drinks:
        try:
            event = parse_drink(text, now)
        except ValueError:
            print(f"Could not parse drink {text!r}", file=sys.stderr)
            return 2
        outcome = tracker.log_drink(event, now)
        note = "  (hydration nudge)" if outcome.hydration_nudge else ""
        print(f"Logged {event.label}: BAC {outcome.reading.bac:.3f}%{note}")

    reading = tracker.tick(now)
    print(f"Profile: {profile.weight_lbs} lb, {profile.sex}")
    print(f"BAC now: {reading.bac:.3f}%  zone: {reading.zone.value}  ({ZONE_STYLES[reading.zone].advice})")
    print(f"Sober in: {format_time_to_sober(reading.bac)}")
    if tracker.state.auto_alert_sent:
        print("Emergency alert would be sent to contacts.")

    if args.logs:
        with open(args.logs, encoding="utf-8") as f:
            records = json.load(f)
        try:
            result = get_analytics(args.range, records, now)
        except ValueError as exc:
            print(str(exc), file=sys.stderr)
            return 2
        print(f"\n{result.total_drinks} drinks in {result.range} (previous period: "
              f"{result.previous_period_drinks}, trend {result.direction})")
        print(f"Avg gap {result.avg_hours_between_drinks}h, longest {result.longest_gap_hours}h")
        for label, count, ml in chart_data(result):
            print(f"  {label:>8}  {'#' * count}{' ' if count else ''}{count} ({ml} mL)")
        if args.chart:
            try:
                path = save_analytics_chart(result, output_path=args.chart)
                print(f"Chart saved: {path}")
            except ImportError:
                print("matplotlib not installed. pip install matplotlib", file=sys.stderr)
                return 1

    return 0


if __name__ == "__main__":
    sys.exit(main() or 0)
