"""Tests for BAC calculations, zones and drink helpers. Run from project root: pytest tests/ -v"""
from datetime import datetime, timedelta

import pytest

from sipsafe.calculations import (
    DEFAULT_PROFILE,
    PhysiologicalProfile,
    bac_curve,
    estimate_bac,
    format_duration,
    format_time_to_sober,
    hours_to_sober,
    peak_bac,
    resolve_profile,
)
from sipsafe.drinks import (
    STANDARD_DRINK_GRAMS,
    DrinkEvent,
    estimate_custom_abv,
    label_to_category,
    pure_alcohol_ml,
    volume_ml_from_standard_drinks,
)
from sipsafe.zones import Zone, classify, zone_payload

NOW = datetime(2026, 10, 17, 22, 0)
MALE_160 = PhysiologicalProfile(weight_lbs=160, sex="male")


def beer(minutes_ago=0, standard=1.0):
    return DrinkEvent(label="BEER", timestamp=NOW - timedelta(minutes=minutes_ago), standard_drinks=standard)


def test_standard_drink_grams():
    assert beer().ethanol_grams == STANDARD_DRINK_GRAMS
    assert beer(standard=2).ethanol_grams == STANDARD_DRINK_GRAMS * 2


def test_volume_abv_takes_precedence():
    event = DrinkEvent(label="IPA", timestamp=NOW, standard_drinks=5, volume_ml=355, abv_percent=5.0)
    assert event.ethanol_grams == pytest.approx(355 * 0.05 * 0.789)


def test_event_without_amount_contributes_nothing():
    assert DrinkEvent(label="WATER", timestamp=NOW).ethanol_grams == 0.0


def test_peak_bac_widmark():
    # 160 lb male, 1 standard drink
    assert peak_bac(14, MALE_160) == pytest.approx(0.026425, abs=1e-5)


def test_female_peak_higher_than_male():
    female = PhysiologicalProfile(weight_lbs=160, sex="female")
    assert peak_bac(14, female) > peak_bac(14, MALE_160)


def test_empty_session_is_sober():
    assert estimate_bac([], MALE_160, NOW) == 0.0


def test_elimination_over_time():
    events = [beer(minutes_ago=60)]
    assert estimate_bac(events, MALE_160, NOW) == pytest.approx(0.026425 - 0.015, abs=1e-5)
    assert estimate_bac(events, MALE_160, NOW + timedelta(hours=5)) == 0.0


def test_bac_monotone_without_new_drinks():
    events = [beer(90), beer(30), beer(0, standard=2)]
    readings = [estimate_bac(events, MALE_160, NOW + timedelta(minutes=15 * i)) for i in range(40)]
    assert all(b >= 0 for b in readings)
    assert all(later <= earlier for earlier, later in zip(readings, readings[1:]))


def test_each_drink_eliminates_independently():
    # an old, fully-eliminated drink must not cancel a fresh one
    events = [beer(minutes_ago=600), beer()]
    assert estimate_bac(events, MALE_160, NOW) == pytest.approx(peak_bac(14, MALE_160))


def test_order_does_not_matter():
    events = [beer(10), beer(50), beer(0, standard=1.5)]
    assert estimate_bac(events, MALE_160, NOW) == estimate_bac(list(reversed(events)), MALE_160, NOW)


def test_future_drink_counts_as_just_logged():
    ahead = DrinkEvent(label="BEER", timestamp=NOW + timedelta(minutes=5), standard_drinks=1)
    assert estimate_bac([ahead], MALE_160, NOW) == pytest.approx(peak_bac(14, MALE_160))


def test_resolve_profile_defaults():
    assert resolve_profile(None) == DEFAULT_PROFILE
    assert resolve_profile({"weight_lbs": "abc", "sex": "male"}) == PhysiologicalProfile(130.0, "male")
    assert resolve_profile({"weightLbs": 180, "gender": "other"}) == PhysiologicalProfile(180.0, "female")
    assert resolve_profile({"weight_lbs": -5}).weight_lbs == 130.0
    assert resolve_profile(MALE_160) == MALE_160


def test_estimate_bac_accepts_raw_profile():
    assert estimate_bac([beer()], {"weight_lbs": 160, "sex": "male"}, NOW) == estimate_bac([beer()], MALE_160, NOW)


def test_zone_boundaries():
    assert classify(0.0) == Zone.SOBER
    assert classify(0.059) == Zone.MILD
    assert classify(0.06) == Zone.CAUTION
    assert classify(0.099) == Zone.CAUTION
    assert classify(0.10) == Zone.HIGH
    assert classify(0.149) == Zone.HIGH
    assert classify(0.15) == Zone.DANGER


def test_zone_payload_tokens():
    payload = zone_payload(0.2)
    assert payload["zone"] == "DANGER"
    assert payload["advice"] == "SEEK HELP IMMEDIATELY."


def test_time_to_sober():
    assert hours_to_sober(0.0) == 0.0
    assert hours_to_sober(0.03) == pytest.approx(2.0)
    assert format_time_to_sober(0.0) == "NOW"
    assert format_time_to_sober(0.03) == "2H"
    assert format_time_to_sober(0.02) == "1H 20M"
    assert format_time_to_sober(0.01) == "40M"


def test_format_duration_rounds_up_to_hour():
    assert format_duration(1.9999) == "2H"


def test_curve_reaches_zero():
    curve = bac_curve([beer()], MALE_160, NOW)
    assert curve[0] == (NOW, round(peak_bac(14, MALE_160), 4))
    assert curve[-1][1] == 0.0
    assert len(curve) <= 96


def test_custom_abv_estimates():
    assert estimate_custom_abv("vodka", "strong") == 13.0
    assert estimate_custom_abv("Wine", "LIGHT") == 9.0
    assert estimate_custom_abv("mystery", "medium") == 10.0
    assert estimate_custom_abv(None, None) == 10.0


def test_drink_helpers():
    assert pure_alcohol_ml(355, 5.0) == pytest.approx(17.75)
    assert volume_ml_from_standard_drinks(1, None) == 355
    assert volume_ml_from_standard_drinks(1, 40.0) == 44
    assert label_to_category("shot") == "spirits"
    assert label_to_category("Negroni") == "cocktail"


def test_cli_drink_parsing():
    from sipsafe.main import parse_drink

    event = parse_drink("shot:2@30", NOW)
    assert event.label == "SHOT"
    assert event.standard_drinks == 2.0
    assert event.timestamp == NOW - timedelta(minutes=30)
    assert parse_drink("wine", NOW).standard_drinks == 1.0
    with pytest.raises(ValueError):
        parse_drink("beer@soon", NOW)


def test_unusable_drinks_contribute_nothing():
    ten = DrinkEvent(label="SHOT", timestamp=NOW, standard_drinks=10)
    junk = [
        DrinkEvent(label="X", timestamp=NOW, volume_ml=float("nan"), abv_percent=5.0),
        DrinkEvent(label="X", timestamp=NOW, standard_drinks=float("inf")),
        DrinkEvent(label="X", timestamp=NOW, standard_drinks=-3),
    ]
    female = PhysiologicalProfile(weight_lbs=130, sex="female")
    expected = estimate_bac([ten], female, NOW)
    assert expected == pytest.approx(0.3597, abs=1e-4)
    assert estimate_bac([ten, *junk], female, NOW) == expected


def test_infinite_weight_falls_back_to_default():
    assert resolve_profile({"weight_lbs": float("inf"), "sex": "male"}).weight_lbs == 130.0
    assert resolve_profile({"weight_lbs": "nan"}).weight_lbs == 130.0


def test_one_drink_default_profile_now_and_later():
    one = [DrinkEvent(label="BEER", timestamp=NOW, standard_drinks=1)]
    bac = estimate_bac(one, DEFAULT_PROFILE, NOW)
    assert bac == pytest.approx(0.036, abs=5e-4)
    assert classify(bac) == Zone.MILD

    later = estimate_bac(one, DEFAULT_PROFILE, NOW + timedelta(hours=3))
    assert later == 0.0
    assert classify(later) == Zone.SOBER


def test_contributions_add_at_one_instant():
    first = [beer(45), beer(0, standard=2)]
    second = [DrinkEvent(label="WINE", timestamp=NOW - timedelta(minutes=20), volume_ml=150, abv_percent=12.0)]
    together = estimate_bac(first + second, MALE_160, NOW)
    assert together == pytest.approx(estimate_bac(first, MALE_160, NOW) + estimate_bac(second, MALE_160, NOW))


def test_zone_values_just_below_thresholds():
    assert classify(0.0599) == Zone.MILD
    assert classify(0.1499) == Zone.HIGH


def test_event_ids_unique_across_threads():
    import threading

    from sipsafe.drinks import new_event_id

    ids = []

    def burst():
        ids.extend(new_event_id() for _ in range(500))

    workers = [threading.Thread(target=burst) for _ in range(8)]
    for w in workers:
        w.start()
    for w in workers:
        w.join()
    assert len(ids) == 4000
    assert len(set(ids)) == 4000
