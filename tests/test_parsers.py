from datetime import datetime
from zoneinfo import ZoneInfo

from scout.models import TITLE_SENTINEL, VENUE_SENTINEL, SourceFamily
from scout.parsers import (
    GenericEventParser,
    ListingEventParser,
    SocialPostParser,
    is_noise_line,
    parse_generic_event,
    parser_for_family,
)

FIXED_NOW = datetime(2025, 12, 20, 12, 0, tzinfo=ZoneInfo("Europe/Vilnius"))


def test_date_first_card() -> None:
    parsed = parse_generic_event("JAN 15\nConcert Name\nSome Club")

    assert parsed.title == "Concert Name"
    assert parsed.location == "Some Club"
    assert parsed.date_raw == "JAN 15"
    assert parsed.is_clean


def test_parse_generic_event_is_deterministic() -> None:
    text = "Sausio 20 d.\nJazz Night\nKauno menininkų namai\n19:30"
    assert parse_generic_event(text) == parse_generic_event(text)


def test_head_noise_is_skipped_and_city_detected() -> None:
    parsed = parse_generic_event("Bilietai\nnuo 15 €\nSausio 20 d.\nJazz Night\nKauno menininkų namai, Kaunas")

    assert parsed.title == "Jazz Night"
    assert parsed.date_raw == "Sausio 20 d."
    assert parsed.location == "Kauno menininkų namai, Kaunas"
    assert parsed.detected_city == "Kaunas"


def test_inflected_city_form() -> None:
    parsed = parse_generic_event("Vasario 3\nStand-up vakaras\nKlaipėdos dramos teatras")
    assert parsed.detected_city == "Klaipėda"


def test_time_taken_from_whole_text() -> None:
    parsed = parse_generic_event("Spalio 4\nRock Night\nLoftas\nDoors 8 PM")
    assert parsed.time_raw == "20:00"


def test_missing_venue_gets_sentinel() -> None:
    parsed = parse_generic_event("Sausio 15\nSolo title")

    assert parsed.title == "Solo title"
    assert parsed.location == VENUE_SENTINEL
    assert parsed.defaulted_fields == ["location"]
    assert not parsed.is_clean


def test_missing_date_is_recorded() -> None:
    parsed = parse_generic_event("Some Title\nSome Venue")

    assert parsed.date_raw == ""
    assert "date_raw" in parsed.defaulted_fields
    assert parsed.location == "Some Venue"


def test_only_noise_yields_sentinels() -> None:
    parsed = GenericEventParser().parse("Sausio 15")

    assert parsed.title == TITLE_SENTINEL
    assert set(parsed.defaulted_fields) == {"title", "location"}


def test_blank_text_is_none() -> None:
    assert parse_generic_event("  \n \n") is None


def test_noise_lines() -> None:
    assert is_noise_line("Pirkti bilietą")
    assert is_noise_line("nuo 25 €")
    assert is_noise_line("SOLD OUT")
    assert not is_noise_line("Europos jaunimo orkestras")
    assert not is_noise_line("Freedom Jazz Band")


def test_listing_card_strips_trailing_price() -> None:
    parsed = ListingEventParser().parse("Koncertas X\nSpalio 4, 19:00\nŽalgirio arena, Kaunas\nnuo 25 €")

    assert parsed.title == "Koncertas X"
    assert parsed.date_raw == "Spalio 4, 19:00"
    assert parsed.time_raw == "19:00"
    assert parsed.location == "Žalgirio arena, Kaunas"
    assert parsed.detected_city == "Kaunas"


def test_social_relative_keyword() -> None:
    parser = SocialPostParser(clock=lambda: FIXED_NOW)
    parsed = parser.parse("Great party tonight!\nVieta: Lizdas bar")

    assert parsed.date_raw == "2025-12-20"
    assert parsed.title == "Great party tonight!"
    assert parsed.location == "Lizdas bar"


def test_social_tomorrow_and_new_year() -> None:
    parser = SocialPostParser(clock=lambda: FIXED_NOW)

    assert parser.parse("Rytoj groja DJ Tomas").date_raw == "2025-12-21"
    assert parser.parse("Naujųjų sutikimas klube").date_raw == "2025-12-31"


def test_social_inline_date_and_pin() -> None:
    parser = SocialPostParser(clock=lambda: FIXED_NOW)
    parsed = parser.parse("Join us on January 3rd at 9 PM for a concert\n📍 Vilnius Old Town")

    assert parsed.date_raw == "January 3rd"
    assert parsed.time_raw == "21:00"
    assert parsed.location == "Vilnius Old Town"
    assert parsed.detected_city == "Vilnius"


def test_social_without_date_is_skipped() -> None:
    parser = SocialPostParser(clock=lambda: FIXED_NOW)
    assert parser.parse("Just some thoughts about music") is None


def test_social_title_truncated() -> None:
    parser = SocialPostParser(clock=lambda: FIXED_NOW)
    parsed = parser.parse("x" * 300 + " today")
    assert len(parsed.title) == 120


def test_parser_for_family() -> None:
    assert isinstance(parser_for_family(SourceFamily.LISTING), ListingEventParser)
    assert isinstance(parser_for_family(SourceFamily.SOCIAL), SocialPostParser)
    assert type(parser_for_family(SourceFamily.GENERIC)) is GenericEventParser


def test_listing_card_dotted_time() -> None:
    parsed = ListingEventParser().parse("Koncertas X\nSpalio 4, 19.30\nLoftas, Vilnius\nnuo 12.50 €")

    assert parsed.date_raw == "Spalio 4, 19.30"
    assert parsed.time_raw == "19:30"
