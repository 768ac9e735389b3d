import math

from co2map.sanitize import (
    parse_number,
    sanitize_number,
    sanitize_string,
    strip_markup,
    validate_coordinates,
)


def test_sanitize_number_clamps_and_zeroes_non_finite():
    assert sanitize_number("42.5") == 42.5
    assert sanitize_number("5e13") == 1e12
    assert sanitize_number(-5e13) == -1e12
    assert sanitize_number("nan") == 0
    assert sanitize_number("inf") == 0
    assert sanitize_number("abc") == 0
    assert sanitize_number("") == 0


def test_parse_number_distinguishes_text():
    assert parse_number(" 7 ") == 7.0
    assert parse_number("7 t") is None
    assert parse_number("") is None
    assert parse_number(None) is None
    assert math.isnan(parse_number("nan"))


def test_sanitize_string_truncates_and_strips_markup():
    assert sanitize_string("  Madrid  ") == "Madrid"
    assert sanitize_string("<b>Galicia</b>") == "Galicia"
    assert sanitize_string("<script>alert(1)</script>Murcia") == "Murcia"
    assert sanitize_string("x" * 500) == "x" * 200
    assert sanitize_string(12) == ""
    assert sanitize_string(None) == ""


def test_strip_markup_leaves_plain_text_alone():
    assert strip_markup("power:electricity-generation") == "power:electricity-generation"
    assert strip_markup('<img src=x onerror="alert(1)">ok') == "ok"


def test_validate_coordinates_uses_spain_bounds():
    assert validate_coordinates(40.4, -3.7)
    assert validate_coordinates(27.6, -18.2)
    assert validate_coordinates(43.8, 4.3)
    assert not validate_coordinates(90, 0)
    assert not validate_coordinates(40.4, 5.0)
