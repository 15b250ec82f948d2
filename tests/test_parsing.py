import pytest

from ogamed.errors import ExtractionError
from ogamed.parsing import last_int, parse_game_date, parse_int, script_json, script_var
from ogamed.types import CelestialType, Coordinate


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1.234.567", 1234567),
        ("1,234,567", 1234567),
        ("1 234 567", 1234567),
        ("1 234 567", 1234567),
        ("1 234", 1234),
        ("1'234'567", 1234567),
        ("-12", -12),
        ("0", 0),
        ("1,5Mn", 1500000),
        ("2.75M", 2750000),
        ("3k", 3000),
        ("1,2Mrd", 1200000000),
        ("4 Bn", 4000000000),
        (42, 42),
    ],
)
def test_parse_int_understands_locales(text, expected):
    assert parse_int(text) == expected


@pytest.mark.parametrize("text", ["", "abc", "12 apples", None])
def test_parse_int_rejects_garbage(text):
    with pytest.raises(ExtractionError):
        parse_int(text, "metal")


def test_last_int_takes_the_level_after_the_label():
    assert last_int("Metal Mine 21") == 21
    assert last_int("Level 1.024") == 1024
    with pytest.raises(ExtractionError):
        last_int("Metal Mine")


def test_script_var_and_json():
    page = '<script>var token = "abc123";\nvar shipsOnPlanet = [{"id":202,"number":3}];\n</script>'
    assert script_var(page, "token") == "abc123"
    assert script_json(page, "shipsOnPlanet") == [{"id": 202, "number": 3}]
    assert script_var(page, "missing") is None
    with pytest.raises(ExtractionError):
        script_json(page, "missing")


def test_game_dates():
    d = parse_game_date("17.10.2026 12:00:01")
    assert (d.year, d.month, d.day, d.hour, d.second) == (2026, 10, 17, 12, 1)
    assert parse_game_date("yesterday") is None


def test_coordinates():
    c = Coordinate.parse("Homeworld [1:101:8]", CelestialType.MOON)
    assert c == Coordinate(1, 101, 8, CelestialType.MOON)
    assert c.is_moon()
    assert str(c) == "[1:101:8]"
    assert c.with_type(CelestialType.PLANET).to_dict() == {"galaxy": 1, "system": 101, "position": 8, "type": 1}
    assert Coordinate.parse("no coordinate") is None
