import json

import pytest

from fakes import ingame_page
from ogamed import extract_v6, extract_v7, extract_v9
from ogamed.errors import ExtractionError
from ogamed.extract_v6 import V6
from ogamed.extract_v7 import V7
from ogamed.extract_v9 import V9
from ogamed.interpreter import generation_for, interpreter_for, interpreter_named, parse_version
from ogamed.types import CelestialType, Coordinate

# Building markup the game kept from 7.x into 9.x, next to both resource bars.
SUPPLIES_V7_V9 = ingame_page(body="""
<div id="resources_metal" data-raw="12345.8">12.345</div>
<div id="resources_crystal" data-raw="6000">6.000</div>
<div id="resources_deuterium" data-raw="700">700</div>
<div id="resources_energy" data-raw="-20">-20</div>
<div id="resources_darkmatter" data-raw="8000">8.000</div>
<ul>
  <li data-technology="1"><span class="level" data-value="21">21</span></li>
  <li data-technology="2"><span class="level" data-value="18">18</span></li>
  <li data-technology="4"><span class="level" data-value="20">20</span></li>
</ul>
<script>
var resourcesBar = {"resources":{"metal":{"amount":13000.4},"crystal":{"amount":6100},"deuterium":{"amount":710},"energy":{"amount":-20},"darkmatter":{"amount":8000}}};
var upgradeEndpoint = "https://s180-en.ogame.gameforge.com/game/index.php?page=ingame&component=technologydetails&ajax=1&action=upgrade&token=9f86d08";
var token = "c0ffee";
</script>
""")

SUPPLIES_V6 = ingame_page(version="6.8.4", body="""
<span id="resources_metal">1.500.000</span>
<span id="resources_crystal">250.000</span>
<span id="resources_deuterium">3.400</span>
<span id="resources_energy">-120</span>
<div class="supply1"><span class="level"><span class="textlabel">Metal Mine</span> 24</span></div>
<div class="supply2"><span class="level"><span class="textlabel">Crystal Mine</span> 19</span></div>
<form><input type="hidden" name="token" value="abc123"></form>
<div id="productionboxbuildingcomponent"></div>
<script>baulisteCountdown(getElementByIdWithCache("b_supply1"), 3600, "x");</script>
""")

MOVEMENT = """
<div id="movementcomponent">
  <div id="fleet8812" class="fleetDetails" data-mission-type="3" data-return-flight="false"
       data-arrival-time="1700000600">
    <span class="originCoords">[1:101:8]</span>
    <span class="originPlanet"><figure class="planetIcon planet"></figure></span>
    <span class="destinationCoords">[1:101:9]</span>
    <span class="destinationPlanet"><figure class="planetIcon moon"></figure></span>
    <span class="nextTimer" data-return-time="1700001200"></span>
    <span class="reversal"><a href="/game/index.php?page=ingame&component=movement&return=8812&token=r3c4ll">back</a></span>
    <table class="fleetinfo">
      <tr><td>Small Cargo:</td><td>12</td></tr>
      <tr><td>Metal:</td><td>30.000</td></tr>
    </table>
  </div>
</div>
"""


def test_same_building_levels_from_v7_and_v9_while_resources_differ():
    v7 = interpreter_for("7.6.2")
    v9 = interpreter_for("9.1.2")
    assert v7.extract_resources_buildings(SUPPLIES_V7_V9) == v9.extract_resources_buildings(SUPPLIES_V7_V9)
    assert v7.extract_resources_buildings(SUPPLIES_V7_V9) == {1: 21, 2: 18, 4: 20}
    assert v7.extract_resources(SUPPLIES_V7_V9).metal == 12345
    assert v9.extract_resources(SUPPLIES_V7_V9).metal == 13000


def test_later_tables_only_override_what_changed():
    assert V9["extract_resources_buildings"] is V7["extract_resources_buildings"]
    assert V9["extract_fleets"] is V6["extract_fleets"]
    assert V9["extract_resources"] is extract_v9.extract_resources
    assert V7["extract_resources"] is extract_v7.extract_resources
    assert set(V6) == set(V7) == set(V9)


@pytest.mark.parametrize(
    "version, generation",
    [("6.8.4", "v6"), ("", "v6"), ("7.0.0", "v7"), ("8.4.1", "v7"), ("9.0.0", "v9"), ("10.2.3", "v9")],
)
def test_interpreter_follows_server_version(version, generation):
    assert generation_for(version) == generation
    assert interpreter_for(version).generation == generation


def test_version_parsing_and_lookup():
    assert parse_version("7.6.2-pl3") == (7, 6, 2, 3)
    assert parse_version("garbage") == (0,)
    assert interpreter_named("v9").generation == "v9"
    with pytest.raises(KeyError):
        interpreter_named("v42")
    with pytest.raises(AttributeError):
        interpreter_for("7.0.0").extract_nothing


def test_build_token_location_moved():
    assert interpreter_for("7.6.2").extract_build_token(SUPPLIES_V7_V9) == "c0ffee"
    assert interpreter_for("9.1.2").extract_build_token(SUPPLIES_V7_V9) == "9f86d08"
    assert interpreter_for("6.8.4").extract_build_token(SUPPLIES_V6) == "abc123"


def test_v6_resources_levels_and_constructions():
    interp = interpreter_for("6.8.4")
    res = interp.extract_resources(SUPPLIES_V6)
    assert (res.metal, res.crystal, res.deuterium, res.energy, res.darkmatter) == (1500000, 250000, 3400, -120, 0)
    assert interp.extract_resources_buildings(SUPPLIES_V6) == {1: 24, 2: 19}
    cons = interp.extract_constructions(SUPPLIES_V6)
    assert (cons.building_id, cons.building_countdown, cons.research_id) == (1, 3600, 0)


def test_v9_constructions_count_down_from_server_time():
    page = ingame_page(version="9.1.2", body="""
    <div id="productionboxbuildingcomponent">
      <time data-end="1700000900" data-technology-id="14"></time>
    </div>
    <div id="productionboxresearchcomponent"></div>
    """)
    cons = extract_v9.extract_constructions(page)
    assert (cons.building_id, cons.building_countdown) == (14, 900)
    assert cons.research_id == 0


def test_page_identity():
    page = ingame_page(version="7.6.2", player_id=100123)
    interp = interpreter_for("7.6.2")
    assert interp.extract_is_logged_in(page)
    assert not interp.extract_is_logged_in("<html>lobby</html>")
    assert interp.extract_server_version(page) == "7.6.2"
    assert interp.extract_server_time(page) == 1700000000
    user = interp.extract_player(page)
    assert (user.player_id, user.player_name) == (100123, "Commander")


def test_fleet_movement():
    fleets = extract_v6.extract_fleets(MOVEMENT)
    assert len(fleets) == 1
    fleet = fleets[0]
    assert fleet.id == 8812
    assert fleet.destination == Coordinate(1, 101, 9, CelestialType.MOON)
    assert fleet.ships == {202: 12}
    assert fleet.cargo.metal == 30000
    assert not fleet.return_flight
    assert fleet.return_time is not None
    assert extract_v6.extract_cancel_fleet_token(MOVEMENT, 8812) == "r3c4ll"
    with pytest.raises(ExtractionError):
        extract_v6.extract_cancel_fleet_token(MOVEMENT, 1)


def test_v7_fleet_dispatch_reads_script_json():
    page = ingame_page(body="""
    <div id="slots">Fleets: 2/5</div>
    <script>
    var fleetSendingToken = "f1337";
    var shipsOnPlanet = [{"id":202,"number":40},{"id":212,"number":3}];
    </script>
    """)
    infos = interpreter_for("8.0.0").extract_fleet_dispatch(page)
    assert infos.token == "f1337"
    assert infos.ships == {202: 40, 212: 3}
    assert (infos.slots_in_use, infos.slots_total) == (2, 5)


def test_galaxy_generations():
    v6_body = json.dumps({"galaxy": """
    <table><tr class="row">
      <td class="position">9</td>
      <td class="microplanet" data-planet-id="55"></td>
      <td class="planetname">Target</td>
      <td class="moon" data-moon-id="56"></td>
      <td class="playername" data-playerid="7" data-points="1.500"><span class="status_abbr_noob">n</span>Rookie</td>
    </tr></table>"""})
    v9_body = json.dumps({"system": {"galaxyContent": [
        {"position": 9, "planets": [
            {"planetType": 1, "planetName": "Target", "planetId": 55},
            {"planetType": 2, "resources": {"metal": {"amount": 4000}, "crystal": {"amount": 1000}}},
        ], "player": {"playerId": 7, "playerName": "Rookie", "points": 1500, "isNewbie": True}},
    ]}})
    old = extract_v6.extract_galaxy_infos(v6_body, 1, 101).position(9)
    new = extract_v9.extract_galaxy_infos(v9_body, 1, 101).position(9)
    for infos in (old, new):
        assert infos.inhabited
        assert infos.name == "Target"
        assert infos.noob
        assert infos.player.points == 1500
    assert old.moon_id == 56
    assert new.debris.metal == 4000
    assert not extract_v9.extract_galaxy_infos(v9_body, 1, 101).position(4).inhabited


def test_ajax_response_codes():
    refused = extract_v6.extract_ajax_response(json.dumps(
        {"success": False, "errors": [{"message": "Not enough resources", "error": 140013}]}
    ))
    assert (refused.ok, refused.code, refused.message) == (False, 140013, "Not enough resources")
    assert extract_v6.extract_ajax_response('{"status": "success"}').ok
    with pytest.raises(ExtractionError):
        extract_v6.extract_ajax_response("<html>")


@pytest.mark.parametrize(
    "name",
    ["extract_resources", "extract_resources_buildings", "extract_fleet_dispatch", "extract_build_token"],
)
@pytest.mark.parametrize("generation", ["v6", "v7", "v9"])
def test_missing_markup_is_an_extraction_error(generation, name):
    with pytest.raises(ExtractionError):
        getattr(interpreter_named(generation), name)("<html><body>maintenance</body></html>")


def test_v9_resource_amounts_go_through_number_parsing():
    page = SUPPLIES_V7_V9.replace('"deuterium":{"amount":710}', '"deuterium":{"amount":"n/a"}')
    with pytest.raises(ExtractionError):
        extract_v9.extract_resources(page)
    localized = SUPPLIES_V7_V9.replace('"metal":{"amount":13000.4}', '"metal":{"amount":"1.300.000"}')
    assert extract_v9.extract_resources(localized).metal == 1300000
