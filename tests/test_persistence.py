import json
import logging
import time

import ogamed.persistence as persistence


def test_cookies_round_trip_and_clear():
    cookies = [{"name": "gf-token-production", "value": "abc", "domain": "gameforge.com", "path": "/"}]
    persistence.save_cookies("user", cookies)
    assert persistence.load_cookies("user") == cookies
    persistence.clear_cookies("user")
    assert persistence.load_cookies("user") == []
    persistence.clear_cookies("user")


def test_invalid_cookie_file_is_logged(isolated_state, caplog):
    (isolated_state / "cookies").mkdir()
    (isolated_state / "cookies" / "user.json").write_text("{", encoding="utf-8")
    with caplog.at_level(logging.ERROR):
        assert persistence.load_cookies("user") == []
    assert "Failed to load cookies" in caplog.text


def test_entries_without_name_are_dropped(isolated_state):
    (isolated_state / "cookies").mkdir()
    (isolated_state / "cookies" / "user.json").write_text(
        json.dumps([{"value": "x"}, "junk", {"name": "PHPSESSID", "value": "1"}]), encoding="utf-8"
    )
    assert persistence.load_cookies("user") == [{"name": "PHPSESSID", "value": "1"}]


def test_state_round_trip():
    persistence.save_state("user", "https://s180-en.ogame.gameforge.com", "7.6.2")
    assert persistence.load_state("user") == ("https://s180-en.ogame.gameforge.com", "7.6.2")
    assert persistence.load_state("nobody") == ("", "")


def test_expired_state_is_ignored(monkeypatch):
    persistence.save_state("user", "https://s180-en.ogame.gameforge.com", "7.6.2", ttl=10)
    now = time.time()
    monkeypatch.setattr(persistence.time, "time", lambda: now + 60)
    assert persistence.load_state("user") == ("", "")
