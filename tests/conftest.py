import pytest

import ogamed.persistence as persistence


@pytest.fixture(autouse=True)
def isolated_state(tmp_path, monkeypatch):
    """Cookies and session state land in tmp_path, never in the working directory."""
    monkeypatch.setattr(persistence, "COOKIES_DIR", tmp_path / "cookies")
    monkeypatch.setattr(persistence, "STATE_DIR", tmp_path / "state")
    return tmp_path
