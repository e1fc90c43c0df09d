import json

import pytest

import music_aggregator as ma
from tests.conftest import METING
from tests.support import factories
from tests.support.stubs import FakeSession, json_ok


@pytest.fixture
def cli_session(monkeypatch):
    session = FakeSession()
    monkeypatch.setattr(ma.requests, "Session", lambda: session)
    monkeypatch.setattr(ma, "_load_env_file", lambda: None)
    monkeypatch.setenv("METING_API_BASE", METING)
    monkeypatch.setenv("GDSTUDIO_API_BASE", "https://gd.test/api.php")
    return session


@pytest.mark.unit
def test_share_as_json(cli_session, capsys):
    ma.main(["--json", "--source", "netease", "share", "42"])

    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["value"]["url"] == "https://music.163.com/#/song?id=42"
    assert cli_session.calls == []


@pytest.mark.unit
def test_search_prints_tracks(cli_session, capsys):
    cli_session.add(f"{METING}/search", json_ok([factories.netease_song(1, name="Hello")]),
                    params={"server": "kuwo"})

    ma.main(["--source", "kuwo", "search", "hello"])

    out = capsys.readouterr().out
    assert "Hello" in out
    assert "Artist" in out


@pytest.mark.unit
def test_url_failure_is_reported(cli_session, capsys):
    ma.main(["url", "1", "--quality", "high"])

    assert "Ошибка" in capsys.readouterr().out


@pytest.mark.unit
def test_unknown_command_exits():
    with pytest.raises(SystemExit):
        ma.main(["download", "1"])


@pytest.mark.unit
def test_unknown_source_is_rejected_before_any_request(cli_session):
    with pytest.raises(SystemExit):
        ma.main(["--source", "foo", "search", "x"])

    assert cli_session.calls == []


@pytest.mark.unit
def test_source_applies_to_bare_playlist_id(cli_session, capsys):
    cli_session.add(f"{METING}/playlist/999", json_ok({"id": 999, "name": "QQ Mix", "songs": []}),
                    params={"server": "tencent"})

    ma.main(["--json", "--source", "TENCENT", "playlist", "999"])

    out = json.loads(capsys.readouterr().out)
    assert out["ok"] is True
    assert out["value"]["source"] == "tencent"
    assert cli_session.calls[0]["params"] == {"server": "tencent"}
