import pytest

import music_aggregator as ma


@pytest.mark.unit
def test_defaults_without_env():
    cfg = ma.AggregatorConfig.from_env({})

    assert cfg.server == "netease"
    assert cfg.server_priority == ("netease", "kuwo", "tencent", "kugou")
    assert cfg.unm_sources == ma.UNM_SOURCES
    assert cfg.proxy_url is None
    assert cfg.cookie is None
    assert cfg.page_size == 20
    assert cfg.timeout == 10


@pytest.mark.unit
def test_invalid_server_falls_back_to_default(caplog):
    cfg = ma.AggregatorConfig.from_env({"METING_SERVER": "spotify"})

    assert cfg.server == "netease"
    assert "spotify" in caplog.text


@pytest.mark.unit
def test_server_alias_and_case():
    assert ma.AggregatorConfig.from_env({"METING_SOURCE": " Kuwo "}).server == "kuwo"


@pytest.mark.unit
def test_proxy_must_be_http():
    assert ma.AggregatorConfig.from_env({"PROXY_URL": "ftp://proxy"}).proxy_url is None
    assert ma.AggregatorConfig.from_env({"PROXY_URL": "https://proxy.test/"}).proxy_url == "https://proxy.test/"


@pytest.mark.unit
def test_priority_drops_unknown_and_duplicates():
    cfg = ma.AggregatorConfig.from_env({"SERVER_PRIORITY": "kuwo, foo,KUWO,tencent"})
    assert cfg.server_priority == ("kuwo", "tencent")


@pytest.mark.unit
def test_priority_with_only_unknown_names_uses_default():
    cfg = ma.AggregatorConfig.from_env({"SERVER_PRIORITY": "foo,bar"})
    assert cfg.server_priority == ma.SERVER_PRIORITY


@pytest.mark.unit
@pytest.mark.parametrize("raw, expected", [("500", 100), ("5", 5), ("abc", 20), ("0", 20), ("", 20)])
def test_page_size_is_clamped(raw, expected):
    assert ma.AggregatorConfig.from_env({"SEARCH_PAGE_SIZE": raw}).page_size == expected


@pytest.mark.unit
def test_bases_cookie_and_timeout():
    cfg = ma.AggregatorConfig.from_env({
        "METING_API_BASE": "https://m.test/api.php/",
        "GDSTUDIO_API_BASE": "https://g.test/api.php",
        "MUSIC_U": "cookie-value",
        "UNM_SOURCES": "kuwo,migu",
        "MUSIC_API_TIMEOUT": "2.5",
    })

    assert cfg.meting_api_base == "https://m.test/api.php"
    assert cfg.gdstudio_api_base == "https://g.test/api.php"
    assert cfg.cookie == "cookie-value"
    assert cfg.unm_sources == ("kuwo", "migu")
    assert cfg.timeout == 2.5


@pytest.mark.unit
def test_reads_process_environment(monkeypatch):
    monkeypatch.setenv("METING_SERVER", "tencent")
    assert ma.AggregatorConfig.from_env().server == "tencent"


@pytest.mark.unit
def test_with_overrides_returns_new_snapshot():
    cfg = ma.AggregatorConfig()
    other = cfg.with_overrides(server="kugou")

    assert other.server == "kugou"
    assert cfg.server == "netease"


@pytest.mark.unit
def test_env_file_does_not_override_existing(monkeypatch, tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("# comment\nMETING_SERVER=kuwo\nMUSIC_U=abc\nbroken line\n", encoding="utf-8")
    environ = {"METING_SERVER": "tencent"}
    monkeypatch.setattr(ma.os, "environ", environ)

    ma._load_env_file(env_file)

    assert environ == {"METING_SERVER": "tencent", "MUSIC_U": "abc"}
