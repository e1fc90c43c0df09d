import pytest

import music_aggregator as ma


def labels(attempts):
    return [a.label for a in attempts]


@pytest.fixture
def resolver():
    return ma.SourceResolver(ma.AggregatorConfig())


@pytest.mark.unit
def test_media_plan_tries_every_priority_server_then_fallbacks(resolver):
    assert labels(resolver.plan("media-url", "kuwo")) == [
        "meting@kuwo",
        "meting@netease",
        "meting@tencent",
        "meting@kugou",
        "gdstudio@kuwo",
        "unlock",
    ]


@pytest.mark.unit
def test_media_plan_has_no_duplicates(resolver):
    plan = labels(resolver.plan("media-url", "netease"))
    assert plan == ["meting@netease", "meting@kuwo", "meting@tencent", "meting@kugou", "gdstudio@netease", "unlock"]


@pytest.mark.unit
@pytest.mark.parametrize(
    "operation, expected",
    [
        ("search", ["meting@tencent", "gdstudio@tencent"]),
        ("info", ["meting@tencent", "unlock"]),
        ("lyric", ["meting@tencent", "gdstudio@tencent", "unlock"]),
        ("playlist", ["meting@tencent"]),
        ("album", ["meting@tencent"]),
        ("artist", ["meting@tencent"]),
    ],
)
def test_plans_per_operation(resolver, operation, expected):
    assert labels(resolver.plan(operation, "tencent")) == expected


@pytest.mark.unit
def test_unknown_preferred_source_uses_configured_server():
    resolver = ma.SourceResolver(ma.AggregatorConfig(server="kugou"))
    assert resolver.primary("spotify") == "kugou"
    assert labels(resolver.plan("info", None)) == ["meting@kugou", "unlock"]


@pytest.mark.unit
def test_unknown_operation_raises(resolver):
    with pytest.raises(ValueError):
        resolver.plan("download")


@pytest.mark.unit
@pytest.mark.parametrize(
    "server, quality, expected",
    [
        ("netease", "low", "128"),
        ("netease", "standard", "320"),
        ("netease", "high", "999"),
        ("tencent", "super", "999"),
        ("kuwo", "standard", "320"),
        ("kuwo", "high", "2000"),
        ("kuwo", "super", "2000"),
        ("netease", "bogus", "320"),
    ],
)
def test_bitrate_table(server, quality, expected):
    assert ma.SourceResolver.bitrate(server, quality) == expected


@pytest.mark.unit
def test_unknown_quality_becomes_standard():
    assert ma.normalize_quality("ultra") == "standard"
    assert ma.normalize_quality("HIGH") == "high"


@pytest.mark.unit
@pytest.mark.parametrize(
    "url, expected",
    [
        ("http://sy.kuwo.cn/a.mp3", "https://proxy.test/sy.kuwo.cn/a.mp3"),
        ("https://music.163.com/song/media/outer/url?id=1", "https://proxy.test/music.163.com/song/media/outer/url?id=1"),
        ("https://ws.stream.qqmusic.qq.com/x.m4a", "https://proxy.test/ws.stream.qqmusic.qq.com/x.m4a"),
        ("https://m701.music.126.net/a.mp3", "https://m701.music.126.net/a.mp3"),
        ("https://evilmusic.163.com/a.mp3", "https://evilmusic.163.com/a.mp3"),
    ],
)
def test_apply_proxy_by_host_suffix(url, expected):
    assert ma.apply_proxy(url, "https://proxy.test/") == expected


@pytest.mark.unit
def test_apply_proxy_without_proxy_is_identity():
    assert ma.apply_proxy("http://sy.kuwo.cn/a.mp3", None) == "http://sy.kuwo.cn/a.mp3"


@pytest.mark.unit
def test_plans_without_matcher_leave_out_unlock():
    resolver = ma.SourceResolver(ma.AggregatorConfig(), unlock=False)

    assert labels(resolver.plan("info")) == ["meting@netease"]
    assert "unlock" not in labels(resolver.plan("media-url"))
    assert labels(resolver.plan("lyric")) == ["meting@netease", "gdstudio@netease"]
