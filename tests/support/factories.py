"""Raw upstream payloads shaped like Meting / GDStudio / kuwo responses."""


def netease_song(song_id=1, name="Song", **overrides):
    data = {
        "id": song_id,
        "name": name,
        "ar": [{"id": 10, "name": "Artist"}],
        "al": {"id": 20, "name": "Album", "picUrl": "https://p.music.126.net/cover.jpg"},
        "dt": 215000,
    }
    data.update(overrides)
    return data


def gdstudio_song(song_id="1", name="Song", source="netease", **overrides):
    data = {
        "id": song_id,
        "name": name,
        "artist": ["Artist"],
        "album": "Album",
        "pic_id": "pic-" + str(song_id),
        "lyric_id": str(song_id),
        "source": source,
    }
    data.update(overrides)
    return data


def kuwo_song(rid="MUSIC_123", **overrides):
    data = {
        "MUSICRID": rid,
        "SONGNAME": "Kuwo Song",
        "ARTIST": "A;B",
        "ALBUM": "Kuwo Album",
        "DURATION": "240",
    }
    data.update(overrides)
    return data
