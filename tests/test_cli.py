import json
import logging
import sys

import pytest


@pytest.fixture
def dump_file(tmp_path):
    songs = [
        {"id": f"s{i}", "title": f"Track {i}", "artist": f"Artist {i % 3}",
         "genre": ["rock", "pop", "jazz"][i % 3], "popularity": 90 - i * 5,
         "danceability": 0.5, "energy": 0.4 + i * 0.03, "loudness": -7.0, "mode": 1,
         "valence": 0.5, "tempo": 118.0 + i, "time_signature": 4}
        for i in range(12)
    ]
    payload = {
        "songs": songs,
        "users": [99],
        "likes": [
            {"user_id": 7, "song_id": "s0", "created_at": "2024-04-01T12:00:00+00:00"},
            {"user_id": "8", "song_id": "s4"},
        ],
        "plays": [
            {"user_id": 7, "song_id": "s2", "play_count": 4, "last_played": "2024-04-02T08:00:00"},
        ],
    }
    path = tmp_path / "dump.json"
    path.write_text(json.dumps(payload))
    return path


@pytest.fixture
def imported(fresh_cli, dump_file):
    assert fresh_cli.main(["import", str(dump_file)]) == 0
    return fresh_cli


def test_cli_dispatch_stats(fresh_cli, monkeypatch):
    called = {}

    def fake_stats(args):
        called["command"] = args.command

    monkeypatch.setattr(fresh_cli, "cmd_stats", fake_stats)
    monkeypatch.setattr(sys, "argv", ["prog", "stats"])

    assert fresh_cli.main() == 0
    assert called["command"] == "stats"


def test_cli_parses_recommend_args(fresh_cli, monkeypatch):
    captured = {}

    def fake_recommend(args):
        captured.update(vars(args))

    monkeypatch.setattr(fresh_cli, "cmd_recommend", fake_recommend)

    fresh_cli.main(["recommend", "--strategy", "hybrid", "--user", "7", "--song", "s1",
                    "--limit", "5", "--format", "json"])

    assert captured["strategy"] == "hybrid"
    assert captured["user"] == "7"
    assert captured["song"] == "s1"
    assert captured["limit"] == 5
    assert captured["format"] == "json"


def test_recommend_defaults_to_smart(fresh_cli, monkeypatch):
    captured = {}
    monkeypatch.setattr(fresh_cli, "cmd_recommend", lambda args: captured.update(vars(args)))

    fresh_cli.main(["recommend"])

    assert captured["strategy"] == "smart"
    assert captured["user"] is None
    assert captured["limit"] is None


def test_import_and_stats(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["stats"]) == 0

    assert "Songs: 12" in caplog.text
    assert "Users: 3" in caplog.text
    assert "Likes: 2" in caplog.text
    assert "Plays: 1" in caplog.text


def test_recommend_content_json(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["recommend", "--strategy", "content", "--song", "s0",
                          "--limit", "3", "--format", "json"]) == 0

    payload = json.loads(caplog.records[-1].getMessage())
    assert [r["rank"] for r in payload] == [1, 2, 3]
    assert all(r["score_type"] == "content" for r in payload)
    assert "s0" not in [r["song"]["id"] for r in payload]


def test_recommend_smart_for_numeric_user(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["recommend", "--user", "7", "--limit", "4"]) == 0

    assert "Smart recommendations for user 7" in caplog.text
    assert "(hybrid)" in caplog.text


def test_recommend_guest_gets_popular(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["recommend", "--limit", "2"]) == 0

    assert "1. Track 0" in caplog.text
    assert "(popular_fallback)" in caplog.text


def test_recommend_missing_song_exits_nonzero(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["recommend", "--strategy", "content", "--song", "nope"]) == 1
    assert "Song not found: nope" in caplog.text


def test_recommend_content_requires_song(imported):
    with pytest.raises(SystemExit):
        imported.main(["recommend", "--strategy", "content"])


def test_user_similarity_command(imported, caplog):
    caplog.set_level(logging.INFO)

    assert imported.main(["user-similarity", "7", "8"]) == 0
    assert "Similarity between 7 and 8: 0.00" in caplog.text

    assert imported.main(["user-similarity", "7", "404"]) == 1
    assert "User not found: 404" in caplog.text


def test_import_missing_file_exits_nonzero(fresh_cli, tmp_path, caplog):
    caplog.set_level(logging.INFO)

    assert fresh_cli.main(["import", str(tmp_path / "absent.json")]) == 1
    assert "Unable to read import file" in caplog.text


def test_import_malformed_json_exits_nonzero(fresh_cli, tmp_path, caplog):
    caplog.set_level(logging.INFO)
    path = tmp_path / "broken.json"
    path.write_text("{\"songs\": [")

    assert fresh_cli.main(["import", str(path)]) == 1
    assert "Unable to read import file" in caplog.text
