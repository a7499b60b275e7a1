import json

import pytest

from supply_db import cli


@pytest.fixture
def run(db_path, capsys, monkeypatch):
    for key in ("SUPPLY_DB_DATA", "SUPPLY_DB_LOG"):
        monkeypatch.delenv(key, raising=False)

    def _run(*argv):
        code = cli.main(["--data", db_path, *argv])
        out, err = capsys.readouterr()
        return code, (json.loads(out) if out.strip() else None), err

    return _run


def test_create_get_update_delete(run):
    code, created, _ = run("create", "--name", "Cotton", "--origin", "Gujarat",
                           "--location", "Mumbai", "--status", "Manufactured")
    assert code == 0
    assert created["id"] == 0 and created["last_update"] is None

    code, got, _ = run("get", "0")
    assert code == 0 and got == created

    code, updated, _ = run("update", "0", "--location", "Antwerp", "--status", "In Transit",
                           "--iot-data", '{"temp": 18}')
    assert code == 0
    assert updated["current_location"] == "Antwerp"
    assert updated["iot_data"] == '{"temp": 18}'
    assert updated["name"] == "Cotton"

    code, deleted, _ = run("delete", "0")
    assert code == 0 and deleted == updated

    code, out, err = run("get", "0")
    assert code == 1 and out is None
    assert "NotFound" in err


def test_invalid_input_exit_code(run):
    code, out, err = run("create", "--name", " ", "--origin", "x", "--location", "y", "--status", "z")
    assert code == 1
    assert "Product name cannot be empty" in err
    code, stats, _ = run("stats")
    assert stats["next_id"] == 0 and stats["records"] == 0


def test_stats(run):
    run("create", "--name", "a", "--origin", "b", "--location", "c", "--status", "d")
    code, stats, _ = run("stats")
    assert code == 0
    assert stats["records"] == 1
    assert stats["next_id"] == 1
    assert stats["regions"] == {"0": 1, "1": 1}


def test_log_file(run, tmp_path):
    log_path = tmp_path / "ops.log"
    run("--log", str(log_path), "create", "--name", "a", "--origin", "b",
        "--location", "c", "--status", "d")
    assert "created product id=0" in log_path.read_text(encoding="utf-8")


def test_bad_env_config(db_path, capsys, monkeypatch):
    monkeypatch.setenv("SUPPLY_DB_PAGE_SIZE", "tiny")
    assert cli.main(["--data", db_path, "stats"]) == 2
    assert "ConfigError" in capsys.readouterr().err


def test_update_name_and_origin_are_validated_not_written(run):
    run("create", "--name", "Cotton", "--origin", "Gujarat", "--location", "Mumbai", "--status", "Manufactured")
    code, out, err = run("update", "0", "--name", " ", "--location", "Antwerp", "--status", "In Transit")
    assert code == 1 and out is None
    assert "Product name cannot be empty" in err

    code, updated, _ = run("update", "0", "--name", "Silk", "--origin", "Bursa",
                           "--location", "Antwerp", "--status", "In Transit")
    assert code == 0
    assert (updated["name"], updated["origin"]) == ("Cotton", "Gujarat")

    code, out, err = run("update", "9", "--location", "x", "--status", "y")
    assert code == 1 and "NotFound" in err


def test_stats_reports_buffer_pool_counters(run):
    run("create", "--name", "a", "--origin", "b", "--location", "c", "--status", "d")
    _, stats, _ = run("stats")
    bp = stats["buffer_pool"]
    assert bp["policy"] == "LRU"
    assert bp["max_cached"] >= bp["cached"] > 0
    assert bp["reads"] == bp["miss"]
    assert bp["discarded"] == 0
