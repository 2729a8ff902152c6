from __future__ import annotations

import json
from pathlib import Path

import pytest
from fakes import SERVER_URL, TOKEN, add_capture

from kat_mobile.const import TARGET_WAVELENGTH_LENGTH
from kat_mobile.storage import LocalStore
from scripts import build_library, cli, sync_agent


def test_cli_discovers_project_commands() -> None:
    commands = cli._discover_commands()
    assert commands["sync-agent"] == "scripts.sync_agent"
    assert commands["build-library"] == "scripts.build_library"
    assert "cli" not in commands


def test_build_library_resamples_csv_spectra(tmp_path: Path) -> None:
    source = tmp_path / "spectra"
    source.mkdir()
    (source / "MDMA.csv").write_text("wavelength,intensity\n400,0\n1000,5\n1900,10\n", encoding="utf-8")
    (source / "Caffeine.csv").write_text("1800,2\n500,2\n", encoding="utf-8")
    (source / "broken.csv").write_text("wavelength,intensity\nfoo,bar\n", encoding="utf-8")

    library = build_library.build_library(source, version="test")

    assert library["version"] == "test"
    assert len(library["wavelengthAxis"]) == TARGET_WAVELENGTH_LENGTH
    assert library["wavelengthAxis"][0] == 500
    assert [entry["name"] for entry in library["substances"]] == ["Caffeine", "MDMA"]
    for entry in library["substances"]:
        assert len(entry["data"]) == TARGET_WAVELENGTH_LENGTH
        assert max(entry["data"]) == pytest.approx(1.0)


def test_build_library_main_writes_loadable_file(tmp_path: Path) -> None:
    source = tmp_path / "spectra"
    source.mkdir()
    (source / "Ketamine.csv").write_text("500,1\n1800,3\n", encoding="utf-8")
    output = tmp_path / "out" / "library.json"

    assert build_library.main([str(source), "--output", str(output), "--version", "v1"]) == 0

    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["version"] == "v1"
    assert payload["substances"][0]["name"] == "Ketamine"
    assert build_library.main([str(tmp_path / "missing")]) == 1


def test_sync_agent_parse_args() -> None:
    args = sync_agent.parse_args(["--db", "kat.db", "run", "--interval", "60"])
    assert args.command == "run"
    assert args.interval == 60
    assert args.db == Path("kat.db")
    with pytest.raises(SystemExit):
        sync_agent.parse_args([])


def test_sync_agent_status_and_reset(tmp_path: Path, capsys) -> None:
    db = tmp_path / "agent.db"
    store = LocalStore(db)
    session = store.create_session()
    add_capture(store, session.id)
    store.enqueue(session.id)
    store.mark_sync_failed(session.id, "boom")
    store.close()

    assert sync_agent.main(["--db", str(db), "--server-url", SERVER_URL, "--token", TOKEN, "status"]) == 0
    status = json.loads(capsys.readouterr().out)
    assert status["configured"] is True
    assert status["failed"] == 1
    assert TOKEN not in json.dumps(status)

    assert sync_agent.main(["--db", str(db), "reset-failed"]) == 0
    assert json.loads(capsys.readouterr().out) == {"reset": 1}

    reopened = LocalStore(db)
    assert reopened.count_pending() == 1
    assert reopened.get_settings().sync_server_url == SERVER_URL
    reopened.close()


def test_cli_dispatches_to_command_main(tmp_path: Path, capsys) -> None:
    assert cli.main(["--list"]) == 0
    assert capsys.readouterr().out.split() == ["build-library", "sync-agent"]

    db = tmp_path / "cli.db"
    assert cli.main(["sync-agent", "--db", str(db), "reset-failed"]) == 0
    assert json.loads(capsys.readouterr().out) == {"reset": 0}
