from __future__ import annotations

import json
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner
from PIL import Image

from mapart import __version__
from mapart.main import mapart

pytestmark = [
    allure.epic("Command Surface"),
    allure.feature("CLI"),
]


@pytest.fixture()
def cli_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    layout_path = tmp_path / "layout.json"
    layout_path.write_text(
        json.dumps({"origin": [0, 64, 0], "grid_width": 8, "grid_height": 8, "band_width": 4}),
        encoding="utf-8",
    )
    monkeypatch.setenv("MAPART_LAYOUT_PATH", str(layout_path))
    monkeypatch.setenv("MAPART_ASSETS_DIR", str(tmp_path / "assets"))
    monkeypatch.setenv("MAPART_TICK_SECONDS", "0.01")
    monkeypatch.setenv("MAPART_PAUSE_POLL_SECONDS", "0")
    monkeypatch.setenv("MAPART_STARTUP_STAGGER_SECONDS", "0")
    monkeypatch.setenv("MAPART_WORKER_NAMES", "builder-1,builder-2")
    return tmp_path / "cli.db"


@pytest.fixture()
def image_path(tmp_path: Path) -> Path:
    path = tmp_path / "art.png"
    image = Image.new("RGB", (16, 16), (221, 221, 221))
    for x in range(8):
        for y in range(16):
            image.putpixel((x, y), (25, 25, 25))
    image.save(path)
    return path


def _invoke(*args: str) -> str:
    result = CliRunner().invoke(mapart, list(args))
    assert result.exit_code == 0, result.output
    return result.output


def test_version_option() -> None:
    result = CliRunner().invoke(mapart, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_start_status_and_bands(cli_env: Path, image_path: Path) -> None:
    output = _invoke("start", str(image_path), "--algorithm", "none", "--db-path", str(cli_env))

    assert "Started project" in output
    assert "Grid: 8x8" in output
    assert "Bands: 2 (width 4)" in output

    status = _invoke("status", "--db-path", str(cli_env))
    assert "State: active" in status
    assert "Cells placed: 0/64 (0.0%)" in status
    assert "pending=2" in status

    bands = _invoke("bands", "--db-path", str(cli_env))
    assert "Bands: 2" in bands
    assert "#0 status=pending holder=-" in bands


def test_pause_continue_and_clear(cli_env: Path, image_path: Path) -> None:
    assert "No project to pause." in _invoke("pause", "--db-path", str(cli_env))

    _invoke("start", str(image_path), "--db-path", str(cli_env))
    assert "Project paused" in _invoke("pause", "--db-path", str(cli_env))
    assert "State: paused" in _invoke("status", "--db-path", str(cli_env))

    assert "Project resumed." in _invoke("continue", "--db-path", str(cli_env))
    assert "State: active" in _invoke("status", "--db-path", str(cli_env))

    assert "Project cleared." in _invoke("clear", "--db-path", str(cli_env))
    assert "No project." in _invoke("status", "--db-path", str(cli_env))


def test_start_writes_preview(cli_env: Path, image_path: Path, tmp_path: Path) -> None:
    preview = tmp_path / "preview.png"

    output = _invoke(
        "start",
        str(image_path),
        "--db-path",
        str(cli_env),
        "--preview",
        str(preview),
    )

    assert f"Preview: {preview}" in output
    with Image.open(preview) as image:
        assert image.size == (32, 32)


def test_start_reports_missing_image(cli_env: Path, tmp_path: Path) -> None:
    result = CliRunner().invoke(
        mapart,
        ["start", str(tmp_path / "missing.png"), "--db-path", str(cli_env)],
    )

    assert result.exit_code == 1
    assert "Image not found" in result.output


def test_start_resolves_asset_names(cli_env: Path, image_path: Path, tmp_path: Path) -> None:
    assets = tmp_path / "assets"
    assets.mkdir()
    (assets / "logo.png").write_bytes(image_path.read_bytes())

    output = _invoke("start", "logo.png", "--db-path", str(cli_env))

    assert "Started project: logo.png" in output


def test_worker_command_builds_the_project(cli_env: Path, image_path: Path) -> None:
    _invoke("start", str(image_path), "--algorithm", "none", "--db-path", str(cli_env))

    output = _invoke("worker", "--db-path", str(cli_env), "--max-ticks", "12")

    assert "Worker builder-1 summary" in output
    assert "completed=2" in output
    status = _invoke("status", "--db-path", str(cli_env))
    assert "Cells placed: 64/64 (100.0%)" in status
    assert "All bands completed." in status

    events = _invoke("bands", "--db-path", str(cli_env), "--events", "10")
    assert "#1 status=completed holder=builder-1" in events
    assert "completed worker=builder-1" in events


def test_worker_index_without_configured_name_fails(cli_env: Path) -> None:
    result = CliRunner().invoke(mapart, ["worker", "--db-path", str(cli_env), "--index", "5"])

    assert result.exit_code == 1
    assert "pass --name" in result.output
