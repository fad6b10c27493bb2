from __future__ import annotations

import json
import sys
from pathlib import Path

from mapmosaic.tools import config, discovery
from tests.utils import write_script


def test_load_tool_paths_from_env(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "tool_paths.json"
    config_path.write_text(
        json.dumps({"vips": str(tmp_path / "vips"), "magick": str(tmp_path / "magick")}),
        encoding="utf-8",
    )
    monkeypatch.setenv(config.ENV_TOOL_PATHS, str(config_path))

    tool_paths = config.load_tool_paths()

    assert tool_paths["vips"] == tmp_path / "vips"
    assert tool_paths["magick"] == tmp_path / "magick"


def test_load_tool_paths_invalid_json(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "tool_paths.json"
    config_path.write_text("{not-json", encoding="utf-8")
    monkeypatch.setenv(config.ENV_TOOL_PATHS, str(config_path))

    assert config.load_tool_paths() == {}


def test_load_tool_paths_non_dict(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "tool_paths.json"
    config_path.write_text(json.dumps(["not", "dict"]), encoding="utf-8")
    monkeypatch.setenv(config.ENV_TOOL_PATHS, str(config_path))

    assert config.load_tool_paths() == {}


def test_load_tool_paths_explicit_path(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "tool_paths.json"
    config_path.write_text(json.dumps({"vips": "/opt/vips/bin/vips", "bad": 3}), encoding="utf-8")
    monkeypatch.delenv(config.ENV_TOOL_PATHS, raising=False)

    tool_paths = config.load_tool_paths(config_path)

    assert tool_paths == {"vips": Path("/opt/vips/bin/vips")}


def test_load_tool_paths_defaults(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.delenv(config.ENV_TOOL_PATHS, raising=False)
    monkeypatch.chdir(tmp_path)
    tool_config = tmp_path / "tools" / "tool_paths.json"
    tool_config.parent.mkdir(parents=True, exist_ok=True)
    tool_config.write_text(json.dumps({"vipsdisp": "/usr/bin/vipsdisp"}), encoding="utf-8")

    assert config.load_tool_paths()["vipsdisp"] == Path("/usr/bin/vipsdisp")


def test_load_tool_paths_no_candidates(monkeypatch) -> None:
    monkeypatch.delenv(config.ENV_TOOL_PATHS, raising=False)
    monkeypatch.setattr(config, "_default_candidate_paths", lambda: [])
    assert config.load_tool_paths() == {}


def test_find_tool_prefers_configured_path(tmp_path: Path, monkeypatch) -> None:
    vips = tmp_path / "vips"
    vips.write_text("", encoding="utf-8")
    monkeypatch.setattr("shutil.which", lambda name: "/usr/bin/" + name)

    assert discovery.find_tool("vips", {"vips": vips}) == vips
    assert discovery.find_vips({"vips": vips}) == [str(vips)]


def test_find_tool_missing_configured_path_falls_back(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: None)

    assert discovery.find_tool("vips", {"vips": tmp_path / "missing"}) is None
    assert discovery.find_vips({}) is None
    assert discovery.find_montage({}) is None


def test_find_montage_imagemagick6(tmp_path: Path, monkeypatch) -> None:
    montage = tmp_path / "montage"
    montage.write_text("", encoding="utf-8")
    monkeypatch.setattr("shutil.which", lambda name: None)

    assert discovery.find_montage({"montage": montage}) == [str(montage)]


def test_tool_version_parses_output(tmp_path: Path) -> None:
    script = write_script(tmp_path / "fake_vips.py", 'print("vips-8.15.1-Tue Jan  2 2024")\n')

    assert discovery.tool_version([sys.executable, str(script)]) == "8.15.1"


def test_tool_version_failure(tmp_path: Path) -> None:
    script = write_script(tmp_path / "broken.py", "import sys\nsys.exit(2)\n")

    assert discovery.tool_version([sys.executable, str(script)]) is None


def test_launch_viewer_without_vipsdisp(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setattr("shutil.which", lambda name: None)

    assert discovery.launch_viewer(tmp_path / "stitched.png", {}) is None


def test_launch_viewer_spawns_process(tmp_path: Path, monkeypatch) -> None:
    viewer = tmp_path / "vipsdisp"
    viewer.write_text("", encoding="utf-8")
    launched: list[tuple[list[str], dict]] = []

    class FakePopen:
        pid = 4242

        def __init__(self, command, **kwargs) -> None:
            launched.append((command, kwargs))

    monkeypatch.setattr(discovery.subprocess, "Popen", FakePopen)

    process = discovery.launch_viewer(tmp_path / "stitched.png", {"vipsdisp": viewer})

    assert isinstance(process, FakePopen)
    command, kwargs = launched[0]
    assert command == [str(viewer), str(tmp_path / "stitched.png")]
    assert kwargs["start_new_session"] is True
