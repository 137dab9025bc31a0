import argparse
import json
import logging
from pathlib import Path

import pytest

from hue_lightshow import app
from hue_lightshow.app import AppConfig, _load_config
from hue_lightshow.frame import encode_frame
from hue_lightshow.gateway import SinkConfig
from hue_lightshow.state import ColourInterpolation, State


def _write_map(path: Path, events) -> Path:
    path.write_text(json.dumps({"name": "cli", "events": events}), encoding="utf-8")
    return path


def test_load_config_from_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        """
        {
            "sink": {"type": "file", "path": "frames/out.bin"},
            "tick_interval": 0.05,
            "interpolation": "smooth",
            "light_binding": {"1": 5, "2": 7},
            "ambient_lights": [5, 7]
        }
        """,
        encoding="utf-8",
    )

    config = _load_config(config_path)

    assert isinstance(config, AppConfig)
    assert config.sink == SinkConfig(kind="file", target=str(tmp_path / "frames/out.bin"))
    assert config.tick_interval == pytest.approx(0.05)
    assert config.interpolation is ColourInterpolation.SMOOTH
    assert config.light_binding == {1: 5, 2: 7}
    assert config.ambient_lights == (5, 7)


def test_load_config_defaults(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text('{"sink": {"type": "udp", "host": "127.0.0.1"}}', encoding="utf-8")

    config = _load_config(config_path)

    assert config.sink == SinkConfig(kind="udp", target="127.0.0.1", port=2100)
    assert config.tick_interval == pytest.approx(0.08)
    assert config.interpolation is ColourInterpolation.STEPPED
    assert config.light_binding == {}


@pytest.mark.parametrize(
    "contents, message",
    [
        ('{"sink": {"type": "serial"}}', "Unknown sink type"),
        ('{"sink": {"type": "udp"}}', "requires a 'host'"),
        ('{"tick_interval": 0}', "'tick_interval' must be positive"),
        ('{"interpolation": "cubic"}', "'interpolation'"),
        ('{"light_binding": {"one": 1}}', "not an integer"),
        ('{"light_binding": {"1": 300}}', "within 0-255"),
        ('{"ambient_lights": "all"}', "'ambient_lights'"),
        ("[]", "JSON object"),
    ],
)
def test_load_config_rejects_invalid_values(tmp_path: Path, contents, message) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(contents, encoding="utf-8")

    with pytest.raises(ValueError) as excinfo:
        _load_config(config_path)
    assert message in str(excinfo.value)


def test_validate_command_reports_valid_map(tmp_path: Path, capsys) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [255, 0, 0], "brightness": 1}, "startTime": 0, "endTime": 2, "lights": [1]}],
    )

    app.main(["validate", str(map_path)])

    assert "Map 'cli' is valid (1 events, 2.00s)" in capsys.readouterr().out


def test_validate_command_exits_on_collision(tmp_path: Path, caplog) -> None:
    event = {"endState": {"colour": [255, 0, 0], "brightness": 1}, "startTime": 0, "endTime": 2, "lights": [1]}
    map_path = _write_map(tmp_path / "show.json", [event, dict(event, startTime=1, endTime=3)])

    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            app.main(["validate", str(map_path)])

    assert excinfo.value.code == 1
    assert "event collides with another event" in caplog.text


def test_play_command_writes_frames_to_output(tmp_path: Path) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [255, 0, 0], "brightness": 1}, "startTime": 0, "endTime": 0, "lights": [1]}],
    )
    output = tmp_path / "frames.bin"

    app.main(["play", str(map_path), "--output", str(output)])

    assert output.read_bytes() == encode_frame(State(colour=(255, 0, 0), brightness=1.0), [1])


def test_play_command_applies_config_binding(tmp_path: Path) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [0, 0, 255], "brightness": 0.5}, "startTime": 0, "endTime": 0, "lights": [1]}],
    )
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps({"sink": {"type": "file", "path": "out.bin"}, "light_binding": {"1": 12}}),
        encoding="utf-8",
    )

    app.main(["play", str(map_path), "--config", str(config_path)])

    expected = encode_frame(State(colour=(0, 0, 255), brightness=0.5), [12])
    assert (tmp_path / "out.bin").read_bytes() == expected


def test_play_command_dry_run_logs_decoded_frames(tmp_path: Path, caplog) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [255, 255, 255], "brightness": 1}, "startTime": 0, "endTime": 0, "lights": [3]}],
    )

    with caplog.at_level(logging.INFO):
        app.main(["play", str(map_path), "--dry-run"])

    assert "frame 1 light 3" in caplog.text
    assert "brightness=1.0000" in caplog.text


def test_ambient_command_requires_lights(tmp_path: Path, caplog) -> None:
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            app.main(["ambient", "255", "0", "0", "1", "--dry-run", "--duration", "0"])

    assert excinfo.value.code == 1
    assert "No lights given" in caplog.text


def test_ambient_command_streams_for_duration(tmp_path: Path) -> None:
    output = tmp_path / "ambient.bin"

    app.main(
        [
            "ambient", "0", "255", "0", "1",
            "--lights", "4",
            "--output", str(output),
            "--tick-interval", "0.01",
            "--duration", "0.05",
        ]
    )

    frame = encode_frame(State(colour=(0, 255, 0), brightness=1.0), [4])
    data = output.read_bytes()
    assert data
    assert len(data) % len(frame) == 0
    assert data[: len(frame)] == frame


def test_udp_target_parsing() -> None:
    assert app._parse_udp_target("10.0.0.2:2200") == SinkConfig(kind="udp", target="10.0.0.2", port=2200)
    assert app._parse_udp_target("bridge.local") == SinkConfig(kind="udp", target="bridge.local")
    assert app._parse_udp_target("::1") == SinkConfig(kind="udp", target="::1")
    assert app._parse_udp_target("[::1]") == SinkConfig(kind="udp", target="::1")
    assert app._parse_udp_target("[fe80::2]:2200") == SinkConfig(kind="udp", target="fe80::2", port=2200)


@pytest.mark.parametrize("value", ["[::1", "[::1]2200", "[]:2200", ":2200", "bridge:port", "[::1]:"])
def test_udp_target_parsing_rejects_malformed_targets(value) -> None:
    with pytest.raises(argparse.ArgumentTypeError):
        app._parse_udp_target(value)


def test_validate_command_rejects_out_of_range_lights(tmp_path: Path, caplog) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [255, 0, 0], "brightness": 1}, "startTime": 0, "endTime": 1, "lights": [300]}],
    )

    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            app.main(["validate", str(map_path)])

    assert excinfo.value.code == 1
    assert "light id does not fit in a single byte" in caplog.text


def test_validate_command_checks_config_binding(tmp_path: Path, capsys, caplog) -> None:
    map_path = _write_map(
        tmp_path / "show.json",
        [{"endState": {"colour": [255, 0, 0], "brightness": 1}, "startTime": 0, "endTime": 1, "lights": [300, 301]}],
    )
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"light_binding": {"300": 1, "301": 2}}), encoding="utf-8")

    app.main(["validate", str(map_path), "--config", str(config_path)])
    assert "Map 'cli' is valid" in capsys.readouterr().out

    config_path.write_text(json.dumps({"light_binding": {"300": 1}}), encoding="utf-8")
    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit):
            app.main(["validate", str(map_path), "--config", str(config_path)])
    assert "light has no stream channel binding" in caplog.text


def test_validate_command_rejects_infinite_end_time(tmp_path: Path, caplog) -> None:
    map_path = tmp_path / "show.json"
    map_path.write_text(
        '{"name": "cli", "events": [{"endState": {"colour": [255, 0, 0], "brightness": 1}, '
        '"startTime": 0, "endTime": Infinity, "lights": [2]}]}',
        encoding="utf-8",
    )

    with caplog.at_level(logging.ERROR):
        with pytest.raises(SystemExit) as excinfo:
            app.main(["validate", str(map_path)])

    assert excinfo.value.code == 1
    assert "expected a finite number" in caplog.text
