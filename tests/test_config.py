import argparse

import pytest

from avimux.config import load_config, parse_size


def _make_args(**overrides):
    defaults = dict(
        config=None,
        size=None,
        fourcc=None,
        fps=None,
        index_style=None,
        super_index_capacity=None,
        keyframe_interval=None,
        json_log=False,
        dry_run=False,
    )
    defaults.update(overrides)
    return argparse.Namespace(**defaults)


def test_config_precedence_cli_env_file(tmp_path):
    config_path = tmp_path / "avimux.toml"
    config_path.write_text(
        "\n".join(
            [
                'fourcc = "MJPG"',
                "fps = 25.0",
                "keyframe_interval = 12",
                'camera = "front"',
            ]
        ),
        encoding="utf-8",
    )

    env = {
        "AVIMUX_FOURCC": "XVID",
        "AVIMUX_FPS": "24",
        "AVIMUX_KEYFRAME_INTERVAL": "6",
    }

    args = _make_args(config=str(config_path), fourcc="H264", size="640x360")

    config = load_config(args, env=env)

    assert config.fourcc == "H264"
    assert pytest.approx(config.fps) == 24.0
    assert config.keyframe_interval == 6
    assert (config.width, config.height) == (640, 360)
    assert config.extra == {"camera": "front"}


def test_config_env_overrides_file(tmp_path):
    config_path = tmp_path / "avimux.toml"
    config_path.write_text('index_style = "basic"\n', encoding="utf-8")

    config = load_config(
        _make_args(config=str(config_path)),
        env={"AVIMUX_INDEX_STYLE": "opendml"},
    )

    assert config.index_style == "opendml"


def test_defaults_without_sources(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = load_config(_make_args(), env={})
    assert (config.width, config.height) == (320, 240)
    assert config.fourcc == "I420"
    assert config.index_style == "opendml"
    assert config.super_index_capacity == 256
    assert config.log_format == "human"
    assert not config.dry_run


def test_json_log_flag_switches_format():
    config = load_config(_make_args(json_log=True), env={})
    assert config.json_log
    assert config.log_format == "json"


def test_env_boolean_flags():
    config = load_config(_make_args(), env={"AVIMUX_DRY_RUN": "yes", "AVIMUX_JSON_LOG": "0"})
    assert config.dry_run
    assert not config.json_log


@pytest.mark.parametrize(
    "overrides",
    [
        {"fps": 0.5},
        {"fps": float("inf")},
        {"fps": float("nan")},
        {"size": "0x240"},
        {"index_style": "sparse"},
        {"super_index_capacity": 0},
        {"fourcc": "TOOLONG"},
        {"keyframe_interval": 0},
    ],
)
def test_invalid_values_are_rejected(overrides):
    with pytest.raises(ValueError):
        load_config(_make_args(**overrides), env={})


def test_parse_size():
    assert parse_size("1920X1080") == (1920, 1080)
    with pytest.raises(ValueError):
        parse_size("wide")
