"""
Tests for charucal.cli.
"""

import sys

import cv2
import pytest

from charucal import cli
from charucal.exceptions import ConfigurationError
from charucal.types import CalibrationFlags

BOARD_ARGS = [
    "-w", "5", "-H", "7",
    "--square-length", "0.04", "--marker-length", "0.02",
    "-d", "10",
]

CONFIG_TOML = """
output = "from_config.yml"

[board]
squares_x = 6
squares_y = 8
square_length = 0.03
marker_length = 0.015
dictionary = "DICT_5X5_100"

[calibration]
flags = ["zero_tangent_dist"]
min_frames = 5

[capture]
camera_id = 1
wait_ms = 30
"""


def _config(argv):
    args = cli.build_calibrate_parser().parse_args(argv)
    return cli.config_from_args(args)


class TestConfigFromArgs:
    def test_board_from_options(self, temp_dir):
        config = _config([str(temp_dir / "out.yml"), *BOARD_ARGS])

        assert config.board.squares_x == 5
        assert config.board.squares_y == 7
        assert config.board.dictionary == "DICT_6X6_250"
        assert config.output_path == temp_dir / "out.yml"
        assert config.calibration.flags == CalibrationFlags.NONE
        assert config.capture.video_path is None

    def test_aspect_ratio_sets_flag(self, temp_dir):
        config = _config([str(temp_dir / "out.yml"), *BOARD_ARGS, "-a", "1.333"])

        assert config.calibration.fixes_aspect_ratio
        assert config.calibration.aspect_ratio == pytest.approx(1.333)

    def test_solver_flags(self, temp_dir):
        config = _config([
            str(temp_dir / "out.yml"), *BOARD_ARGS, "--zero-tangent", "--fix-principal-point",
        ])
        assert config.calibration.flags == (
            CalibrationFlags.ZERO_TANGENT_DIST | CalibrationFlags.FIX_PRINCIPAL_POINT
        )

    def test_capture_options(self, temp_dir):
        video = temp_dir / "calib.mp4"
        config = _config([
            str(temp_dir / "out.yml"), *BOARD_ARGS,
            "-v", str(video), "--refine", "--show-corners", "--resolution", "640", "480",
        ])
        assert config.capture.video_path == video
        assert config.capture.refine_strategy
        assert config.capture.show_corners
        assert config.capture.resolution == (640, 480)

    def test_missing_board_options(self, temp_dir):
        with pytest.raises(ConfigurationError, match="--square-length"):
            _config([str(temp_dir / "out.yml"), "-w", "5", "-H", "7"])

    def test_invalid_board_options(self, temp_dir):
        with pytest.raises(ConfigurationError, match="smaller"):
            _config([
                str(temp_dir / "out.yml"), "-w", "5", "-H", "7",
                "--square-length", "0.02", "--marker-length", "0.04", "-d", "10",
            ])

    def test_missing_output(self):
        with pytest.raises(ConfigurationError, match="output"):
            _config(BOARD_ARGS)

    def test_config_file_with_overrides(self, temp_dir):
        config_path = temp_dir / "config.toml"
        config_path.write_text(CONFIG_TOML)

        config = _config(["--config", str(config_path), "-w", "9", "--camera", "3"])

        assert config.board.squares_x == 9
        assert config.board.squares_y == 8
        assert config.board.dictionary == "DICT_5X5_100"
        assert config.calibration.flags == CalibrationFlags.ZERO_TANGENT_DIST
        assert config.calibration.min_frames == 5
        assert config.capture.camera_id == 3
        assert config.capture.wait_ms == 30
        assert config.output_path == temp_dir / "from_config.yml"


class TestCalibrateCommand:
    def test_missing_board_exits_with_error(self, temp_dir):
        out = temp_dir / "out.yml"
        assert cli.calibrate_main([str(out), "-w", "5"]) == 1
        assert not out.exists()

    def test_no_frames_exits_with_error(self, temp_dir):
        out = temp_dir / "out.yml"
        code = cli.calibrate_main([
            str(out), *BOARD_ARGS, "-v", str(temp_dir / "missing.avi"),
        ])
        assert code == 1
        assert not out.exists()

    def test_bad_detector_parameters(self, temp_dir):
        params = temp_dir / "detector.toml"
        params.write_text("bogus = 1\n")
        out = temp_dir / "out.yml"

        code = cli.calibrate_main([
            str(out), *BOARD_ARGS, "--detector-params", str(params),
        ])
        assert code == 1
        assert not out.exists()


class TestBoardCommand:
    def test_writes_board_image(self, temp_dir, capsys):
        out = temp_dir / "board.png"

        assert cli.board_main([str(out), *BOARD_ARGS, "--width", "500", "--height", "700"]) == 0

        img = cv2.imread(str(out), cv2.IMREAD_GRAYSCALE)
        assert img.shape == (700, 500)
        assert "Board image saved" in capsys.readouterr().out

    def test_invalid_board(self, temp_dir):
        assert cli.board_main([str(temp_dir / "board.png"), "-w", "5"]) == 1


class TestMain:
    def test_help(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["charucal", "--help"])
        assert cli.main() == 0
        out = capsys.readouterr().out
        assert "calibrate" in out
        assert "board" in out

    def test_unknown_command(self, monkeypatch, capsys):
        monkeypatch.setattr(sys, "argv", ["charucal", "frobnicate"])
        assert cli.main() == 1
        assert "Unknown command" in capsys.readouterr().out

    def test_dispatch_board(self, monkeypatch, temp_dir):
        out = temp_dir / "board.png"
        monkeypatch.setattr(sys, "argv", ["charucal", "board", str(out), *BOARD_ARGS])
        assert cli.main() == 0
        assert out.exists()
