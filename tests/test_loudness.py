import pytest

from conftest import loudnorm_output
from partybox.models.config import default_config
from partybox.services.loudness import (
    build_loudnorm_args,
    compute_gain,
    gain_from_result,
    parse_loudnorm_output,
)
from partybox.services.process_runner import ToolResult
from partybox.utils.errors import LoudnessAnalysisFailure


FFMPEG_CFG = default_config()["ffmpeg"]


def test_build_args_uses_configured_targets():
    args = build_loudnorm_args("/data/downloads/1_audio.m4a", {"loudnessI": -14, "loudnessTP": -1, "loudnessLRA": 7})
    assert args[0] == "ffmpeg"
    assert args[args.index("-i") + 1] == "/data/downloads/1_audio.m4a"
    assert args[args.index("-af") + 1] == "loudnorm=I=-14:TP=-1:LRA=7:print_format=json"
    assert args[-3:] == ["-f", "null", "-"]


def test_parse_measured_loudness():
    assert parse_loudnorm_output("noise before\n" + loudnorm_output("-20.50")) == -20.5


def test_parse_without_json_fails():
    with pytest.raises(LoudnessAnalysisFailure):
        parse_loudnorm_output("Output #0, null, to 'pipe:':")


def test_silence_measures_non_finite():
    with pytest.raises(LoudnessAnalysisFailure):
        parse_loudnorm_output(loudnorm_output("-inf"))


@pytest.mark.parametrize(
    "input_lufs, expected",
    [
        (-20.0, 4.0),
        (-10.0, -6.0),
        (-40.0, 12.0),
        (5.0, -12.0),
    ],
)
def test_compute_gain_clamps(input_lufs, expected):
    assert compute_gain(input_lufs, -16, 12) == pytest.approx(expected)


def test_gain_from_successful_run():
    result = ToolResult(0, loudnorm_output("-22.00"))
    assert gain_from_result(result, FFMPEG_CFG) == pytest.approx(6.0)


def test_failed_run_gives_zero_gain():
    assert gain_from_result(ToolResult(1, loudnorm_output("-22.00")), FFMPEG_CFG) == 0.0
    assert gain_from_result(ToolResult(0, "garbage"), FFMPEG_CFG) == 0.0
    assert gain_from_result(None, FFMPEG_CFG) == 0.0
