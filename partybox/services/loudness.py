import json
import logging
import math
import re
from pathlib import Path

from ..utils.errors import LoudnessAnalysisFailure

logger = logging.getLogger(__name__)

LOUDNORM_JSON_RE = re.compile(r"\{[^{}]*\"input_i\"[^{}]*\}", re.DOTALL)


def loudness_settings(fcfg):
    """Target values from the ffmpeg config section, with defaults for blanks."""
    fcfg = fcfg or {}

    def value(key, default):
        v = fcfg.get(key)
        return default if v is None else float(v)

    return {
        "I": value("loudnessI", -16),
        "TP": value("loudnessTP", -1.5),
        "LRA": value("loudnessLRA", 11),
        "clamp": max(0.0, value("loudnessGainClamp", 12)),
    }


def build_loudnorm_args(audio_path, fcfg, ffmpeg="ffmpeg"):
    s = loudness_settings(fcfg)
    return [
        ffmpeg,
        "-hide_banner",
        "-nostats",
        "-i",
        str(audio_path),
        "-af",
        f"loudnorm=I={s['I']:g}:TP={s['TP']:g}:LRA={s['LRA']:g}:print_format=json",
        "-f",
        "null",
        "-",
    ]


def parse_loudnorm_output(output):
    """Extract the measured integrated loudness (LUFS) from ffmpeg output."""
    match = LOUDNORM_JSON_RE.search(output or "")
    if not match:
        raise LoudnessAnalysisFailure("Could not find loudnorm JSON in ffmpeg output")
    try:
        data = json.loads(match.group(0))
        input_lufs = float(data["input_i"])
    except (ValueError, KeyError, TypeError) as e:
        raise LoudnessAnalysisFailure(f"Could not parse loudnorm output: {e}") from e
    if not math.isfinite(input_lufs):
        # silence measures as -inf
        raise LoudnessAnalysisFailure(f"Non-finite input loudness: {input_lufs}")
    return input_lufs


def compute_gain(input_lufs, target, clamp):
    """Gain in dB bringing ``input_lufs`` to ``target``, clamped to +/-clamp."""
    gain = target - input_lufs
    return max(-clamp, min(clamp, gain))


def gain_from_result(result, fcfg, audio_path=None):
    """Turn a finished ffmpeg run into a gain value. Failures give 0.0."""
    name = Path(audio_path).name if audio_path else "audio"
    if result is None or not result.ok:
        logger.error(f"ffmpeg analysis failed for {name}, using default gain")
        return 0.0
    s = loudness_settings(fcfg)
    try:
        input_lufs = parse_loudnorm_output(result.output)
    except LoudnessAnalysisFailure as e:
        logger.error(f"{e} ({name}), using default gain")
        return 0.0
    gain = compute_gain(input_lufs, s["I"], s["clamp"])
    logger.info(f"Input: {input_lufs:.1f} LUFS, Gain: {gain:.2f} dB ({name})")
    return gain
