class PipelineError(Exception):
    """Base class for failures raised inside the media pipeline."""

    stage = "pipeline"

    def __init__(self, message, song_id=None):
        super().__init__(message)
        self.song_id = song_id


class ParseFailure(PipelineError):
    """A URL resolved to no playable content."""

    stage = "parse"


class DownloadStageFailure(PipelineError):
    """The fetch tool exited non-zero during the video or audio stage."""

    stage = "download"


class ProcessSpawnFailure(PipelineError):
    """The tool executable is missing or could not be started."""

    stage = "spawn"


class LoudnessAnalysisFailure(PipelineError):
    stage = "loudness"


class SeparationFailure(PipelineError):
    """The separation tool failed or its expected output is missing."""

    stage = "separation"


class ConfigPersistFailure(PipelineError):
    stage = "config"


class FileLockFailure(PipelineError):
    stage = "cleanup"
