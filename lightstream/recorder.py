"""Renderer wrappers that also write the raw stream data to files."""

from __future__ import annotations

import logging
from typing import Any, BinaryIO

logger = logging.getLogger(__name__)


def _entry_bytes(entry: Any) -> bytes:
    data = getattr(entry, "data", entry)
    return bytes(data)


class VideoRecorder:
    """Wraps a video renderer and records every decode unit's buffers.

    The file path is passed as the setup context. Attributes not defined
    here are looked up on the wrapped renderer.
    """

    def __init__(self, renderer: Any) -> None:
        self._renderer = renderer
        self._file: BinaryIO | None = None

    def __getattr__(self, name: str) -> Any:
        return getattr(self._renderer, name)

    def setup(self, video_format, width, height, redraw_rate, context, dr_flags):
        """Open the recording file named by ``context`` and set up the renderer."""
        if context is not None:
            self._file = open(context, "wb")
        else:
            logger.warning(
                "Video recording will not be enabled - file path not specified in context"
            )
        return self._renderer.setup(video_format, width, height, redraw_rate, None, dr_flags)

    def cleanup(self):
        """Close the recording file and clean up the renderer."""
        if self._file is not None:
            self._file.close()
            self._file = None
        return self._renderer.cleanup()

    def submit_decode_unit(self, decode_unit):
        """Record the unit's buffers, then pass the unit to the renderer.

        ``decode_unit.buffer_list`` holds entries that are bytes-like or
        carry their bytes in a ``data`` attribute.
        """
        if self._file is not None:
            for entry in decode_unit.buffer_list:
                self._file.write(_entry_bytes(entry))
        return self._renderer.submit_decode_unit(decode_unit)


class AudioRecorder:
    """Wraps an audio renderer and records every sample it is given.

    The file path is passed as the init context. Attributes not defined
    here are looked up on the wrapped renderer.
    """

    def __init__(self, renderer: Any) -> None:
        self._renderer = renderer
        self._file: BinaryIO | None = None

    def __getattr__(self, name: str) -> Any:
        return getattr(self._renderer, name)

    def init(self, audio_configuration, opus_config, context, ar_flags):
        """Open the recording file named by ``context`` and initialise the renderer."""
        if context is not None:
            self._file = open(context, "wb")
        else:
            logger.warning(
                "Audio recording will not be enabled - file path not specified in context"
            )
        return self._renderer.init(audio_configuration, opus_config, None, ar_flags)

    def cleanup(self):
        """Close the recording file and clean up the renderer."""
        if self._file is not None:
            self._file.close()
            self._file = None
        return self._renderer.cleanup()

    def decode_and_play_sample(self, sample):
        """Record the sample, then pass it to the renderer."""
        if self._file is not None:
            self._file.write(bytes(sample))
        return self._renderer.decode_and_play_sample(sample)


def set_recorder_callbacks(video_renderer: Any, audio_renderer: Any) -> tuple[VideoRecorder, AudioRecorder]:
    """Return recording wrappers around a video and an audio renderer."""
    return VideoRecorder(video_renderer), AudioRecorder(audio_renderer)