"""
Media duration probing.

Durations are read by decoding the uploaded bytes with the `pydub` library,
which in turn relies on `ffmpeg`.  Decoding happens in a worker thread so
the event loop is never blocked by ffmpeg.
"""

import asyncio
import io
import logging
import math
from typing import Optional

from pydub import AudioSegment
from pydub.exceptions import CouldntDecodeError

from .errors import MediaLoadError
from .files import base_mime_type

logger = logging.getLogger(__name__)

# ffmpeg demuxer names for the allowed media types.
MIME_FORMATS = {
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
    "audio/wav": "wav",
    "audio/webm": "webm",
    "audio/ogg": "ogg",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/ogg": "ogg",
}


def format_for(mime_type: str) -> Optional[str]:
    """Return the ffmpeg format for ``mime_type``, or ``None`` to let ffmpeg guess."""
    return MIME_FORMATS.get(base_mime_type(mime_type))


def read_duration(data: bytes, mime_type: str) -> int:
    """Decode ``data`` and return its duration in whole seconds.

    Raises:
        MediaLoadError: If the media cannot be decoded.
    """
    try:
        with io.BytesIO(data) as buffer:
            segment = AudioSegment.from_file(buffer, format=format_for(mime_type))
    except (CouldntDecodeError, OSError, ValueError, IndexError) as exc:
        raise MediaLoadError("Could not load media file", step="probing_duration", cause=exc) from exc
    return math.floor(segment.duration_seconds)


class MediaDurationProbe:
    """Determine the playback duration of an audio or video blob."""

    async def probe(self, data: bytes, mime_type: str) -> int:
        seconds = await asyncio.to_thread(read_duration, data, mime_type)
        logger.info("Probed %s media: %d seconds", mime_type, seconds)
        return seconds
