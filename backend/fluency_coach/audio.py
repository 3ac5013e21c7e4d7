"""
Audio Capture & Playback

Microphone capture in fixed-size float frames, PCM16 framing for transport,
and narration playback on the host speaker.
"""

import asyncio
import base64
import io
import logging
import threading
import wave
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

from .errors import PermissionDeniedError

logger = logging.getLogger(__name__)

SAMPLE_RATE = 16000
FRAME_SIZE = 4096
PCM_MIME_TYPE = f"audio/pcm;rate={SAMPLE_RATE}"


@dataclass(frozen=True)
class AudioFrame:
    """One base64 PCM16 frame ready to be sent over the live channel."""

    data: str
    mime_type: str = PCM_MIME_TYPE


def float_to_pcm16(samples: np.ndarray) -> bytes:
    """Convert normalized float samples to little-endian signed 16-bit PCM.

    Samples are scaled by 32768, clipped to the int16 range and truncated
    toward zero.
    """
    scaled = np.clip(np.asarray(samples, dtype=np.float32) * 32768.0, -32768.0, 32767.0)
    return scaled.astype("<i2").tobytes()


def encode_frame(samples: np.ndarray, sample_rate: int = SAMPLE_RATE) -> AudioFrame:
    data = base64.b64encode(float_to_pcm16(samples)).decode("ascii")
    return AudioFrame(data=data, mime_type=f"audio/pcm;rate={sample_rate}")


def pcm16_to_wav(pcm: bytes, sample_rate: int, channels: int = 1) -> bytes:
    """Wrap raw PCM16 in a WAV container so browsers can play it."""
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate)
        wav.writeframes(pcm)
    return buffer.getvalue()


StreamFactory = Callable[..., Any]


class MicrophoneCapture:
    """
    Live microphone capture.

    Opens a mono float32 input stream at a fixed sample rate and block size,
    and hands every block to ``on_frame`` as an encoded :class:`AudioFrame`.
    ``on_frame`` is called from the audio driver thread.
    """

    def __init__(
        self,
        on_frame: Callable[[AudioFrame], None],
        sample_rate: int = SAMPLE_RATE,
        frame_size: int = FRAME_SIZE,
        device_name: Optional[str] = None,
        stream_factory: Optional[StreamFactory] = None,
    ):
        """
        Initialize microphone capture.

        Args:
            on_frame: Receives each encoded frame (driver thread)
            sample_rate: Capture rate in Hz (16000 for Gemini Live)
            frame_size: Samples per frame
            device_name: Input device name (optional, default device otherwise)
            stream_factory: Replacement for ``sounddevice.InputStream``
        """
        self.on_frame = on_frame
        self.sample_rate = sample_rate
        self.frame_size = frame_size
        self.device_name = device_name
        self._stream_factory = stream_factory
        self._stream: Any = None
        self._lock = threading.Lock()

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    def _default_factory(self) -> StreamFactory:
        # PortAudio is loaded on first use so the app imports without it
        import sounddevice as sd

        return sd.InputStream

    def start(self) -> None:
        """Acquire the microphone. No-op when already capturing."""
        with self._lock:
            if self._stream is not None:
                return
            try:
                factory = self._stream_factory or self._default_factory()
                stream = factory(
                    samplerate=self.sample_rate,
                    channels=1,
                    dtype="float32",
                    blocksize=self.frame_size,
                    device=self.device_name,
                    callback=self._callback,
                )
                stream.start()
            except Exception as e:
                logger.warning(f"Microphone unavailable: {e}")
                raise PermissionDeniedError(
                    f"Could not start recording. Please ensure microphone permissions are granted. Error: {e}"
                ) from e
            self._stream = stream
            logger.info(f"Microphone capture started ({self.sample_rate} Hz, {self.frame_size} samples/frame)")

    def stop(self) -> None:
        """Release the microphone immediately. No-op when inactive."""
        with self._lock:
            stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.warning(f"Error while closing microphone stream: {e}")
        logger.info("Microphone capture stopped")

    def _callback(self, indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:
        if status:
            logger.debug(f"Input stream status: {status}")
        if self._stream is None:
            return
        channel = indata[:, 0] if indata.ndim > 1 else indata
        self.on_frame(encode_frame(channel, self.sample_rate))


class AudioPlayer:
    """
    Narration playback on the default output device.

    Plays raw PCM16 mono to completion. Failures are logged and swallowed so
    a broken speaker never affects the session.

    ``sounddevice`` drives a single global output stream, so the host speaker
    is shared by every player in the process. Playback is serialised on a
    class-wide lock and concurrent narrations queue instead of cutting each
    other off.
    """

    _output_lock = threading.Lock()

    def __init__(
        self,
        sample_rate: int = 24000,
        enabled: bool = True,
        play_fn: Optional[Callable[[np.ndarray, int], None]] = None,
    ):
        self.sample_rate = sample_rate
        self.enabled = enabled
        self._play_fn = play_fn
        self._playing = False

    @property
    def is_playing(self) -> bool:
        return self._playing

    def _play_blocking(self, samples: np.ndarray) -> None:
        with self._output_lock:
            if self._play_fn is not None:
                self._play_fn(samples, self.sample_rate)
                return
            import sounddevice as sd

            sd.play(samples, samplerate=self.sample_rate)
            sd.wait()

    async def play(self, payload: bytes) -> None:
        if not self.enabled or not payload:
            return
        self._playing = True
        try:
            samples = np.frombuffer(payload, dtype="<i2").astype(np.float32) / 32768.0
            await asyncio.to_thread(self._play_blocking, samples)
        except Exception as e:
            logger.warning(f"Narration playback failed: {e}")
        finally:
            self._playing = False
