# transport.py
# --------------------------------------------
# Sources and sinks at the I/O boundary:
# - RawFileSource / RawFileSink : headerless little-endian float32 dumps
# - WavFileSource / WavFileSink : audio files through soundfile (mono)
# - UdpSource / UdpSink         : one buffer per datagram, little-endian float32
# - AudioOutput / AudioSink     : sound card through sounddevice (imported lazily)
#
# Failures here (OSError, soundfile.LibsndfileError, socket errors) propagate
# to the caller; the processing stages never see them.
# --------------------------------------------
from __future__ import annotations

import logging
import socket
from pathlib import Path
from typing import Any, Optional, Tuple, Union

import numpy as np
import soundfile as sf

from filters import Sink, Source
from helpers import Scratch

log = logging.getLogger("dspkit.transport")

_F32 = np.float32
_LE_F32 = np.dtype("<f4")
_SAMPLE_BYTES = _LE_F32.itemsize
# largest payload an IPv4 UDP datagram can carry
_MAX_DATAGRAM = 65507

PathLike = Union[str, Path]
Address = Tuple[str, int]


def parse_address(value: Union[str, Address]) -> Address:
    """'host:port' or (host, port) -> (host, port)"""
    if isinstance(value, tuple):
        return str(value[0]), int(value[1])
    host, _, port = str(value).rpartition(":")
    if not host or not port.isdigit():
        raise ValueError(f"Expected host:port, got {value!r}")
    return host, int(port)


class _Closing:
    def close(self) -> None:
        raise NotImplementedError

    def __enter__(self):
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


# ---------- Raw sample files ----------
class RawFileSource(_Closing, Source):
    """Reads consecutive little-endian float32 samples; short count at end of file."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._fh = open(self.path, "rb")
        self._raw = bytearray()
        log.info("Reading raw samples from %s", self.path)

    def write(self, output: np.ndarray) -> int:
        need = len(output) * _SAMPLE_BYTES
        if len(self._raw) < need:
            self._raw = bytearray(need)
        got = self._fh.readinto(memoryview(self._raw)[:need]) or 0
        count = got // _SAMPLE_BYTES
        if got % _SAMPLE_BYTES:
            log.warning("%s: dropping %d trailing byte(s) of a partial sample", self.path, got % _SAMPLE_BYTES)
        if count:
            output[:count] = np.frombuffer(self._raw, dtype=_LE_F32, count=count)
        return count

    def close(self) -> None:
        self._fh.close()


class RawFileSink(_Closing, Sink):
    def __init__(self, path: PathLike, append: bool = False):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = open(self.path, "ab" if append else "wb")
        self._scratch = Scratch(_LE_F32)
        self.samples_written = 0

    def consume(self, x: np.ndarray) -> None:
        buf = self._scratch.get(len(x))
        np.copyto(buf, x, casting="same_kind")
        self._fh.write(memoryview(buf))
        self.samples_written += len(x)

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.flush()
            self._fh.close()
            log.info("Wrote %d samples to %s", self.samples_written, self.path)


# ---------- Audio files ----------
class WavFileSource(_Closing, Source):
    """Any libsndfile-readable file, delivered as mono float32 (channels averaged)."""

    def __init__(self, path: PathLike):
        self.path = Path(path)
        self._sf = sf.SoundFile(str(self.path), mode="r")
        self.sample_rate = int(self._sf.samplerate)
        self.channels = int(self._sf.channels)
        self._frames = Scratch(_F32)
        log.info("Opened %s (%d Hz, %d ch, %d frames)", self.path, self.sample_rate, self.channels, len(self._sf))

    def write(self, output: np.ndarray) -> int:
        n = len(output)
        if n == 0:
            return 0
        direct = (self.channels == 1 and output.dtype == _F32 and output.flags.c_contiguous)
        if direct:
            return len(self._sf.read(n, dtype="float32", out=output))
        flat = self._frames.get(n * self.channels)
        block = flat.reshape(n, self.channels)
        got = len(self._sf.read(n, dtype="float32", out=block))
        if self.channels == 1:
            output[:got] = block[:got, 0]
        else:
            np.mean(block[:got], axis=1, out=output[:got])
        return got

    def close(self) -> None:
        self._sf.close()


class WavFileSink(_Closing, Sink):
    def __init__(self, path: PathLike, sample_rate: int, subtype: str = "FLOAT"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._sf = sf.SoundFile(str(self.path), mode="w", samplerate=int(sample_rate), channels=1, subtype=subtype)

    def consume(self, x: np.ndarray) -> None:
        self._sf.write(x)

    def close(self) -> None:
        if not self._sf.closed:
            self._sf.close()
            log.info("Saved %s", self.path)


# ---------- UDP ----------
class UdpSink(_Closing, Sink):
    def __init__(self, address: Union[str, Address], bind: Optional[Address] = None):
        self.address = parse_address(address)
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        if bind is not None:
            self._sock.bind(bind)
        self._scratch = Scratch(_LE_F32)

    def consume(self, x: np.ndarray) -> None:
        nbytes = len(x) * _SAMPLE_BYTES
        if nbytes > _MAX_DATAGRAM:
            raise ValueError(f"{len(x)} samples do not fit in one datagram (max {_MAX_DATAGRAM // _SAMPLE_BYTES})")
        buf = self._scratch.get(len(x))
        np.copyto(buf, x, casting="same_kind")
        self._sock.sendto(memoryview(buf), self.address)

    def close(self) -> None:
        self._sock.close()


class UdpSource(_Closing, Source):
    """
    Receives one datagram per write(). Returns the number of samples in it,
    or 0 when nothing arrives within `timeout` seconds, which a Pipeline
    treats as end of stream.
    """

    def __init__(self, bind: Union[str, Address] = ("127.0.0.1", 0), timeout: Optional[float] = 1.0):
        self._sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._sock.bind(parse_address(bind))
        self._sock.settimeout(timeout)
        self._raw = bytearray()

    @property
    def address(self) -> Address:
        host, port = self._sock.getsockname()[:2]
        return host, port

    def write(self, output: np.ndarray) -> int:
        need = len(output) * _SAMPLE_BYTES
        if len(self._raw) < need:
            self._raw = bytearray(need)
        try:
            got = self._sock.recv_into(memoryview(self._raw)[:need], need)
        except socket.timeout:
            return 0
        count = got // _SAMPLE_BYTES
        if count:
            output[:count] = np.frombuffer(self._raw, dtype=_LE_F32, count=count)
        return count

    def close(self) -> None:
        self._sock.close()


# ---------- Sound card ----------
class AudioOutput(_Closing):
    """
    Pull-mode playback: the driver hands a buffer to the callback on its own
    thread and the Source fills it synchronously. A short write ends the stream.
    """

    def __init__(self, source: Source, sample_rate: int, blocksize: int = 1024, device: Any = None):
        import sounddevice as sd

        self._sd = sd
        self.source = source
        self.finished = False
        self._stream = sd.OutputStream(
            samplerate=int(sample_rate),
            blocksize=int(blocksize),
            channels=1,
            dtype="float32",
            device=device,
            callback=self._callback,
            finished_callback=self._on_finished,
        )

    def _callback(self, outdata: np.ndarray, frames: int, _time: Any, status: Any) -> None:
        if status:
            log.warning("Audio callback status: %s", status)
        buf = outdata[:, 0]
        count = self.source.write(buf)
        if count < frames:
            buf[count:] = 0.0
            raise self._sd.CallbackStop()

    def _on_finished(self) -> None:
        self.finished = True

    def start(self) -> None:
        self._stream.start()

    def stop(self) -> None:
        self._stream.stop()

    def close(self) -> None:
        self._stream.close()

    def __enter__(self):
        self.start()
        return self


class AudioSink(_Closing, Sink):
    """Blocking push-mode playback on the default (or given) output device."""

    def __init__(self, sample_rate: int, device: Any = None):
        import sounddevice as sd

        self._stream = sd.OutputStream(samplerate=int(sample_rate), channels=1, dtype="float32", device=device)
        self._stream.start()
        self._scratch = Scratch(_F32)

    def consume(self, x: np.ndarray) -> None:
        buf = self._scratch.get(len(x))
        np.copyto(buf, x, casting="same_kind")
        underflow = self._stream.write(buf[:, None])
        if underflow:
            log.warning("Output underflow")

    def close(self) -> None:
        self._stream.stop()
        self._stream.close()
