# main.py - dspkit CLI
# Generate test signals, run processor pipelines over sample files, and
# track the dominant frequency of a recording frame by frame.

from __future__ import annotations

import argparse
import logging
import math
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from filters import Processor, Sink, Source, available_nodes, build_node
import convert  # noqa: F401
import spectral
import windows  # noqa: F401
from generators import Generator, GeneratorKind
from helpers import real_buffer
from pipeline import Pipeline
from transport import (
    AudioSink,
    RawFileSink,
    RawFileSource,
    UdpSink,
    WavFileSink,
    WavFileSource,
)

log = logging.getLogger("dspkit")

RAW_SUFFIXES = {".f32", ".raw", ".bin", ".dat"}

# ---------------- Logging ----------------

def setup_logging(verbosity: int = 0) -> None:
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(verbosity, 2)]
    logging.basicConfig(level=level, format="%(asctime)s | %(levelname)-8s | %(message)s", datefmt="%H:%M:%S")

# ---------------- CLI helpers ----------------

def _coerce(v: str) -> Any:
    if v.isdigit():
        return int(v)
    try:
        return float(v)
    except ValueError:
        low = v.lower()
        if low in ("true", "false"):
            return low == "true"
    return v

def _parse_kv_pairs(pairs: Optional[List[str]]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    if not pairs:
        return out
    for p in pairs:
        if "=" in p:
            k, v = p.split("=", 1)
            out[k.strip()] = _coerce(v.strip())
    return out

def _parse_pipeline(text: Optional[str]) -> List[str]:
    if not text:
        return []
    stages = [s.strip().lower() for s in text.split("|") if s.strip()]
    if not stages:
        raise ValueError("Empty --pipeline. Example: biquad|leaky")
    return stages

def _split_stage_extras(stages: List[str], raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Unprefixed/all apply to all; name.key; index.key (0-based)."""
    global_extras: Dict[str, Any] = {}
    by_name: Dict[str, Dict[str, Any]] = {}
    by_idx: Dict[int, Dict[str, Any]] = {}
    for k, v in raw.items():
        if "." not in k:
            global_extras[k] = v
            continue
        prefix, key = k.split(".", 1)
        prefix = prefix.strip().lower()
        key = key.strip()
        if prefix == "all":
            global_extras[key] = v
        elif prefix.isdigit():
            i = int(prefix)
            if 0 <= i < len(stages):
                by_idx.setdefault(i, {})[key] = v
        else:
            by_name.setdefault(prefix, {})[key] = v
    stage_extras: List[Dict[str, Any]] = []
    for i, name in enumerate(stages):
        merged: Dict[str, Any] = {}
        merged.update(global_extras)
        merged.update(by_name.get(name, {}))
        merged.update(by_idx.get(i, {}))
        stage_extras.append(merged)
    return stage_extras

def _build_stages(pipeline: Optional[str], extra: Optional[List[str]]) -> List[Processor]:
    stages = _parse_pipeline(pipeline)
    unknown = [s for s in stages if s not in available_nodes()]
    if unknown:
        raise SystemExit(f"Unknown node(s) in pipeline: {', '.join(unknown)}")
    stage_extras = _split_stage_extras(stages, _parse_kv_pairs(extra))
    return [build_node(name, **stage_extras[i]) for i, name in enumerate(stages)]

def _is_raw(path: Path) -> bool:
    return path.suffix.lower() in RAW_SUFFIXES

def open_source(path: Path, sample_rate: Optional[int]) -> "tuple[Source, int]":
    """Raw float32 dumps need --sample-rate; audio files carry their own."""
    if _is_raw(path):
        if not sample_rate:
            raise ValueError(f"{path} is a raw sample file; pass --sample-rate")
        return RawFileSource(path), int(sample_rate)
    src = WavFileSource(path)
    if sample_rate and sample_rate != src.sample_rate:
        log.warning("Ignoring --sample-rate %d: %s is %d Hz", sample_rate, path, src.sample_rate)
    return src, src.sample_rate

def open_sink(path: Path, sample_rate: int) -> Sink:
    if _is_raw(path):
        return RawFileSink(path)
    return WavFileSink(path, sample_rate)

def _close(*nodes: Any) -> None:
    for node in nodes:
        close = getattr(node, "close", None)
        if close is not None:
            close()

# ---------------- Commands ----------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dspkit", description="Streaming DSP toolkit: generators, filters, spectra")
    p.add_argument("-v", "--verbose", action="count", default=0)
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("list", help="List processing nodes").set_defaults(func=cmd_list)
    sub.add_parser("list-devices", help="List available audio devices").set_defaults(func=cmd_list_devices)

    # ---- generate ----
    gp = sub.add_parser("generate", help="Generate a test signal")
    gp.add_argument("--kind", choices=[k.value for k in GeneratorKind], default="sine")
    gp.add_argument("--freq", type=float, default=440.0, help="Frequency (Hz); chirp start frequency")
    gp.add_argument("--end-freq", type=float, help="Chirp end frequency (Hz)")
    gp.add_argument("--sweep-time", type=float, default=1.0, help="Chirp sweep duration (s)")
    gp.add_argument("--amplitude", type=float, default=1.0)
    gp.add_argument("--std", type=float, default=1.0, help="Noise standard deviation")
    gp.add_argument("--seed", type=int, help="Noise RNG seed")
    gp.add_argument("--sample-rate", type=int, default=44100)
    gp.add_argument("--seconds", type=float, default=1.0)
    gp.add_argument("--blocksize", type=int, default=1024)
    gp.add_argument("--pipeline", help="Optional processors 'n1|n2' applied before output")
    gp.add_argument("--extra", nargs="*", help="Extra args like key=val, all.key=val, <name>.key=val, <idx>.key=val")
    out = gp.add_mutually_exclusive_group(required=True)
    out.add_argument("--out", type=Path, help="Output file (.f32 raw or audio file)")
    out.add_argument("--udp", help="Send blocks as datagrams to host:port")
    out.add_argument("--play", action="store_true", help="Play on the default output device")
    gp.set_defaults(func=cmd_generate)

    # ---- run ----
    rp = sub.add_parser("run", help="Run processors over a sample file")
    rp.add_argument("--input", type=Path, required=True, help="Input file (.f32 raw or audio file)")
    rp.add_argument("--out", type=Path, required=True, help="Output file (.f32 raw or audio file)")
    rp.add_argument("--sample-rate", type=int, help="Sample rate of raw input")
    rp.add_argument("--pipeline", required=True, help="Pipe nodes as 'n1|n2|n3'")
    rp.add_argument("--extra", nargs="*", help="Extra args like key=val, all.key=val, <name>.key=val, <idx>.key=val")
    rp.add_argument("--blocksize", type=int, default=4096)
    rp.set_defaults(func=cmd_run)

    # ---- spectrum ----
    sp = sub.add_parser("spectrum", help="Dominant frequency per frame")
    sp.add_argument("--input", type=Path, required=True)
    sp.add_argument("--sample-rate", type=int, help="Sample rate of raw input")
    sp.add_argument("--frame-size", type=int, default=4096)
    sp.add_argument("--window", default="hann", help="rectangular|triangular|welch|sine|hann|hamming|blackman")
    sp.set_defaults(func=cmd_spectrum)

    # ---- bench ----
    bp = sub.add_parser("bench", help="Micro-benchmark a pipeline on generated noise")
    bp.add_argument("--pipeline", required=True)
    bp.add_argument("--extra", nargs="*")
    bp.add_argument("--blocksize", type=int, default=1024)
    bp.add_argument("--blocks", type=int, default=200)
    bp.add_argument("--sample-rate", type=int, default=48000)
    bp.set_defaults(func=cmd_bench)

    return p

def cmd_list(_args: argparse.Namespace) -> int:
    print("Available nodes:")
    for name, help_text in available_nodes().items():
        print(f"  - {name:10s} : {help_text}")
    return 0

def cmd_list_devices(_args: argparse.Namespace) -> int:
    import sounddevice as sd

    devices = sd.query_devices()
    apis = sd.query_hostapis()

    print("Available audio devices:\n")
    for i, dev in enumerate(devices):
        api_name = apis[dev['hostapi']]['name']
        print(f"[{i:02d}] {dev['name']}  ({api_name})")
        print(f"     Input channels:  {dev.get('max_input_channels', 0)}")
        print(f"     Output channels: {dev.get('max_output_channels', 0)}")
        print(f"     Default SR:      {dev.get('default_samplerate', 0):.0f} Hz\n")
    return 0

def cmd_generate(args: argparse.Namespace) -> int:
    sink: Optional[Sink] = None
    try:
        gen = Generator.from_name(
            args.kind, args.sample_rate,
            freq=args.freq, amplitude=args.amplitude,
            end_freq=args.end_freq, sweep_time=args.sweep_time,
            std=args.std, seed=args.seed,
        )
        stages = _build_stages(args.pipeline, args.extra)
        if args.out is not None:
            sink = open_sink(args.out, args.sample_rate)
        elif args.udp:
            sink = UdpSink(args.udp)
        else:
            sink = AudioSink(args.sample_rate)

        blocks = max(1, math.ceil(args.seconds * args.sample_rate / args.blocksize))
        pipe = Pipeline(gen, stages, sink, block_size=args.blocksize)
        total = pipe.run(max_blocks=blocks)
        log.info("Generated %d %s samples (%.2f s)", total, args.kind, total / args.sample_rate)
        return 0
    except Exception as e:
        log.exception("Generate failed: %s", e)
        return 1
    finally:
        _close(sink)

def cmd_run(args: argparse.Namespace) -> int:
    source: Optional[Source] = None
    sink: Optional[Sink] = None
    try:
        stages = _build_stages(args.pipeline, args.extra)
        source, sr = open_source(args.input, args.sample_rate)
        sink = open_sink(args.out, sr)
        pipe = Pipeline(source, stages, sink, block_size=args.blocksize)
        total = pipe.run()
        log.info("Processed %d samples through %s", total, args.pipeline)
        return 0
    except Exception as e:
        log.exception("Failed: %s", e)
        return 1
    finally:
        _close(source, sink)

def cmd_spectrum(args: argparse.Namespace) -> int:
    source: Optional[Source] = None
    try:
        source, sr = open_source(args.input, args.sample_rate)
        fft = spectral.ForwardFFT(args.frame_size, window=args.window)
        frame = real_buffer(args.frame_size)
        index = 0
        while True:
            count = source.write(frame)
            if count < args.frame_size:
                if count:
                    log.debug("Skipping trailing partial frame of %d samples", count)
                break
            spectrum = fft.process_real(frame, sr)
            freq, level_db = spectrum.peak()
            t = index * args.frame_size / sr
            print(f"{t:9.3f}s  {freq:10.2f} Hz  {level_db:7.1f} dB")
            index += 1
        log.info("Analyzed %d frame(s)", index)
        return 0
    except Exception as e:
        log.exception("Spectrum failed: %s", e)
        return 1
    finally:
        _close(source)

def cmd_bench(args: argparse.Namespace) -> int:
    try:
        stages = _build_stages(args.pipeline, args.extra)
        noise = Generator("noise", args.sample_rate, std=0.25, seed=0)
        pipe = Pipeline(noise, stages, block_size=args.blocksize)
        pipe.step()  # warm-up: scratch buffers settle on the first block
        times: List[float] = []
        for _ in range(max(1, args.blocks)):
            t0 = time.perf_counter()
            pipe.step()
            times.append(time.perf_counter() - t0)
        arr = np.asarray(times) * 1000.0
        budget = 1000.0 * args.blocksize / args.sample_rate
        print(f"{args.pipeline}: {len(times)} block(s) of {args.blocksize}: avg {arr.mean():.3f} ms, "
              f"min {arr.min():.3f} ms, max {arr.max():.3f} ms (real-time budget {budget:.3f} ms)")
        return 0
    except Exception as e:
        log.exception("Bench failed: %s", e)
        return 1

def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
