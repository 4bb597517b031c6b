from __future__ import annotations

import asyncio
import logging
import math
import shutil
import wave
from array import array
from pathlib import Path
from typing import Dict, List, Literal, Optional, Sequence


log = logging.getLogger("arrivalboard.audio")

ChimeKind = Literal["start", "end"]

# (frequency Hz, seconds) per note
_CHIME_NOTES: Dict[str, List[tuple[float, float]]] = {
    "start": [(659.25, 0.35), (783.99, 0.35), (1046.5, 0.6)],
    "end": [(1046.5, 0.35), (783.99, 0.35), (659.25, 0.6)],
}


class AudioError(RuntimeError):
    pass


_NOTE_GAP_SECONDS = 0.05
_CHIME_AMPLITUDE = 0.25


def _note_pcm(freq_hz: float, seconds: float, sample_rate: int) -> array:
    n = int(seconds * sample_rate)
    peak = 32767 * _CHIME_AMPLITUDE
    # 10 ms linear ramp at each end so notes don't click
    ramp = max(1, int(0.01 * sample_rate))
    step = 2.0 * math.pi * freq_hz / sample_rate
    pcm = array("h")
    for i in range(n):
        env = max(0.0, min(1.0, i / ramp, (n - 1 - i) / ramp))
        pcm.append(int(math.sin(step * i) * env * peak))
    return pcm


def render_chime(path: Path, kind: ChimeKind, sample_rate: int) -> Path:
    """
    Three-note mono chime: rising for "start", falling for "end".
    Each note is followed by a short gap of silence.
    """
    notes = _CHIME_NOTES.get(kind)
    if notes is None:
        raise ValueError(f"unknown chime kind: {kind!r}")

    gap = array("h", [0] * int(_NOTE_GAP_SECONDS * sample_rate))
    pcm = array("h")
    for freq, secs in notes:
        pcm.extend(_note_pcm(freq, secs, sample_rate))
        pcm.extend(gap)

    path.parent.mkdir(parents=True, exist_ok=True)
    with wave.open(str(path), "wb") as wf:
        wf.setnchannels(1)
        wf.setsampwidth(2)  # 16-bit
        wf.setframerate(int(sample_rate))
        wf.writeframes(pcm.tobytes())
    return path


def _player_argv(player: str, path: Path) -> List[str]:
    name = Path(player).name
    if name == "ffplay":
        return [player, "-nodisp", "-autoexit", "-loglevel", "error", str(path)]
    if name == "mpv":
        return [player, "--no-video", "--really-quiet", str(path)]
    if name == "aplay":
        return [player, "-q", str(path)]
    return [player, str(path)]


async def run_command(argv: Sequence[str], *, stdin: bytes | None = None) -> None:
    """
    Run an external command to completion; non-zero exit raises AudioError.
    Cancelling the awaiting task kills the child.
    """
    if not shutil.which(argv[0]):
        raise AudioError(f"{argv[0]} not found")

    proc = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        _, err = await proc.communicate(stdin)
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        msg = (err or b"").decode("utf-8", "replace").strip()
        raise AudioError(f"{argv[0]} exited {proc.returncode}: {msg[:300]}")


async def play_file(player: str, path: Path) -> None:
    if not path.exists():
        raise AudioError(f"audio file missing: {path}")
    await run_command(_player_argv(player, path))


class SubprocessChimePlayer:
    """
    Plays start/end chimes through an external player (aplay, ffplay, ...).

    Configured files win; otherwise tones are rendered once into work_dir.
    """

    def __init__(
        self,
        *,
        player: str,
        work_dir: Path,
        sample_rate: int = 22050,
        files: Optional[Dict[str, str]] = None,
    ) -> None:
        self.player = player
        self.work_dir = Path(work_dir)
        self.sample_rate = int(sample_rate)
        self.files = {k: v for k, v in (files or {}).items() if v}

    def chime_path(self, kind: ChimeKind) -> Path:
        configured = self.files.get(kind)
        if configured:
            return Path(configured)
        p = self.work_dir / f"chime_{kind}_{self.sample_rate}.wav"
        if not p.exists():
            render_chime(p, kind, self.sample_rate)
            log.info("Rendered %s chime: %s", kind, p)
        return p

    async def play_chime(self, kind: ChimeKind) -> None:
        await play_file(self.player, self.chime_path(kind))


class NullAudio:
    """
    Log-only chimes and speech for headless dry runs.
    """

    async def play_chime(self, kind: ChimeKind) -> None:
        log.info("[dry-run] chime %s", kind)

    async def speak(self, text: str, options) -> None:
        log.info("[dry-run] speak lang=%s rate=%.2f: %s", options.lang, options.rate, text)
