from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List

from .audio import AudioError, play_file, run_command


log = logging.getLogger("arrivalboard.tts")

_SPACE_RE = re.compile(r"[ \t　]+")
_URL_RE = re.compile(r"https?://\S+|www\.\S+", re.IGNORECASE)
_PLACEHOLDER_RE = re.compile(r"\{[A-Za-z]+\}")


@dataclass(frozen=True)
class SpeechOptions:
    lang: str = "ja-JP"
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0


def clean_for_tts(text: str) -> str:
    """
    Strip things a speech engine would read out literally: URLs, template
    placeholders left unfilled, and runs of blanks.
    """
    if not text:
        return ""
    t = text.replace("\r\n", "\n").replace("\r", "\n")
    t = _URL_RE.sub("", t)
    t = _PLACEHOLDER_RE.sub("", t)

    lines_out: List[str] = []
    for raw in t.split("\n"):
        line = _SPACE_RE.sub(" ", raw).strip()
        if line:
            lines_out.append(line)
    return "\n".join(lines_out)


def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(v)))


def _espeak_voice(voice: str, lang: str) -> str:
    v = (voice or "").strip()
    if v:
        return v
    # "ja-JP" -> "ja"
    return (lang or "ja").split("-")[0].lower() or "ja"


def espeak_argv(text: str, out_wav: Path, *, voice: str, options: SpeechOptions, baseline_wpm: int = 175) -> List[str]:
    # Web-speech style knobs: rate 1.0 ~ baseline wpm, pitch 1.0 ~ espeak 50, volume 1.0 ~ espeak 100
    wpm = int(_clamp(baseline_wpm * _clamp(options.rate, 0.1, 10.0), 80, 450))
    pitch = int(_clamp(options.pitch * 50, 0, 99))
    amp = int(_clamp(options.volume * 100, 0, 200))
    return [
        "espeak-ng",
        "-v",
        _espeak_voice(voice, options.lang),
        "-s",
        str(wpm),
        "-p",
        str(pitch),
        "-a",
        str(amp),
        "-w",
        str(out_wav),
        text,
    ]


def piper_argv(out_wav: Path, *, model: str, options: SpeechOptions) -> List[str]:
    # piper: length_scale > 1.0 => slower
    length_scale = _clamp(1.0 / _clamp(options.rate, 0.1, 10.0), 0.5, 2.0)
    return [
        "piper",
        "-m",
        model,
        "--length_scale",
        f"{length_scale:.2f}",
        "-f",
        str(out_wav),
    ]


@dataclass
class SubprocessSpeaker:
    """
    Synthesize to a temp WAV with espeak-ng or piper, then play it.
    speak() returns when playback has finished.
    """
    backend: str
    voice: str
    player: str
    work_dir: Path

    async def synth_to_wav(self, text: str, out_wav: Path, options: SpeechOptions) -> None:
        out_wav.parent.mkdir(parents=True, exist_ok=True)
        msg = clean_for_tts(text)
        if not msg:
            raise AudioError("nothing to speak after cleanup")

        if self.backend == "piper":
            if not self.voice:
                raise AudioError("piper backend selected but no voice model configured")
            await run_command(piper_argv(out_wav, model=self.voice, options=options), stdin=msg.encode("utf-8"))
        else:
            await run_command(espeak_argv(msg, out_wav, voice=self.voice, options=options))

    async def speak(self, text: str, options: SpeechOptions) -> None:
        out_wav = Path(self.work_dir) / f"speech_{uuid.uuid4().hex[:12]}.wav"
        try:
            await self.synth_to_wav(text, out_wav, options)
            await play_file(self.player, out_wav)
        finally:
            out_wav.unlink(missing_ok=True)
