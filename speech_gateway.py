"""Speech gateway backed by DashScope.

Transcription sends the whole recording to qwen3-asr-flash as a base64 WAV
and streams back hypotheses with ``stream=True``; every hypothesis goes to
``on_partial`` and the last one is the transcript. Synthesis uses the
CosyVoice ``SpeechSynthesizer`` and asks for 16-bit mono WAV so the player
can decode it without extra codecs.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import wave
from typing import Optional

import dashscope
from dashscope.audio.tts_v2 import AudioFormat, SpeechSynthesizer

from errors import (
    AUTH_FAILED,
    EMPTY_RESPONSE,
    NO_API_KEY,
    NO_AUDIO_CONTENT,
    NO_SPEECH_DETECTED,
    GatewayError,
    classify_exception,
)
from interfaces import PartialCallback
from models import RecordedAudio

logger = logging.getLogger(__name__)


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    return base64.b64encode(buf.getvalue()).decode("ascii")


def resolve_api_key(api_key: str) -> str:
    key = api_key or os.getenv("DASHSCOPE_API_KEY", "")
    if not key:
        raise GatewayError(code=NO_API_KEY)
    return key


def extract_text(chunk: object) -> str:
    """Pull text from a MultiModalConversation response or chunk."""
    if not isinstance(chunk, dict):
        return ""
    output = chunk.get("output") or {}
    choices = output.get("choices") or []
    if not choices:
        return ""
    message = choices[0].get("message") or {}
    content = message.get("content") or []
    if isinstance(content, str):
        return content
    parts = [str(part.get("text", "")) for part in content if isinstance(part, dict)]
    return "".join(parts)


def check_status(response: object) -> None:
    status = getattr(response, "status_code", None)
    if status is None and isinstance(response, dict):
        status = response.get("status_code")
    if status is None or int(status) == 200:
        return
    message = getattr(response, "message", "") or str(status)
    if int(status) == 401:
        raise GatewayError(message, code=AUTH_FAILED)
    raise GatewayError(f"{status}: {message}", code=classify_exception(Exception(message)))


class DashscopeSpeechGateway:
    def __init__(
        self,
        api_key: str,
        asr_model: str = "qwen3-asr-flash",
        tts_model: str = "cosyvoice-v1",
        tts_voice: str = "longxiaochun",
        request_timeout_s: float = 10.0,
    ) -> None:
        self._api_key = api_key
        self._asr_model = asr_model
        self._tts_model = tts_model
        self._tts_voice = tts_voice
        self._request_timeout_s = request_timeout_s

    def transcribe(
        self,
        audio: RecordedAudio,
        on_partial: Optional[PartialCallback] = None,
    ) -> str:
        api_key = resolve_api_key(self._api_key)
        wav_b64 = _pcm_to_wav_base64(audio.pcm16_bytes, audio.sample_rate, audio.channels)
        logger.debug("transcribing %d ms of audio", audio.duration_ms)

        latest_text = ""
        try:
            response = dashscope.MultiModalConversation.call(
                api_key=api_key,
                model=self._asr_model,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": f"data:audio/wav;base64,{wav_b64}"}]},
                ],
                result_format="message",
                asr_options={"enable_itn": False},
                stream=True,
                timeout=self._request_timeout_s,
            )
            for chunk in response:
                check_status(chunk)
                text = extract_text(chunk)
                if text:
                    latest_text = text
                    if on_partial:
                        on_partial(text)
        except GatewayError:
            raise
        except Exception as exc:
            raise GatewayError(str(exc), code=classify_exception(exc)) from exc

        if not latest_text.strip():
            raise GatewayError(code=NO_SPEECH_DETECTED)
        return latest_text.strip()

    def synthesize(self, text: str) -> bytes:
        api_key = resolve_api_key(self._api_key)
        if not text.strip():
            raise GatewayError(code=EMPTY_RESPONSE)
        dashscope.api_key = api_key
        try:
            synthesizer = SpeechSynthesizer(
                model=self._tts_model,
                voice=self._tts_voice,
                format=AudioFormat.WAV_22050HZ_MONO_16BIT,
            )
            audio = synthesizer.call(text)
        except Exception as exc:
            raise GatewayError(str(exc), code=classify_exception(exc)) from exc
        if not audio:
            raise GatewayError(code=NO_AUDIO_CONTENT)
        return bytes(audio)
