# sonic_lab/services/inference_providers.py
from __future__ import annotations
from typing import Protocol, Any, Dict, Optional
import asyncio, hashlib, json, logging, re

import requests
from pydantic import ValidationError

from sonic_lab.config import Settings, get_settings
from sonic_lab.core.errors import InferenceError, RateLimitError, ResponseParseError
from sonic_lab.core.models import AnalysisResult

logger = logging.getLogger("sonic_lab.inference")

ANALYSIS_PROMPT = """
You are an expert in emotional audio analysis. Analyse the emotion in this recording
and the vocal identity of the speaker.

Key rules:
1. Never judge from the words alone. If the speaker talks about something happy in a
   sad tone, the answer is sad.
2. Acoustic features come first: intonation, speaking rate, loudness changes,
   resonance, breathing, and trembling in the voice.
3. Identify the speaker's voice: gender, approximate age range, and timbre.

Return JSON with:
- emotionType: emotion category (angry, happy, sad, fearful, surprised, puzzled, calm,
  disgusted, anxious, ...).
- emotionLevel: integer 1-10; 1 is barely perceptible, 10 is extreme and out of control.
- voiceIdentity: voice role, e.g. "middle-aged man", "bright young girl",
  "hoarse elderly woman".
- reasoning: a short justification describing the vocal features you heard.
""".strip()

RESULT_FIELDS = ("emotionType", "emotionLevel", "voiceIdentity", "reasoning")

RESPONSE_SCHEMA: Dict[str, Any] = {
    "type": "OBJECT",
    "properties": {
        "emotionType": {"type": "STRING"},
        "emotionLevel": {"type": "INTEGER"},
        "voiceIdentity": {"type": "STRING"},
        "reasoning": {"type": "STRING"},
    },
    "required": list(RESULT_FIELDS),
}

_FENCE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def parse_analysis(text: str) -> AnalysisResult:
    """Turn the model's JSON text into an AnalysisResult or raise ResponseParseError."""
    s = (text or "").strip()
    m = _FENCE.search(s)
    if m and m.group(1).strip():
        s = m.group(1).strip()
    try:
        data = json.loads(s)
    except ValueError as e:
        raise ResponseParseError(f"response is not JSON: {s[:200]!r}") from e
    if not isinstance(data, dict):
        raise ResponseParseError(f"expected a JSON object, got {type(data).__name__}")
    missing = [k for k in RESULT_FIELDS if k not in data]
    if missing:
        raise ResponseParseError(f"response missing fields: {', '.join(missing)}")
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise ResponseParseError(f"invalid analysis result: {e.error_count()} error(s)") from e


# ---------- Interface ----------
class InferenceClient(Protocol):
    async def analyze(self, data: str, mime_type: str) -> AnalysisResult: ...


# ---------- Stub (default/offline) ----------
class StubInference:
    EMOTIONS = ("calm", "happy", "sad", "angry", "anxious", "surprised")

    async def analyze(self, data: str, mime_type: str) -> AnalysisResult:
        digest = hashlib.sha1(data.encode("ascii", "ignore")).digest()
        return AnalysisResult(
            emotion_type=self.EMOTIONS[digest[0] % len(self.EMOTIONS)],
            emotion_level=digest[1] % 10 + 1,
            voice_identity="unidentified speaker (stub)",
            reasoning=f"[stub] no model consulted; {mime_type} clip of {len(data)} base64 chars.",
        )


# ---------- Gemini ----------
class GeminiInference:
    def __init__(self, settings: Optional[Settings] = None):
        s = settings or get_settings()
        key = (s.GEMINI_API_KEY or "").strip()
        if not key:
            raise RuntimeError("GEMINI_API_KEY not set")
        self.key = key
        self.model = s.GEMINI_MODEL
        self.base_url = s.GEMINI_BASE_URL.rstrip("/")
        self.timeout = s.INFERENCE_TIMEOUT_S

    def _payload(self, data: str, mime_type: str) -> Dict[str, Any]:
        return {
            "contents": [{
                "parts": [
                    {"inlineData": {"mimeType": mime_type, "data": data}},
                    {"text": ANALYSIS_PROMPT},
                ]
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    @staticmethod
    def _error_status(r: requests.Response) -> str:
        # error bodies are not always {"error": {...}}; proxies send lists or plain text
        try:
            body = r.json()
        except ValueError:
            return ""
        err = body.get("error") if isinstance(body, dict) else None
        status = err.get("status") if isinstance(err, dict) else None
        return status if isinstance(status, str) else ""

    def _post(self, data: str, mime_type: str) -> str:
        url = f"{self.base_url}/models/{self.model}:generateContent"
        headers = {"x-goog-api-key": self.key, "content-type": "application/json"}
        try:
            r = requests.post(url, json=self._payload(data, mime_type), headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise InferenceError(f"Gemini request failed: {e}") from e

        if r.status_code != 200:
            status = self._error_status(r)
            # Mask the key if the server echoed it back.
            snippet = r.text[:200].replace(self.key, "***")
            if r.status_code == 429 or status == "RESOURCE_EXHAUSTED":
                raise RateLimitError(f"Gemini {r.status_code} {status}: {snippet}", status_code=r.status_code)
            raise InferenceError(f"Gemini {r.status_code}: {snippet}", status_code=r.status_code)

        try:
            body = r.json()
            parts = body["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ResponseParseError(f"unexpected Gemini response shape: {r.text[:200]!r}") from e
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict))

    async def analyze(self, data: str, mime_type: str) -> AnalysisResult:
        text = await asyncio.to_thread(self._post, data, mime_type)
        return parse_analysis(text)


# ---------- OpenAI (audio-capable chat models) ----------
_OPENAI_AUDIO_FORMATS = {
    "audio/wav": "wav",
    "audio/x-wav": "wav",
    "audio/wave": "wav",
    "audio/mpeg": "mp3",
    "audio/mp3": "mp3",
}


class OpenAIInference:
    def __init__(self, settings: Optional[Settings] = None):
        from openai import OpenAI
        s = settings or get_settings()
        key = (s.OPENAI_API_KEY or "").strip()
        if not key:
            raise RuntimeError("OPENAI_API_KEY not set")
        self.client = OpenAI(api_key=key, timeout=s.INFERENCE_TIMEOUT_S)
        self.model = s.OPENAI_AUDIO_MODEL

    def _complete(self, data: str, fmt: str) -> str:
        import openai
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                modalities=["text"],
                messages=[
                    {"role": "system", "content": ANALYSIS_PROMPT + "\nOutput JSON ONLY, no prose."},
                    {"role": "user", "content": [
                        {"type": "text", "text": "Analyse this recording."},
                        {"type": "input_audio", "input_audio": {"data": data, "format": fmt}},
                    ]},
                ],
            )
        except openai.RateLimitError as e:
            raise RateLimitError(f"OpenAI 429: {e}") from e
        except openai.APIStatusError as e:
            raise InferenceError(f"OpenAI {e.status_code}: {e}", status_code=e.status_code) from e
        except openai.APIError as e:
            raise InferenceError(f"OpenAI request failed: {e}") from e
        return resp.choices[0].message.content or ""

    async def analyze(self, data: str, mime_type: str) -> AnalysisResult:
        fmt = _OPENAI_AUDIO_FORMATS.get((mime_type or "").lower())
        if not fmt:
            raise InferenceError(f"OpenAI audio input supports wav/mp3 only, got {mime_type!r}")
        text = await asyncio.to_thread(self._complete, data, fmt)
        return parse_analysis(text)


# ---------- Factory ----------
def get_inference(settings: Optional[Settings] = None) -> InferenceClient:
    s = settings or get_settings()
    provider = s.INFERENCE_PROVIDER
    try:
        if provider == "gemini":
            return GeminiInference(s)
        if provider == "openai":
            return OpenAIInference(s)
    except Exception as e:
        # Fall back to stub if keys/models are misconfigured
        logger.warning("inference provider %r unavailable (%s); using stub", provider, e)
        return StubInference()
    if provider != "stub":
        logger.warning("unknown INFERENCE_PROVIDER=%r; using stub", provider)
    return StubInference()
