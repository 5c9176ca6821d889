"""Gemini video analysis provider"""
import json
import logging
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any

import httpx

from tlyt.core.config import settings
from tlyt.core.exceptions import ExternalWorkFailedError

logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = (
    "Analyze this video comprehensively. Provide a detailed summary, identify key moments "
    "with precise timestamps, and create a concise TL;DR. Focus on main topics, important "
    "transitions, and actionable insights."
)

RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "summary": {"type": "STRING", "description": "Comprehensive video summary"},
        "tldr": {"type": "STRING", "description": "Concise TL;DR summary"},
        "timestampSeconds": {
            "type": "ARRAY",
            "items": {"type": "INTEGER"},
            "description": "Array of timestamp positions in seconds",
        },
        "timestampDescriptions": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "description": "Array of descriptions for each timestamp",
        },
    },
    "required": ["summary", "tldr", "timestampSeconds", "timestampDescriptions"],
}


@dataclass
class TimestampNote:
    seconds: int
    description: str


@dataclass
class AnalysisResult:
    summary: str
    short_summary: str
    timestamps: List[TimestampNote] = field(default_factory=list)

    def timestamps_as_dicts(self) -> List[Dict[str, Any]]:
        return [asdict(note) for note in self.timestamps]


class GeminiAnalysisProvider:
    """Calls the Gemini generateContent endpoint with a YouTube URL as video input.

    Any failure (transport, timeout, non-2xx, malformed body) is raised as
    ExternalWorkFailedError so the caller can refund.
    """

    def __init__(self, client: Optional[httpx.Client] = None, api_key: Optional[str] = None,
                 model: Optional[str] = None, timeout: Optional[float] = None):
        self.client = client
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.timeout = timeout or settings.GEMINI_TIMEOUT_SECONDS

    def build_payload(self, youtube_id: str, instructions: Optional[str] = None) -> Dict[str, Any]:
        prompt = ANALYSIS_PROMPT
        if instructions and instructions.strip():
            prompt = f"{prompt}\n\nAdditional instructions from the viewer: {instructions.strip()}"

        return {
            "contents": [{
                "parts": [
                    {
                        "fileData": {
                            "mimeType": "video/mp4",
                            "fileUri": f"https://www.youtube.com/watch?v={youtube_id}",
                        },
                        "videoMetadata": {"fps": settings.GEMINI_VIDEO_FPS},
                    },
                    {"text": prompt},
                ]
            }],
            "generationConfig": {
                "responseMimeType": "application/json",
                "responseSchema": RESPONSE_SCHEMA,
            },
        }

    def _post(self, url: str, payload: Dict[str, Any]) -> httpx.Response:
        params = {"key": self.api_key}
        if self.client is not None:
            return self.client.post(url, params=params, json=payload, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, params=params, json=payload)

    def analyze(self, youtube_id: str, duration_seconds: int, instructions: Optional[str] = None) -> AnalysisResult:
        if not self.api_key:
            raise ExternalWorkFailedError("Gemini API key not configured")

        url = f"{settings.GEMINI_API_BASE}/models/{self.model}:generateContent"
        logger.info(f"Requesting Gemini analysis for {youtube_id} ({duration_seconds}s)")

        try:
            response = self._post(url, self.build_payload(youtube_id, instructions))
        except httpx.TimeoutException as e:
            logger.error(f"Gemini request timed out for {youtube_id} after {self.timeout}s")
            raise ExternalWorkFailedError("Gemini request timed out") from e
        except httpx.HTTPError as e:
            logger.error(f"Network error connecting to Gemini for {youtube_id}: {e}")
            raise ExternalWorkFailedError(f"Network error connecting to Gemini API: {e}") from e

        if response.status_code != 200:
            logger.error(f"Gemini API error for {youtube_id}: {response.status_code} {response.text[:500]}")
            raise ExternalWorkFailedError(f"Gemini API error: {response.status_code}")

        return self.parse_response(response)

    @staticmethod
    def parse_response(response: httpx.Response) -> AnalysisResult:
        try:
            body = response.json()
            text = body["candidates"][0]["content"]["parts"][0]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ExternalWorkFailedError("Invalid response from Gemini API") from e

        try:
            data = json.loads(text)
        except (ValueError, TypeError) as e:
            raise ExternalWorkFailedError("Failed to parse Gemini analysis JSON") from e

        if not isinstance(data, dict):
            raise ExternalWorkFailedError("Invalid analysis data structure from API")

        summary = data.get("summary")
        tldr = data.get("tldr")
        seconds = data.get("timestampSeconds")
        descriptions = data.get("timestampDescriptions")

        if not summary or not tldr or not isinstance(seconds, list) or not isinstance(descriptions, list):
            raise ExternalWorkFailedError("Invalid analysis data structure from API")
        if len(seconds) != len(descriptions):
            raise ExternalWorkFailedError("Timestamp arrays length mismatch")

        try:
            notes = [TimestampNote(seconds=int(s), description=str(d)) for s, d in zip(seconds, descriptions)]
        except (ValueError, TypeError) as e:
            raise ExternalWorkFailedError("Invalid timestamp values from API") from e

        return AnalysisResult(summary=summary, short_summary=tldr, timestamps=notes)
