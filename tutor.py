import logging
import os
import time
from typing import Any, Dict, List, Optional, Sequence

import requests

logger = logging.getLogger(__name__)

# --------- Model/endpoint from environment ---------
MODEL_ID = os.getenv("MODEL_ID", "DeepSeek-R1-Distill-Qwen-14B")
LLM_URL = os.getenv("LLM_URL") or os.getenv("GPT4ALL_URL", "http://localhost:4891/v1/chat/completions")
DEFAULT_MAX_TOKENS = 600

SYSTEM_TUTOR = (
    "You are an expert Advanced Corporate Finance (ACF) tutor for MBA students "
    "preparing for a placement exam. Answer with short, actionable study "
    "recommendations, one per line, without preamble."
)


class TextGenerationError(RuntimeError):
    """Raised when the remote text-generation endpoint fails or answers oddly."""


def _safe_float(env_name: str, default: float) -> float:
    raw = os.getenv(env_name, "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


def build_study_strategy_prompt(
    *,
    current_level: str,
    learning_style: str,
    session_minutes: int,
    weak_topics: Sequence[str],
    strong_topics: Sequence[str],
    topic_lines: Sequence[str],
    total_problems: int,
    goal_date: Optional[str] = None,
) -> str:
    """Compose the tutoring prompt for three study recommendations."""

    weak_text = ", ".join(weak_topics) or "None identified yet"
    strong_text = ", ".join(strong_topics) or "Building foundation"
    design = ", ".join(topic_lines) or "No topics planned"
    goal_line = f"- Exam Date: {goal_date}\n" if goal_date else ""
    return (
        f"As an expert ACF tutor for MBA students, provide 3 highly specific study "
        f"recommendations for a {current_level} student preparing for the Advanced "
        f"Corporate Finance placement exam.\n\n"
        f"Student Analysis:\n"
        f"- Current Level: {current_level}\n"
        f"- Learning Style: {learning_style}\n"
        f"- Available Study Time: {session_minutes} minutes per session\n"
        f"- Weak Areas Needing Focus: {weak_text}\n"
        f"- Strong Foundation Areas: {strong_text}\n"
        f"{goal_line}\n"
        f"Learning Path Design: {design}\n\n"
        f"Problem Database Available: {total_problems} practice problems across "
        f"{len(topic_lines)} planned steps with adaptive difficulty progression.\n\n"
        f"Provide strategic recommendations focusing on:\n"
        f"1. Optimal study sequence and time allocation\n"
        f"2. Specific problem-solving strategies for weak areas\n"
        f"3. Advanced techniques for mastering challenging concepts\n\n"
        f"Make recommendations practical and actionable for busy MBA students."
    )


def _extract_content(data: Any) -> str:
    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        try:
            return data["choices"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise TextGenerationError(f"Unexpected LLM response: {str(data)[:300]}") from exc


class LLMTextGenerator:
    """OpenAI-compatible chat completion client for the local tutor model."""

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        model_id: Optional[str] = None,
        timeout: Optional[float] = None,
        max_tokens: Optional[int] = DEFAULT_MAX_TOKENS,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.url = url or LLM_URL
        self.model_id = model_id or MODEL_ID
        self.timeout = timeout if timeout is not None else _safe_float("LLM_TIMEOUT", 5.0)
        self.max_tokens = max_tokens
        self._http = session or requests

    # ------------------------------------------------------------------
    def _messages(self, prompt: str) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_TUTOR},
            {"role": "user", "content": prompt},
        ]

    # ------------------------------------------------------------------
    def complete(self, prompt: str) -> str:
        messages = self._messages(prompt)
        payload: Dict[str, Any] = {"model": self.model_id, "messages": messages, "temperature": 0.4}
        if self.max_tokens is not None:
            payload["max_tokens"] = int(self.max_tokens)

        start = time.perf_counter()
        try:
            r = self._http.post(self.url, json=payload, timeout=self.timeout)
            if r.status_code == 400:
                # Fallback: send minimal payload
                minimal = {"model": self.model_id, "messages": messages}
                r = self._http.post(self.url, json=minimal, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.HTTPError as e:
            status = getattr(e.response, "status_code", "?")
            raise TextGenerationError(f"LLM-HTTP {status}") from e
        except (requests.RequestException, ValueError) as e:
            raise TextGenerationError(f"LLM error: {e}") from e
        finally:
            latency_ms = int((time.perf_counter() - start) * 1000)
            logger.debug("LLM call to %s finished in %d ms", self.url, latency_ms)

        content = _extract_content(data)
        if not isinstance(content, str) or not content.strip():
            raise TextGenerationError("LLM returned empty content")
        return content


__all__ = [
    "LLMTextGenerator",
    "LLM_URL",
    "MODEL_ID",
    "SYSTEM_TUTOR",
    "TextGenerationError",
    "build_study_strategy_prompt",
]
