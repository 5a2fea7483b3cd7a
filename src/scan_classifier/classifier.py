"""
Document Classification Module
==============================

Classifies OCR text into one of the owner's filing categories using an
OpenAI-compatible chat completion. The model is asked for a single JSON object
with a title, a category, an explanation and a file name; anything else is a
classification failure.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

import openai
import structlog

from .config import DEFAULT_CATEGORIES, Settings
from .utils import truncate_text

log = structlog.get_logger(__name__)

REQUIRED_FIELDS = ("title", "category", "explanation", "filename")

CLASSIFICATION_PROMPT = """
You will be provided with the OCR version of a scanned document, and your
task is to classify its content as one of the following categories. Give an
explanation, a title, a filename, and a category in JSON format.

An example response would be:
{{"category": "tk", "explanation": "This is a scan of a letter by TK (Techniker Krankenkasse), issuing an SMS-Tan reset code", "title": "SMS-TAN Wiederherstellungscode", "filename": "sms_tan_reset_code.pdf"}}

{categories}

If you feel that the document does not fit any of the above categories but
fits well in a broader category, you may suggest one (only in one word).
Only do so as a last resort.

Reply only with the JSON object. Do not wrap it in markdown.
""".strip()


class ClassificationError(Exception):
    """The model call failed or its answer did not match the expected shape."""


@dataclass(frozen=True)
class Classification:
    title: str
    category: str
    explanation: str
    filename: str

    def to_dict(self) -> dict:
        return {
            "title": self.title,
            "category": self.category,
            "explanation": self.explanation,
            "filename": self.filename,
        }


def build_prompt(categories: dict[str, str]) -> str:
    lines = "\n".join(f"- {name}: {description}" for name, description in categories.items())
    return CLASSIFICATION_PROMPT.format(categories=lines)


def _extract_json(text: str) -> dict:
    """Parse JSON from raw model output, trimming surrounding text if needed."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}")
        if start == -1 or end == -1 or end <= start:
            raise
        return json.loads(text[start : end + 1])


def parse_classification_response(text: str) -> Classification:
    """
    Parse the model answer into a `Classification`.

    Raises:
        ValueError: for empty answers, non-objects, and missing or non-string
            fields. ``json.JSONDecodeError`` is a ``ValueError`` too.
    """
    raw = text.strip()
    if not raw:
        raise ValueError("Classification response is empty.")

    data = _extract_json(raw)
    if not isinstance(data, dict):
        raise ValueError("Classification response is not a JSON object.")

    values = {}
    for key in REQUIRED_FIELDS:
        value = data.get(key)
        if not isinstance(value, str):
            raise ValueError(f"Classification response is missing '{key}'.")
        values[key] = value.strip()

    for key in ("category", "filename"):
        if not values[key]:
            raise ValueError(f"Classification response has an empty '{key}'.")

    return Classification(**values)


class ClassificationProvider:
    """
    Classifies text through the OpenAI SDK (OpenAI or Ollama).
    """

    def __init__(self, settings: Settings, categories: dict[str, str] | None = None):
        self.settings = settings
        self.categories = dict(categories or DEFAULT_CATEGORIES)
        self.prompt = build_prompt(self.categories)

    def _create_completion(self, **kwargs):
        """Call the OpenAI-compatible chat completion API."""
        return openai.chat.completions.create(**kwargs)

    def _models(self) -> list[str]:
        models = []
        for model in (self.settings.CLASSIFY_MODEL, self.settings.CLASSIFY_FALLBACK_MODEL):
            if model and model not in models:
                models.append(model)
        return models

    def classify_text(self, text: str) -> Classification:
        """
        Classify OCR text, trying the fallback model if the primary one fails.

        Only the first ``MAX_CLASSIFY_CHARS`` characters are sent.

        Raises:
            ClassificationError: when every model failed or answered badly.
        """
        excerpt = truncate_text(text, self.settings.MAX_CLASSIFY_CHARS)
        if not excerpt.strip():
            raise ClassificationError("Document text is empty; nothing to classify.")

        messages = [
            {"role": "system", "content": self.prompt},
            {"role": "user", "content": excerpt},
        ]

        last_error: Exception | None = None
        for model in self._models():
            params = {
                "model": model,
                "messages": messages,
                "timeout": self.settings.REQUEST_TIMEOUT,
            }
            try:
                response = self._create_completion(**params)
                content = response.choices[0].message.content or ""
                result = parse_classification_response(content)
            except ValueError as e:
                log.warning("Classification response invalid", model=model, error=str(e))
                last_error = e
                continue
            except openai.APIError as e:
                log.warning("Classification model failed", model=model, error=str(e))
                last_error = e
                continue

            log.info(
                "Classification",
                model=model,
                title=result.title,
                category=result.category,
                explanation=result.explanation,
            )
            return result

        log.error("All classification models failed", error=str(last_error))
        raise ClassificationError(str(last_error) if last_error else "No classification model configured")
