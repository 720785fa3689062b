"""Extraction adapters: raw lab-report text in, biomarker candidates out.

The provider is a black box. Whatever goes wrong on its side (timeout, HTTP
error, unparseable reply, nothing found) surfaces as ``ExtractionError`` so the
record pipeline can fail the record with a readable message.
"""
from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date
from functools import lru_cache
from typing import Any, Dict, List, Optional, Pattern, Tuple

import httpx
from pydantic import ValidationError

from healthwallet.schemas.records import BiomarkerCandidate
from healthwallet.services import reference_ranges
from healthwallet.utils.exceptions import ExtractionError

logger = logging.getLogger("healthwallet")

DEFAULT_OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_OPENROUTER_MODEL = "google/gemini-2.0-flash-001"

SYSTEM_PROMPT = "You are a lab results parser. Return ONLY valid JSON, no markdown code blocks, no explanation."

EXTRACTION_PROMPT = """Extract every biomarker measurement from the lab report below.

If the document holds results from several dates or labs, return one report per date.

Output format (strict JSON):
{
  "reports": [
    {
      "record_date": "YYYY-MM-DD or null",
      "lab_provider": "Quest/LabCorp/etc or null",
      "summary": "one short paragraph or null",
      "biomarkers": [
        {"name": "Vitamin D", "value": 24, "unit": "ng/mL", "confidence": 0.95}
      ]
    }
  ]
}

Rules:
- value must be a number; skip results that are not numeric.
- confidence is your certainty in the reading, between 0 and 1.
- Use null for missing fields.

Lab report text:
"""


@dataclass
class ExtractedReport:
    candidates: List[BiomarkerCandidate]
    record_date: Optional[date] = None
    lab_provider: Optional[str] = None
    summary: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class ExtractionAdapter:
    """Base class; ``extract`` returns at least one report with candidates or raises."""

    name = "base"

    def extract(self, text: str) -> List[ExtractedReport]:
        raise NotImplementedError


# ---------- Provider reply parsing ----------
def _strip_fences(content: str) -> str:
    content = content.strip()
    if "```json" in content:
        start = content.index("```json") + 7
        end = content.find("```", start)
        return content[start:end if end >= 0 else None].strip()
    if "```" in content:
        start = content.index("```") + 3
        end = content.find("```", start)
        return content[start:end if end >= 0 else None].strip()
    return content


def _parse_date(value: Any) -> Optional[date]:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip() and value.strip().lower() != "null":
        return value.strip()
    return None


def _candidates(items: Any) -> Tuple[List[BiomarkerCandidate], int]:
    good: List[BiomarkerCandidate] = []
    skipped = 0
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            skipped += 1
            continue
        try:
            good.append(BiomarkerCandidate.model_validate(item))
        except ValidationError:
            skipped += 1
    return good, skipped


def parse_provider_payload(content: str) -> List[ExtractedReport]:
    """Turn the provider's JSON reply into reports; raises ``ExtractionError`` when unusable."""
    try:
        data = json.loads(_strip_fences(content or ""))
    except json.JSONDecodeError as exc:
        raise ExtractionError(f"Malformed extraction response: {exc.msg}") from exc

    if isinstance(data, dict) and isinstance(data.get("reports"), list):
        raw_reports = data["reports"]
    elif isinstance(data, dict) and "biomarkers" in data:
        raw_reports = [data]
    else:
        raise ExtractionError("Malformed extraction response: no reports or biomarkers")

    reports: List[ExtractedReport] = []
    skipped_total = 0
    for raw in raw_reports:
        if not isinstance(raw, dict):
            continue
        candidates, skipped = _candidates(raw.get("biomarkers"))
        skipped_total += skipped
        if not candidates:
            continue
        reports.append(
            ExtractedReport(
                candidates=candidates,
                record_date=_parse_date(raw.get("record_date")),
                lab_provider=_clean_str(raw.get("lab_provider")),
                summary=_clean_str(raw.get("summary")),
                raw=raw,
            )
        )
    if skipped_total:
        logger.info({"function": "parse_provider_payload", "skipped_candidates": skipped_total})
    if not reports:
        raise ExtractionError("No biomarkers found in document")
    return reports


# ---------- OpenRouter ----------
class OpenRouterExtractor(ExtractionAdapter):
    """Chat-completions call to OpenRouter with a bounded timeout."""

    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENROUTER_MODEL,
        url: str = DEFAULT_OPENROUTER_URL,
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def _request_body(self, text: str) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": EXTRACTION_PROMPT + text},
            ],
            "temperature": 0.1,
        }

    def extract(self, text: str) -> List[ExtractedReport]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                resp = client.post(self.url, headers=headers, json=self._request_body(text))
                resp.raise_for_status()
                data = resp.json()
        except httpx.TimeoutException as exc:
            raise ExtractionError(f"Extraction timed out after {self.timeout:g}s") from exc
        except httpx.HTTPStatusError as exc:
            raise ExtractionError(f"Extraction provider returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise ExtractionError(f"Extraction provider unreachable: {exc.__class__.__name__}") from exc
        except ValueError as exc:
            raise ExtractionError("Malformed extraction response: body is not JSON") from exc

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise ExtractionError("Malformed extraction response: missing message content") from exc
        if not isinstance(content, str):
            raise ExtractionError("Malformed extraction response: message content is not text")
        return parse_provider_payload(content)


# ---------- Pattern fallback ----------
_NUMBER = r"(?<![\w.])(\d+(?:\.\d+)?)(?![\d.]|-\w)"
_UNIT = r"\s*([^\s\d,;()\[\]][^\s,;()\[\]]*)?"


@lru_cache(maxsize=1)
def _alias_patterns() -> List[Tuple[str, str, Pattern[str]]]:
    """(alias, canonical key, compiled alias pattern), longest alias first."""
    entries: List[Tuple[str, str]] = []
    for key in reference_ranges.known_markers():
        spec = reference_ranges.lookup(key) or {}
        spellings = set(reference_ranges.aliases_for(key))
        if spec.get("display"):
            spellings.add(spec["display"].casefold())
        entries.extend((alias, key) for alias in spellings)
    entries.sort(key=lambda e: (-len(e[0]), e[0]))
    return [
        (alias, key, re.compile(r"(?<![a-z0-9])" + re.escape(alias) + r"(?![a-z0-9])"))
        for alias, key in entries
    ]


class PatternExtractor(ExtractionAdapter):
    """Line-oriented regex extraction against the reference catalog.

    Used when no provider key is configured. Each line yields at most one
    reading: the longest known marker name on the line, then the first
    standalone number after it.
    """

    name = "pattern"
    confidence = 0.7

    def _match_line(self, line: str) -> Optional[BiomarkerCandidate]:
        lowered = line.lower()
        for alias, key, pattern in _alias_patterns():
            m = pattern.search(lowered)
            if not m:
                continue
            tail = line[m.end():]
            num = re.search(_NUMBER + _UNIT, tail)
            if not num:
                return None
            spec = reference_ranges.lookup(key) or {}
            unit = num.group(2) or ""
            if not ("/" in unit or unit == "%"):
                unit = spec.get("unit", "")
            return BiomarkerCandidate(
                name=spec.get("display", key),
                value=float(num.group(1)),
                unit=unit,
                confidence=self.confidence,
            )
        return None

    def extract(self, text: str) -> List[ExtractedReport]:
        found: List[BiomarkerCandidate] = []
        seen: set[str] = set()
        for line in (text or "").splitlines():
            candidate = self._match_line(line)
            if candidate is None:
                continue
            key = reference_ranges.normalize_name(candidate.name)
            if key in seen:
                continue
            seen.add(key)
            found.append(candidate)
        if not found:
            raise ExtractionError("No biomarkers found in document")
        return [ExtractedReport(candidates=found)]


def get_extractor() -> ExtractionAdapter:
    """OpenRouter when a key is configured, otherwise the pattern fallback."""
    api_key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
    if not api_key:
        return PatternExtractor()
    return OpenRouterExtractor(
        api_key=api_key,
        model=(os.getenv("OPENROUTER_MODEL") or DEFAULT_OPENROUTER_MODEL).strip(),
        url=(os.getenv("OPENROUTER_URL") or DEFAULT_OPENROUTER_URL).strip(),
        timeout=float(os.getenv("EXTRACTION_TIMEOUT_SECONDS") or 60),
    )


__all__ = [
    "ExtractedReport",
    "ExtractionAdapter",
    "OpenRouterExtractor",
    "PatternExtractor",
    "get_extractor",
    "parse_provider_payload",
]
