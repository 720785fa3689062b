"""Shared test doubles. Kept out of conftest so test modules can import them."""
from healthwallet.schemas.records import BiomarkerCandidate
from healthwallet.services.extraction import ExtractedReport, ExtractionAdapter
from healthwallet.utils.exceptions import ExtractionError

USER_ID = "user-1"


class FakeExtractor(ExtractionAdapter):
    """Returns canned reports, or raises the given error."""

    name = "fake"

    def __init__(self, reports=None, error=None):
        self.reports = reports or []
        self.error = error
        self.calls = []

    def extract(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if not self.reports:
            raise ExtractionError("No biomarkers found in document")
        return self.reports


def report(*readings, **kwargs):
    """report(("Vitamin D", 24, "ng/mL", 0.9), ...) -> ExtractedReport"""
    candidates = [
        BiomarkerCandidate(name=r[0], value=r[1], unit=r[2], confidence=r[3] if len(r) > 3 else None)
        for r in readings
    ]
    return ExtractedReport(candidates=candidates, **kwargs)
