"""
Extractor boundary: the OpenAI-backed extractor and candidate validation.
"""
from core.extraction.candidates import JobCandidate, coerce_candidates, source_from_sender
from core.extraction.openai_extractor import OpenAIJobExtractor, parse_json_array

__all__ = [
    "JobCandidate",
    "coerce_candidates",
    "source_from_sender",
    "OpenAIJobExtractor",
    "parse_json_array",
]
