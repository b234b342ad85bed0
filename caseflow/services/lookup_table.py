"""
Extracts an embedded lookup table from imported prompt text.

Prompt series exported from the authoring tool carry their category lookup
table as a JSON object somewhere after a heading such as
``LOOKUP TABLE (v2)``. The object is located with a brace-depth scan rather
than a regex so nested objects and braces inside string values survive.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_VOCABULARY = frozenset({
    "attention",
    "chronic_health",
    "digital_access",
    "executive_function",
    "general_admin",
    "housing",
    "math",
    "memory_deficit",
    "mobility",
    "mobility_medical",
    "psychiatric",
    "reading",
    "sensory",
    "speech_communication_disorder",
    "testing",
    "writing",
})

# Tried in order; the first heading found decides the section. The flag says
# whether the decoded keys must overlap the category vocabulary: only the
# versioned post-secondary heading is checked, K-12 tables carry their own keys.
HEADING_PATTERNS = (
    (re.compile(r"LOOKUP\s+TABLE\s*\([^)]*\)", re.IGNORECASE), True),
    (re.compile(r"(?:LOOKUP|SUPPORT|BARRIER|ACCOMMODATION|CAUTION)\s+TABLE", re.IGNORECASE), False),
    (re.compile(r"Table\s+Access|Function\s+Calls", re.IGNORECASE), False),
)

_SECTION_END_RE = re.compile(r"_{10,}|SYSTEM PROMPT END", re.IGNORECASE)


class LookupTableExtractor:
    """Finds and decodes a lookup table; returns None whenever it cannot."""

    def __init__(self, vocabulary: Iterable[str] = DEFAULT_VOCABULARY) -> None:
        self.vocabulary = frozenset(vocabulary)

    def extract(self, text: str) -> Optional[Dict[str, Any]]:
        if not isinstance(text, str) or not text:
            return None

        found = self._find_section(text)
        if found is None:
            logger.debug("No lookup table heading found")
            return None

        section, check_vocabulary = found
        fragment = self.extract_json_object(section)
        if not fragment:
            logger.debug("No balanced JSON object in lookup table section")
            return None

        try:
            table = json.loads(fragment)
        except (json.JSONDecodeError, ValueError) as exc:
            logger.debug("Lookup table JSON did not decode: %s", exc)
            return None

        if not isinstance(table, dict):
            return None

        if check_vocabulary and not self.vocabulary.intersection(table.keys()):
            logger.info(
                "Ignoring JSON object with unrecognised keys: %s", sorted(table.keys())[:10]
            )
            return None

        logger.info("Extracted lookup table with %d categories", len(table))
        return table

    @staticmethod
    def _find_section(text: str) -> Optional[Tuple[str, bool]]:
        for pattern, check_vocabulary in HEADING_PATTERNS:
            match = pattern.search(text)
            if match is None:
                continue
            rest = text[match.end():]
            end = _SECTION_END_RE.search(rest)
            return (rest[: end.start()] if end else rest), check_vocabulary
        return None

    @staticmethod
    def extract_json_object(text: str) -> str:
        """
        Return the first balanced ``{ ... }`` span in *text*, or "" if the
        braces never balance.
        """
        start = text.find("{")
        if start == -1:
            return ""

        depth = 0
        in_string = False
        escape_next = False

        for i, ch in enumerate(text[start:], start=start):
            if escape_next:
                escape_next = False
                continue
            if ch == "\\" and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return ""
