"""
Markdown report parser.

Rebuilds a section-addressable view (case info, overview, strategies,
strengths, challenges) from the free-form markdown the analysis service
produces. The service has emitted more than one layout over time, so each
layout is a named dialect and dialects are tried in a fixed order:

    ValidatedFindingsDialect  ``### Validated Findings`` with ``####`` findings
    LegacyAccordionDialect    ``## Strengths`` / ``## Challenges`` sections
    (default)                 fixed placeholder content

Case info and overview extraction run independently of the dialect.

Public API
----------
MarkdownReportParser.parse(markdown, subject_name=None, author=None)
    -> ParsedReportSections   (never raises)
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from caseflow.utils.helpers import clean_text

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class CaseInfo:
    subject_name: str = "Student"
    grade: str = "Grade Not Specified"
    period: str = "Not Specified"
    author: str = "Not Specified"
    date_created: str = "Not Specified"
    date_updated: str = "Not Specified"


@dataclass
class Strategy:
    title: str
    description: str


@dataclass
class Finding:
    """One strength or challenge as shown to the reader."""

    title: str
    observable_signs: List[str] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)
    cautions: List[str] = field(default_factory=list)


@dataclass
class DialectFindings:
    """What a dialect recovered from the report body."""

    strengths: List[Finding] = field(default_factory=list)
    challenges: List[Finding] = field(default_factory=list)
    strategies: List[Strategy] = field(default_factory=list)


@dataclass
class ParsedReportSections:
    case_info: CaseInfo
    overview: str
    strategies: List[Strategy]
    strengths: List[Finding]
    challenges: List[Finding]
    dialect: str = "default"


# ---------------------------------------------------------------------------
# Placeholder content
# ---------------------------------------------------------------------------

DEFAULT_OVERVIEW = (
    "This student demonstrates unique strengths and learning needs that "
    "benefit from targeted support strategies."
)


def default_strategies() -> List[Strategy]:
    return [
        Strategy(
            "Use Student Strengths",
            "Leverage identified strengths to support learning across all areas",
        ),
        Strategy(
            "Provide Targeted Support",
            "Implement specific accommodations for identified challenge areas",
        ),
        Strategy(
            "Monitor Progress",
            "Regular check-ins to assess strategy effectiveness and adjust as needed",
        ),
    ]


def default_strengths() -> List[Finding]:
    return [
        Finding(
            title="Individual Strengths",
            observable_signs=["Strengths will be identified through comprehensive assessment"],
            recommended_actions=["Build on identified strengths to support learning"],
        )
    ]


def default_challenges() -> List[Finding]:
    return [
        Finding(
            title="Areas for Growth",
            observable_signs=["Challenge areas will be identified through comprehensive assessment"],
            recommended_actions=["Provide targeted support for identified challenge areas"],
        )
    ]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

_BULLET_RE = re.compile(r"^\s*[-•*]\s*")
_DO_MARKS = ("✔", "✓")
_DONT_MARKS = ("✘", "✗")


def _split_sections(markdown: str, heading: str) -> List[Tuple[str, str]]:
    """
    Split *markdown* on heading lines matching *heading* (e.g. ``#{2}``).

    Returns ``(title, body)`` pairs; text before the first heading is dropped.
    """
    pattern = re.compile(rf"^{heading}\s+(.+?)\s*$", re.MULTILINE)
    matches = list(pattern.finditer(markdown))
    sections: List[Tuple[str, str]] = []
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(markdown)
        sections.append((match.group(1).strip(), markdown[match.end():end].strip()))
    return sections


def _bullets(text: str, min_length: int = 5) -> List[str]:
    items: List[str] = []
    for line in text.splitlines():
        stripped = line.strip()
        if stripped and _BULLET_RE.match(stripped):
            item = clean_text(stripped)
            if len(item) > min_length:
                items.append(item)
    return items


# ---------------------------------------------------------------------------
# Dialects
# ---------------------------------------------------------------------------

class ReportDialect:
    """A known report layout. parse() returns None when the layout is absent."""

    name = "abstract"

    def parse(self, markdown: str) -> Optional[DialectFindings]:
        raise NotImplementedError


class ValidatedFindingsDialect(ReportDialect):
    """
    Numbered findings under a ``### Validated Findings`` heading, each with
    bold-labelled fields (Evidence, Observable Behaviors, ...).
    """

    name = "validated_findings"

    STRENGTH_KEYWORDS = (
        "strength", "strong", "excels", "excellent", "proficient", "skilled",
        "ability", "capable", "competent", "advanced", "superior", "effective",
        "successful", "good at", "talent", "gifted",
    )
    CHALLENGE_KEYWORDS = (
        "challenge", "difficulty", "struggle", "weakness", "deficit",
        "impairment", "delay", "below", "poor", "limited", "needs support",
        "requires", "area of need", "concern",
    )

    _SECTION_RE = re.compile(
        r"^###\s+Validated Findings\b.*?$(.*?)(?=^###\s|\Z)",
        re.IGNORECASE | re.MULTILINE | re.DOTALL,
    )
    _TITLE_RE = re.compile(r"^####\s+(?:\d+\.\s*)?(.+?)\s*$", re.MULTILINE)

    def parse(self, markdown: str) -> Optional[DialectFindings]:
        section = self._SECTION_RE.search(markdown)
        if section is None:
            return None

        blocks = re.split(r"(?=^#### )", section.group(1), flags=re.MULTILINE)
        found = DialectFindings()
        seen_strategies = set()

        for block in blocks:
            if not block.strip().startswith("####"):
                continue
            title_match = self._TITLE_RE.search(block)
            if title_match is None:
                continue
            title = clean_text(title_match.group(1))

            evidence = self.extract_field(block, "Evidence")
            teacher_desc = self.extract_field(block, "Teacher-Friendly Description")
            observable = self.extract_field(block, "Observable Behaviors")
            primary = self.extract_field(block, "Primary Support Strategy")
            secondary = self.extract_field(block, "Secondary Support Strategy")
            caution = self.extract_field(block, "Implementation Caution")

            signs: List[str] = []
            if observable:
                signs.append(observable)
            elif teacher_desc:
                signs.append(teacher_desc)
            if evidence:
                signs.append(f"Evidence: {evidence}")

            if not signs:
                logger.debug("Skipping finding %r: no observable signs", title)
                continue

            finding = Finding(
                title=title,
                observable_signs=signs,
                recommended_actions=[s for s in (primary, secondary) if s],
                cautions=[caution] if caution else [],
            )

            if primary and primary not in seen_strategies:
                seen_strategies.add(primary)
                found.strategies.append(Strategy(title=title, description=primary))

            if self.is_strength(title, teacher_desc):
                found.strengths.append(finding)
            else:
                found.challenges.append(finding)

        if not found.strengths and not found.challenges:
            return None
        return found

    @classmethod
    def is_strength(cls, title: str, description: str = "") -> bool:
        """Strength only when strength vocabulary appears and challenge vocabulary does not."""
        text = f"{title} {description}".lower()
        has_strength = any(k in text for k in cls.STRENGTH_KEYWORDS)
        has_challenge = any(k in text for k in cls.CHALLENGE_KEYWORDS)
        return has_strength and not has_challenge

    @staticmethod
    def extract_field(block: str, label: str) -> str:
        pattern = re.compile(
            rf"\*\*{re.escape(label)}:\*\*\s*([^\n*]+(?:\n(?!\*\*)[^\n]+)*)",
            re.IGNORECASE,
        )
        match = pattern.search(block)
        return clean_text(match.group(1)) if match else ""


class LegacyAccordionDialect(ReportDialect):
    """
    Older layout: ``## Strengths`` and ``## Challenges`` sections whose items
    carry ``**What You See:**`` bullets and ``**What to Do:**`` do/don't lines,
    or a ``| Title | What You See | What to Do |`` table.
    """

    name = "legacy_accordion"

    STRENGTH_SECTION_WORDS = ("strength", "section 1")
    CHALLENGE_SECTION_WORDS = ("challenge", "section 2", "areas of need")
    STRATEGY_SECTION_WORDS = ("strateg", "implementation recommendations")

    # Bold-line titles, but not the What You See / What to Do labels
    _ITEM_SPLIT_RE = re.compile(
        r"(?=^#{3,4}\s)|(?=^\*\*(?!What You See|What to Do)[^*]+\*\*\s*$)",
        re.MULTILINE | re.IGNORECASE,
    )
    _ITEM_TITLE_RES = (
        re.compile(r"^#{3,4}\s*(.+?)\s*$", re.MULTILINE),
        re.compile(r"^\*\*(.+?)\*\*"),
    )

    def parse(self, markdown: str) -> Optional[DialectFindings]:
        sections = _split_sections(markdown, "#{2}")
        strengths_body = self._find(sections, self.STRENGTH_SECTION_WORDS)
        challenges_body = self._find(sections, self.CHALLENGE_SECTION_WORDS)
        if strengths_body is None and challenges_body is None:
            return None

        strengths = self._parse_items(strengths_body) if strengths_body else []
        challenges = self._parse_items(challenges_body) if challenges_body else []
        if not strengths and not challenges:
            return None

        strategies_body = self._find(sections, self.STRATEGY_SECTION_WORDS)
        return DialectFindings(
            strengths=strengths or default_strengths(),
            challenges=challenges or default_challenges(),
            strategies=self._parse_strategies(strategies_body or ""),
        )

    @staticmethod
    def _find(sections: Sequence[Tuple[str, str]], words: Sequence[str]) -> Optional[str]:
        for title, body in sections:
            lowered = title.lower()
            if any(w in lowered for w in words):
                return body
        return None

    def _parse_items(self, body: str) -> List[Finding]:
        if re.search(r"^\s*\|.*\|\s*$", body, re.MULTILINE):
            table_items = self._parse_table(body)
            if table_items:
                return table_items

        items: List[Finding] = []
        for part in self._ITEM_SPLIT_RE.split(body):
            part = part.strip()
            if not part:
                continue
            title = ""
            for title_re in self._ITEM_TITLE_RES:
                match = title_re.match(part)
                if match:
                    title = clean_text(match.group(1))
                    break
            if not title:
                continue

            signs = self._what_you_see(part)
            actions, cautions = self._what_to_do(part)
            if signs or actions or cautions:
                items.append(Finding(title, signs, actions, cautions))
        return items

    @staticmethod
    def _what_you_see(text: str) -> List[str]:
        match = re.search(
            r"What You See[:*\s]*\n(.*?)(?=What to Do|\Z)", text, re.IGNORECASE | re.DOTALL
        )
        return _bullets(match.group(1)) if match else []

    @staticmethod
    def _what_to_do(text: str) -> Tuple[List[str], List[str]]:
        actions: List[str] = []
        cautions: List[str] = []
        match = re.search(
            r"What to Do[:*\s]*\n(.*?)(?=^#{1,4}\s|\Z)",
            text,
            re.IGNORECASE | re.DOTALL | re.MULTILINE,
        )
        if not match:
            return actions, cautions

        for line in match.group(1).splitlines():
            stripped = _BULLET_RE.sub("", line.strip())
            lowered = stripped.lower()
            if not stripped:
                continue
            if stripped.startswith(_DONT_MARKS) or lowered.startswith(("don't", "do not")):
                target = cautions
                stripped = re.sub(r"^[✘✗]\s*", "", stripped)
                stripped = re.sub(r"^don't:\s*", "", stripped, flags=re.IGNORECASE)
            elif stripped.startswith(_DO_MARKS) or lowered.startswith("do:"):
                target = actions
                stripped = re.sub(r"^[✔✓]\s*", "", stripped)
                stripped = re.sub(r"^do:\s*", "", stripped, flags=re.IGNORECASE)
            elif line.strip() != stripped:
                # plain bullet
                target = actions
            else:
                continue
            text = clean_text(stripped)
            if len(text) > 5:
                target.append(text)
        return actions, cautions

    @staticmethod
    def _parse_table(body: str) -> List[Finding]:
        """Rows of ``| Title | What You See | What to Do |``; blank titles continue the row above."""
        items: List[Finding] = []
        current: Optional[Finding] = None
        in_table = False

        def flush() -> None:
            if current is not None and (current.observable_signs or current.recommended_actions):
                items.append(current)

        for raw in body.splitlines():
            line = raw.strip()
            if not (line.startswith("|") and line.endswith("|")):
                if in_table and line:
                    flush()
                    current = None
                    in_table = False
                continue

            cells = [c.strip() for c in line.strip("|").split("|")]
            if all(re.fullmatch(r":?-+:?", c) for c in cells if c):
                in_table = True
                continue
            if not in_table or len(cells) < 3:
                continue

            title = clean_text(cells[0])
            if title:
                flush()
                current = Finding(title=title)
            if current is None:
                continue

            for obs in cells[1].split(";"):
                obs = clean_text(obs)
                if len(obs) > 5:
                    current.observable_signs.append(obs)

            for part in re.split(r"(?=[✔✓✘✗])", cells[2]):
                part = part.strip()
                if part.startswith(_DO_MARKS) or part.startswith(_DONT_MARKS):
                    text = clean_text(part[1:])
                    if len(text) > 3:
                        if part.startswith(_DO_MARKS):
                            current.recommended_actions.append(text)
                        else:
                            current.cautions.append(text)

        flush()
        return items

    @staticmethod
    def _parse_strategies(body: str) -> List[Strategy]:
        strategies: List[Strategy] = []
        for item in _bullets(body, min_length=10):
            head, sep, tail = item.partition(":")
            if sep and tail.strip() and len(head) <= 40:
                strategies.append(Strategy(title=head.strip(), description=tail.strip()))
            else:
                title = item[:30] + ("..." if len(item) > 30 else "")
                strategies.append(Strategy(title=title, description=item))
        return strategies


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

class MarkdownReportParser:
    """Turns stored report markdown into ParsedReportSections."""

    CASE_INFO_SCAN_LINES = 60

    _LABEL_RE = re.compile(
        r"^(student name|name|student grade|grade|analysis date|last updated|date|"
        r"report author|author|tutor|case manager|teacher)\s*:\s*(.+)$",
        re.IGNORECASE,
    )
    _SCHOOL_YEAR_RE = re.compile(r"\b(\d{4}\s*[-–]\s*\d{4})\b")
    _OVERVIEW_WORDS = ("overview", "executive summary", "summary", "student support report")

    # Field -> labels in priority order
    _FIELD_LABELS: Dict[str, Tuple[str, ...]] = {
        "subject_name": ("student name", "name"),
        "grade": ("grade", "student grade"),
        "date_created": ("analysis date", "date"),
        "date_updated": ("last updated",),
        "author": ("author", "report author", "tutor", "case manager", "teacher"),
    }

    def __init__(self, dialects: Optional[Sequence[ReportDialect]] = None) -> None:
        self.dialects: List[ReportDialect] = list(
            dialects if dialects is not None
            else (ValidatedFindingsDialect(), LegacyAccordionDialect())
        )

    def parse(
        self,
        markdown: str,
        subject_name: Optional[str] = None,
        author: Optional[str] = None,
    ) -> ParsedReportSections:
        if not isinstance(markdown, str) or not markdown.strip():
            return self.default_sections(subject_name, author)

        try:
            case_info = self.extract_case_info(markdown, subject_name, author)
            overview = self.extract_overview(markdown)

            for dialect in self.dialects:
                try:
                    found = dialect.parse(markdown)
                except Exception as exc:
                    logger.warning("Report dialect %s failed: %s", dialect.name, exc)
                    continue
                if found is None:
                    continue

                logger.debug(
                    "Parsed report with %s dialect: %d strengths, %d challenges",
                    dialect.name,
                    len(found.strengths),
                    len(found.challenges),
                )
                return ParsedReportSections(
                    case_info=case_info,
                    overview=overview,
                    strategies=(
                        found.strategies
                        or self.extract_strategies(markdown)
                        or default_strategies()
                    ),
                    strengths=found.strengths,
                    challenges=found.challenges,
                    dialect=dialect.name,
                )

            return ParsedReportSections(
                case_info=case_info,
                overview=overview,
                strategies=self.extract_strategies(markdown) or default_strategies(),
                strengths=default_strengths(),
                challenges=default_challenges(),
            )
        except Exception as exc:
            logger.warning("Report parsing failed, using placeholder: %s", exc)
            return self.default_sections(subject_name, author)

    # ------------------------------------------------------------------
    # Case info and overview
    # ------------------------------------------------------------------

    def extract_case_info(
        self,
        markdown: str,
        subject_name: Optional[str] = None,
        author: Optional[str] = None,
    ) -> CaseInfo:
        head = markdown.splitlines()[: self.CASE_INFO_SCAN_LINES]

        labelled: Dict[str, str] = {}
        for line in head:
            match = self._LABEL_RE.match(clean_text(line.lstrip("#")))
            if match:
                label = match.group(1).lower()
                labelled.setdefault(label, match.group(2).strip())

        info = CaseInfo()

        name = self._first(labelled, "subject_name", max_length=100, reject=r"[<>{}]")
        if name:
            info.subject_name = name
        grade = self._first(labelled, "grade", max_length=50)
        if grade:
            info.grade = grade
        created = self._first(labelled, "date_created", max_length=50, require=r"\d")
        if created:
            info.date_created = created
        updated = self._first(labelled, "date_updated", max_length=50, require=r"\d")
        if updated:
            info.date_updated = updated
        found_author = self._first(labelled, "author", max_length=100, reject=r"[<>{}]")
        if found_author:
            info.author = found_author

        year = self._SCHOOL_YEAR_RE.search("\n".join(head))
        if year:
            info.period = re.sub(r"\s+", "", year.group(1))

        if subject_name:
            info.subject_name = subject_name
        if author:
            info.author = author
        return info

    def _first(
        self,
        labelled: Dict[str, str],
        field_name: str,
        max_length: int,
        reject: Optional[str] = None,
        require: Optional[str] = None,
    ) -> Optional[str]:
        for label in self._FIELD_LABELS[field_name]:
            value = labelled.get(label)
            if not value or len(value) > max_length:
                continue
            if reject and re.search(reject, value):
                continue
            if require and not re.search(require, value):
                continue
            return value
        return None

    def extract_overview(self, markdown: str) -> str:
        for title, body in _split_sections(markdown, "#{1,3}"):
            if not any(w in title.lower() for w in self._OVERVIEW_WORDS):
                continue
            for paragraph in re.split(r"\n\s*\n", body):
                if len(paragraph.strip()) > 50:
                    return clean_text(paragraph)
        return DEFAULT_OVERVIEW

    def extract_strategies(self, markdown: str) -> List[Strategy]:
        """Bullets from the report's own strategies or implementation recommendations section."""
        body = LegacyAccordionDialect._find(
            _split_sections(markdown, "#{2}"), LegacyAccordionDialect.STRATEGY_SECTION_WORDS
        )
        return LegacyAccordionDialect._parse_strategies(body or "")

    @staticmethod
    def default_sections(
        subject_name: Optional[str] = None, author: Optional[str] = None
    ) -> ParsedReportSections:
        info = CaseInfo()
        if subject_name:
            info.subject_name = subject_name
        if author:
            info.author = author
        return ParsedReportSections(
            case_info=info,
            overview=DEFAULT_OVERVIEW,
            strategies=default_strategies(),
            strengths=default_strengths(),
            challenges=default_challenges(),
        )
