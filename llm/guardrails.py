"""
Response Guardrails for the Luvia product assistant.

Post-generation checks applied to every drafted reply before it is sent:
PII detection with masking, and detection of unauthorized promises
(discounts, guarantees, refunds, bonuses) judged against the product's
authorized rules.
"""

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Pattern, Tuple

from .oracles import PromiseArbiter

logger = logging.getLogger(__name__)


class IssueType(str, Enum):
    PII = "pii"
    UNAUTHORIZED_PROMISE = "unauthorized_promise"
    IRRELEVANT = "irrelevant"
    TONE = "tone"
    HALLUCINATION = "hallucination"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class ValidationIssue:
    type: IssueType
    severity: Severity
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
        }


@dataclass
class PiiFinding:
    type: str
    value: str
    masked: str
    start: int
    end: int


@dataclass
class GuardrailResult:
    """Result of validating a drafted reply."""
    issues: List[ValidationIssue] = field(default_factory=list)
    escalate: bool = False
    sanitized_response: str = ""
    original_response: str = ""
    pii_findings: List[PiiFinding] = field(default_factory=list)
    promises_found: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.issues

    @property
    def escalation_reason(self) -> Optional[str]:
        if not self.escalate:
            return None
        if self.pii_findings:
            return "pii_leak"
        return "unauthorized_promise"


def _mask_email(value: str) -> str:
    local, _, domain = value.partition("@")
    return f"{local[:1]}***@{domain}"


class GuardrailValidator:
    """
    Validates drafted replies.

    Checks:
    1. PII (CPF, card number, email, phone, RG, bank account), always critical
    2. Promise language, judged by the promise arbiter against authorized rules

    Escalates on any critical issue or on two or more high issues.
    """

    # Order matters: overlapping matches go to the first pattern.
    PII_PATTERNS: List[Tuple[str, Pattern]] = [
        ("cpf", re.compile(r"\b\d{3}\.?\d{3}\.?\d{3}-?\d{2}\b")),
        ("credit_card", re.compile(r"\b(?:\d{4}[-\s]?){3}\d{4}\b")),
        ("email", re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")),
        ("phone", re.compile(r"\b(?:\+55\s?)?(?:\(?\d{2}\)?\s?)?(?:9\s?)?\d{4,5}[-\s]?\d{4}\b")),
        ("rg", re.compile(r"\b\d{1,2}\.?\d{3}\.?\d{3}-?[0-9Xx]\b")),
        ("bank_account", re.compile(r"\b(?:ag[êe]ncia|conta)[\s:]*\d{4,6}[-\s]?\d{0,2}\b", re.IGNORECASE)),
    ]

    PII_MASKS: Dict[str, Callable[[str], str]] = {
        "cpf": lambda v: "***.***.***-**",
        "credit_card": lambda v: "**** **** **** ****",
        "email": _mask_email,
        "phone": lambda v: "(**) *****-****",
        "rg": lambda v: "**.***.***-*",
        "bank_account": lambda v: re.sub(r"\d", "*", v),
    }

    PROMISE_PATTERNS: List[Pattern] = [
        re.compile(r"garant(?:ia|imos|ido)", re.IGNORECASE),
        re.compile(r"desconto\s+de?\s*\d+%?", re.IGNORECASE),
        re.compile(r"parcel(?:a|amento)\s+(?:em|de)?\s*\d+x?", re.IGNORECASE),
        re.compile(r"prazo\s+de?\s*\d+\s*dias?", re.IGNORECASE),
        re.compile(r"devolu[çc][ãa]o\s+(?:em|de)?\s*\d+\s*dias?", re.IGNORECASE),
        re.compile(r"reembolso\s+(?:total|integral|em\s+\d+)", re.IGNORECASE),
        re.compile(r"b[ôo]nus\s+(?:de|exclusivo)?", re.IGNORECASE),
        re.compile(r"gr[áa]tis|gratuito", re.IGNORECASE),
        re.compile(r"100%\s+(?:garantido|seguro)", re.IGNORECASE),
        re.compile(r"sem\s+(?:risco|custo)", re.IGNORECASE),
        re.compile(r"oferta\s+(?:especial|limitada|exclusiva)", re.IGNORECASE),
        re.compile(r"pre[çc]o\s+(?:promocional|especial)", re.IGNORECASE),
    ]

    def __init__(self, promise_arbiter: Optional[PromiseArbiter] = None):
        self.promise_arbiter = promise_arbiter

    async def validate(
        self,
        draft: str,
        authorized_rules: Optional[List[str]] = None,
        check_promises: bool = True,
    ) -> GuardrailResult:
        """
        Run all checks on a drafted reply.

        Args:
            draft: Reply text produced by the agent
            authorized_rules: Rules the product allows promising
            check_promises: Skip the promise scan (e.g. no product resolved)

        Returns:
            GuardrailResult with issues, the escalation decision and the
            PII-masked text
        """
        result = GuardrailResult(original_response=draft, sanitized_response=draft)

        self._check_pii(result)
        if check_promises:
            await self._check_promises(result, authorized_rules or [])

        result.escalate = self.should_escalate(result.issues)

        if result.issues:
            logger.warning(
                f"Guardrail issues: {[(i.type.value, i.severity.value) for i in result.issues]} "
                f"escalate={result.escalate}"
            )
        return result

    @staticmethod
    def should_escalate(issues: List[ValidationIssue]) -> bool:
        """Escalate on any critical issue, or on two or more high issues."""
        if any(i.severity == Severity.CRITICAL for i in issues):
            return True
        return sum(1 for i in issues if i.severity == Severity.HIGH) >= 2

    def find_pii(self, text: str) -> List[PiiFinding]:
        findings: List[PiiFinding] = []
        taken: List[Tuple[int, int]] = []
        for pii_type, pattern in self.PII_PATTERNS:
            for match in pattern.finditer(text):
                start, end = match.span()
                if any(start < t_end and end > t_start for t_start, t_end in taken):
                    continue
                value = match.group()
                findings.append(PiiFinding(
                    type=pii_type,
                    value=value,
                    masked=self.PII_MASKS[pii_type](value),
                    start=start,
                    end=end,
                ))
                taken.append((start, end))
        return sorted(findings, key=lambda f: f.start)

    def _check_pii(self, result: GuardrailResult):
        """Flag and mask every PII match."""
        findings = self.find_pii(result.sanitized_response)
        if not findings:
            return

        text = result.sanitized_response
        for finding in reversed(findings):
            text = text[:finding.start] + finding.masked + text[finding.end:]
            result.issues.append(ValidationIssue(
                type=IssueType.PII,
                severity=Severity.CRITICAL,
                description=f"PII detected: {finding.type}",
            ))
        result.issues.reverse()
        result.sanitized_response = text
        result.pii_findings = findings

    async def _check_promises(self, result: GuardrailResult, authorized_rules: List[str]):
        """Hand promise-like spans to the arbiter."""
        promises = []
        for pattern in self.PROMISE_PATTERNS:
            promises.extend(m.group().strip() for m in pattern.finditer(result.original_response))
        promises = [p for p in dict.fromkeys(promises) if p]
        result.promises_found = promises
        if not promises:
            return

        verdict = None
        if self.promise_arbiter is not None:
            verdict = await self.promise_arbiter.judge(promises, authorized_rules)

        if verdict is None:
            for promise in promises:
                result.issues.append(ValidationIssue(
                    type=IssueType.UNAUTHORIZED_PROMISE,
                    severity=Severity.MEDIUM,
                    description=f"Promise could not be verified: '{promise}'",
                ))
            return

        for item in verdict.unauthorized:
            result.issues.append(ValidationIssue(
                type=IssueType.UNAUTHORIZED_PROMISE,
                severity=Severity(item.severity),
                description=f"Unauthorized promise '{item.promise}': {item.reason}",
            ))
