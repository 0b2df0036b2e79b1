# app/services/compliance_service.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Pattern

from app.models.enums import FlagCategory, FlagSeverity
from app.schemas.compliance import ComplianceFinding, ComplianceReport
from app.schemas.generation import GeneratedFile


@dataclass(frozen=True)
class SecurityRule:
    pattern: Pattern[str]
    severity: FlagSeverity
    message: str
    risk: int


SECURITY_RULES: List[SecurityRule] = [
    SecurityRule(
        re.compile(r"eval\s*\("),
        FlagSeverity.high,
        "Use of eval() detected - potential code injection risk",
        30,
    ),
    SecurityRule(
        re.compile(r"dangerouslySetInnerHTML"),
        FlagSeverity.medium,
        "Use of dangerouslySetInnerHTML - potential XSS risk",
        15,
    ),
    SecurityRule(
        re.compile(r"process\.env\.(?!NEXT_PUBLIC)[A-Z_]+"),
        FlagSeverity.high,
        "Server-side environment variable referenced in client code",
        25,
    ),
    SecurityRule(
        re.compile(r"localStorage\.setItem.*(?:privateKey|secretKey)"),
        FlagSeverity.high,
        "Private key stored in localStorage - critical security risk",
        40,
    ),
    SecurityRule(
        re.compile(r"Math\.random\(\).*(?:crypto|private|key)"),
        FlagSeverity.high,
        "Insecure randomness used for cryptographic material",
        35,
    ),
    SecurityRule(
        re.compile(r"\.innerHTML\s*="),
        FlagSeverity.medium,
        "Direct innerHTML assignment - potential XSS risk",
        10,
    ),
]


class ComplianceScorer:
    """
    Static scan of generated sources.

    Each rule is reported once per file, at its first matching line; the risk
    score is the sum of rule weights over all findings, capped at 100.
    """
    def __init__(self, rules: Iterable[SecurityRule] = SECURITY_RULES):
        self.rules = list(rules)

    def analyze(self, files: Iterable[GeneratedFile]) -> ComplianceReport:
        findings: List[ComplianceFinding] = []
        score = 0

        for f in files:
            lines = f.content.splitlines()
            for rule in self.rules:
                for lineno, text in enumerate(lines, start=1):
                    if rule.pattern.search(text):
                        findings.append(
                            ComplianceFinding(
                                category=FlagCategory.security,
                                severity=rule.severity,
                                message=rule.message,
                                file=f.path,
                                line=lineno,
                            )
                        )
                        score += rule.risk
                        break

        return ComplianceReport(riskScore=min(100, score), flags=findings)
