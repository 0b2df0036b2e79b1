from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, conint

from app.models.enums import FlagCategory, FlagSeverity


class ComplianceFinding(BaseModel):
    category: FlagCategory = FlagCategory.security
    severity: FlagSeverity
    message: str
    file: Optional[str] = None
    line: Optional[int] = None


class ComplianceReport(BaseModel):
    riskScore: conint(ge=0, le=100)
    flags: List[ComplianceFinding] = Field(default_factory=list)

    @property
    def has_high_severity(self) -> bool:
        return any(f.severity == FlagSeverity.high for f in self.flags)
