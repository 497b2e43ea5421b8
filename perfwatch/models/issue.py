"""
Issue Model
===========
Pydantic models emitted by the optimization rule engine.

Issue fields:
    category        — bundle kind the rule evaluated (frontend, backend, ...)
    type            — rule identifier (e.g. "lcp", "response-time")
    severity        — high | medium | low
    description     — human-readable finding including the measured value
    recommendations — ordered, the first entry is the primary recommendation
    related_ids     — offending assets/resources, when the rule aggregates them

FixDescriptor fields:
    category, issue_type    — the Issue this fix addresses
    action                  — short machine name (e.g. "enable-caching")
    description             — what the fix does
    command                 — external command reference; never run by the engine
"""
from typing import List, Literal

from pydantic import BaseModel, ConfigDict

Severity = Literal["high", "medium", "low"]


class Issue(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    type: str
    severity: Severity
    description: str
    recommendations: List[str] = []
    related_ids: List[str] = []

    @property
    def top_recommendation(self) -> str:
        return self.recommendations[0] if self.recommendations else ""


class FixDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    issue_type: str
    action: str
    description: str
    command: str
