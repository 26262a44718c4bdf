"""Diagnostic result aggregate and the issue/score engine."""

from hostdoctor.diagnostics.issues import DEFAULT_RULES, Evaluation, Rule, RuleSet, evaluate, freeze
from hostdoctor.diagnostics.result import DiagnosticResult, FlaggedIssue, Severity

__all__ = [
    "DEFAULT_RULES",
    "DiagnosticResult",
    "Evaluation",
    "FlaggedIssue",
    "Rule",
    "RuleSet",
    "Severity",
    "evaluate",
    "freeze",
]
