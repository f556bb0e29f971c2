"""Tugger policy engine — ordered image-rewrite and registry-trust rules."""

from tugger_policy.legacy import LegacyPolicy
from tugger_policy.models import (
    Condition,
    InvalidConditionError,
    InvalidPatternError,
    MatchResult,
    PolicyDocument,
    PolicyError,
    PolicyLoadError,
    Rewrite,
    RuleConfig,
)
from tugger_policy.policy import ImagePolicy, Policy
from tugger_policy.rules import PatternRule

__all__ = [
    "Condition",
    "ImagePolicy",
    "InvalidConditionError",
    "InvalidPatternError",
    "LegacyPolicy",
    "MatchResult",
    "PatternRule",
    "Policy",
    "PolicyDocument",
    "PolicyError",
    "PolicyLoadError",
    "Rewrite",
    "RuleConfig",
]
