"""Scoring rules."""

from npmscore.rules.advisory_history import AdvisoryHistoryRule
from npmscore.rules.base import BaseRule, tiered_deduction
from npmscore.rules.code_obfuscation import CodeObfuscationRule
from npmscore.rules.community_signals import CommunitySignalsRule
from npmscore.rules.external_network_calls import ExternalNetworkCallsRule
from npmscore.rules.lifecycle_scripts import LifecycleScriptRiskRule
from npmscore.rules.maintainer_security import MaintainerSecurityRule
from npmscore.rules.sbom_detection import SBOMDetectionRule
from npmscore.rules.signed_releases import SignedReleasesRule
from npmscore.rules.update_behavior import UpdateBehaviorRule
from npmscore.rules.verified_publisher import VerifiedPublisherRule

__all__ = [
    "AdvisoryHistoryRule",
    "BaseRule",
    "CodeObfuscationRule",
    "CommunitySignalsRule",
    "ExternalNetworkCallsRule",
    "LifecycleScriptRiskRule",
    "MaintainerSecurityRule",
    "SBOMDetectionRule",
    "SignedReleasesRule",
    "UpdateBehaviorRule",
    "VerifiedPublisherRule",
    "tiered_deduction",
]
