"""Shared fixtures for the TamperGuard test suite."""

from typing import Dict

import pytest

from tamperguard.core import ChannelVerdict, Severity
from tamperguard.fusion import DOMAINS, FusedState
from tamperguard.pipeline import ThreatPipeline


def make_verdicts(
    severities: Dict[str, Severity] = None,
    flags: Dict[str, Dict[str, bool]] = None,
    ready: bool = True
) -> Dict[str, ChannelVerdict]:
    """One verdict per domain with the given severities and flags."""
    severities = severities or {}
    flags = flags or {}
    return {
        domain: ChannelVerdict(
            channel=domain,
            ready=ready,
            severity=severities.get(domain, Severity.NONE),
            flags=dict(flags.get(domain, {}))
        )
        for domain in DOMAINS
    }


@pytest.fixture
def verdicts():
    return make_verdicts


@pytest.fixture
def quiet_fused() -> FusedState:
    return FusedState(ready=True)


@pytest.fixture
def pipeline() -> ThreatPipeline:
    return ThreatPipeline()
