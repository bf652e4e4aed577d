"""
Domain model for mirrored vulnerability data.

Vulnerability           one advisory, unique per (source, vuln_id)
AffectedSoftware        a CPE 2.3 platform plus an optional version range
AffectedVersionAttribution
                        which source reported which range for which
                        vulnerability, and when it was first / last seen

Row identity (`id`) is assigned by the store and never takes part in equality.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import List, Optional, Tuple


class Source(Enum):
    NVD = "NVD"
    GITHUB = "GITHUB"
    OSV = "OSV"
    SNYK = "SNYK"
    OSSINDEX = "OSSINDEX"
    VULNDB = "VULNDB"
    INTERNAL = "INTERNAL"


class Severity(Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"
    UNASSIGNED = "UNASSIGNED"


# Fields cleared whenever a severity is assigned explicitly
SCORING_FIELDS = (
    'cvss_v2_base_score',
    'cvss_v2_impact_sub_score',
    'cvss_v2_exploitability_sub_score',
    'cvss_v2_vector',
    'cvss_v3_base_score',
    'cvss_v3_impact_sub_score',
    'cvss_v3_exploitability_sub_score',
    'cvss_v3_vector',
    'owasp_rr_likelihood_score',
    'owasp_rr_technical_impact_score',
    'owasp_rr_business_impact_score',
    'owasp_rr_vector',
)


def cvss_v3_severity(score: float) -> Severity:
    if score >= 9.0:
        return Severity.CRITICAL
    elif score >= 7.0:
        return Severity.HIGH
    elif score >= 4.0:
        return Severity.MEDIUM
    elif score > 0.0:
        return Severity.LOW
    return Severity.INFO


def cvss_v2_severity(score: float) -> Severity:
    if score >= 7.0:
        return Severity.HIGH
    elif score >= 4.0:
        return Severity.MEDIUM
    elif score > 0.0:
        return Severity.LOW
    return Severity.INFO


def _owasp_level(score: float) -> str:
    if score < 3.0:
        return 'LOW'
    elif score < 6.0:
        return 'MEDIUM'
    return 'HIGH'


# OWASP Risk Rating matrix: (likelihood, impact) -> severity
_OWASP_MATRIX = {
    ('LOW', 'LOW'): Severity.INFO,
    ('LOW', 'MEDIUM'): Severity.LOW,
    ('LOW', 'HIGH'): Severity.MEDIUM,
    ('MEDIUM', 'LOW'): Severity.LOW,
    ('MEDIUM', 'MEDIUM'): Severity.MEDIUM,
    ('MEDIUM', 'HIGH'): Severity.HIGH,
    ('HIGH', 'LOW'): Severity.MEDIUM,
    ('HIGH', 'MEDIUM'): Severity.HIGH,
    ('HIGH', 'HIGH'): Severity.CRITICAL,
}


def owasp_rr_severity(likelihood: float, technical_impact: float, business_impact: float) -> Severity:
    impact = max(technical_impact or 0.0, business_impact or 0.0)
    return _OWASP_MATRIX[(_owasp_level(likelihood), _owasp_level(impact))]


@dataclass
class Vulnerability:
    """A vulnerability as reported by a feed or as persisted in the store"""
    vuln_id: str
    source: Source = Source.NVD

    title: Optional[str] = None
    sub_title: Optional[str] = None
    description: Optional[str] = None
    detail: Optional[str] = None
    recommendation: Optional[str] = None
    references: Optional[str] = None
    credits: Optional[str] = None

    created: Optional[datetime] = None
    published: Optional[datetime] = None
    updated: Optional[datetime] = None

    cwes: List[int] = field(default_factory=list)

    cvss_v2_base_score: Optional[float] = None
    cvss_v2_impact_sub_score: Optional[float] = None
    cvss_v2_exploitability_sub_score: Optional[float] = None
    cvss_v2_vector: Optional[str] = None
    cvss_v3_base_score: Optional[float] = None
    cvss_v3_impact_sub_score: Optional[float] = None
    cvss_v3_exploitability_sub_score: Optional[float] = None
    cvss_v3_vector: Optional[str] = None
    owasp_rr_likelihood_score: Optional[float] = None
    owasp_rr_technical_impact_score: Optional[float] = None
    owasp_rr_business_impact_score: Optional[float] = None
    owasp_rr_vector: Optional[str] = None

    vulnerable_versions: Optional[str] = None
    patched_versions: Optional[str] = None

    # Enrichment computed outside of any feed (FIRST EPSS)
    epss_score: Optional[float] = None
    epss_percentile: Optional[float] = None

    explicit_severity: Optional[Severity] = field(default=None, repr=False)
    id: Optional[int] = field(default=None, compare=False)

    @property
    def natural_key(self) -> Tuple[Source, str]:
        return self.source, self.vuln_id

    @property
    def lock_key(self) -> str:
        return f"{self.source.value}:{self.vuln_id}"

    @property
    def severity(self) -> Severity:
        """
        The explicitly assigned severity, or one derived from the scores.

        CVSS v3 wins over CVSS v2, which wins over OWASP Risk Rating.
        """
        if self.explicit_severity is not None:
            return self.explicit_severity
        if self.cvss_v3_base_score is not None:
            return cvss_v3_severity(self.cvss_v3_base_score)
        if self.cvss_v2_base_score is not None:
            return cvss_v2_severity(self.cvss_v2_base_score)
        if self.owasp_rr_likelihood_score is not None:
            return owasp_rr_severity(self.owasp_rr_likelihood_score,
                                     self.owasp_rr_technical_impact_score,
                                     self.owasp_rr_business_impact_score)
        return Severity.UNASSIGNED

    @severity.setter
    def severity(self, value: Optional[Severity]):
        # Assigning a severity invalidates every score it could have been derived from
        self.explicit_severity = value
        for name in SCORING_FIELDS:
            setattr(self, name, None)


@dataclass(unsafe_hash=True)
class AffectedSoftware:
    """A CPE 2.3 platform and the version range of it that is affected"""
    cpe23: Optional[str] = None
    part: Optional[str] = None
    vendor: Optional[str] = None
    product: Optional[str] = None
    version: Optional[str] = None
    update: Optional[str] = None
    edition: Optional[str] = None
    language: Optional[str] = None
    sw_edition: Optional[str] = None
    target_sw: Optional[str] = None
    target_hw: Optional[str] = None
    other: Optional[str] = None
    version_start_including: Optional[str] = None
    version_start_excluding: Optional[str] = None
    version_end_including: Optional[str] = None
    version_end_excluding: Optional[str] = None
    vulnerable: bool = True

    id: Optional[int] = field(default=None, compare=False)

    @property
    def key(self) -> tuple:
        """Semantic identity, independent of the store-assigned id"""
        return tuple(getattr(self, name) for name in AFFECTED_SOFTWARE_FIELDS)

    def describe(self) -> str:
        bounds = []
        if self.version_start_including:
            bounds.append(f">={self.version_start_including}")
        if self.version_start_excluding:
            bounds.append(f">{self.version_start_excluding}")
        if self.version_end_including:
            bounds.append(f"<={self.version_end_including}")
        if self.version_end_excluding:
            bounds.append(f"<{self.version_end_excluding}")
        return f"{self.cpe23} {' '.join(bounds)}".strip()


AFFECTED_SOFTWARE_FIELDS = tuple(f.name for f in fields(AffectedSoftware) if f.compare)


@dataclass
class AffectedVersionAttribution:
    vulnerability_id: int
    affected_software_id: int
    source: Source
    first_seen: datetime
    last_seen: datetime
    id: Optional[int] = field(default=None, compare=False)
