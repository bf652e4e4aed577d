"""
NVD CVE API 2.0 Record Converter

Turns one `cve` object of an API response page into the mirror's model:
a Vulnerability and the list of AffectedSoftware it reports.

HANDLED SECTIONS:
- descriptions (English preferred)
- published / lastModified timestamps (UTC, no offset in the payload)
- references, rendered as a markdown list
- weaknesses, CWE-<n> only
- metrics: cvssMetricV31 / cvssMetricV30 for CVSS v3, cvssMetricV2 for v2
- configurations: vulnerable cpeMatch entries with their version ranges
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from ...models import AffectedSoftware, Source, Vulnerability
from ..base.exceptions import ParseException

logger = logging.getLogger(__name__)

DATETIME_FORMATS = [
    '%Y-%m-%dT%H:%M:%S.%f',
    '%Y-%m-%dT%H:%M:%S',
]

CPE_COMPONENTS = [
    'part', 'vendor', 'product', 'version', 'update', 'edition',
    'language', 'sw_edition', 'target_sw', 'target_hw', 'other',
]

CWE_PATTERN = re.compile(r'^CWE-(\d+)$')

# Colons escaped with a backslash belong to the component value
CPE_SPLIT_PATTERN = re.compile(r'(?<!\\):')


def parse_nvd_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse an NVD timestamp; NVD timestamps carry no offset and are UTC"""
    if not value:
        return None

    value = value.strip()
    if value.endswith('Z'):
        value = value[:-1]

    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(value, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    logger.warning(f"⚠️ Unparseable NVD timestamp: {value!r}")
    return None


def extract_description(cve: Dict[str, Any]) -> Optional[str]:
    descriptions = cve.get('descriptions') or []

    for desc in descriptions:
        if desc.get('lang') == 'en':
            value = (desc.get('value') or '').strip()
            if value:
                return value

    for desc in descriptions:
        value = (desc.get('value') or '').strip()
        if value:
            return value

    return None


def extract_references(cve: Dict[str, Any]) -> Optional[str]:
    lines = []
    for ref in cve.get('references') or []:
        url = (ref.get('url') or '').strip()
        if url:
            lines.append(f"* [{url}]({url})")
    return '\n'.join(lines) if lines else None


def extract_cwes(cve: Dict[str, Any]) -> List[int]:
    cwes: List[int] = []
    for weakness in cve.get('weaknesses') or []:
        for desc in weakness.get('description') or []:
            match = CWE_PATTERN.match((desc.get('value') or '').strip())
            if match and int(match.group(1)) not in cwes:
                cwes.append(int(match.group(1)))
    return cwes


def _select_metric(metrics: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The NVD's own (Primary) metric wins over ones supplied by a CNA"""
    if not metrics:
        return None
    for metric in metrics:
        if metric.get('type') == 'Primary':
            return metric
    return metrics[0]


def _to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def apply_cvss_metrics(vuln: Vulnerability, cve: Dict[str, Any]):
    metrics = cve.get('metrics') or {}

    v3 = _select_metric(metrics.get('cvssMetricV31')) or _select_metric(metrics.get('cvssMetricV30'))
    if v3:
        cvss_data = v3.get('cvssData') or {}
        vuln.cvss_v3_base_score = _to_float(cvss_data.get('baseScore'))
        vuln.cvss_v3_impact_sub_score = _to_float(v3.get('impactScore'))
        vuln.cvss_v3_exploitability_sub_score = _to_float(v3.get('exploitabilityScore'))
        vuln.cvss_v3_vector = cvss_data.get('vectorString')

    v2 = _select_metric(metrics.get('cvssMetricV2'))
    if v2:
        cvss_data = v2.get('cvssData') or {}
        vuln.cvss_v2_base_score = _to_float(cvss_data.get('baseScore'))
        vuln.cvss_v2_impact_sub_score = _to_float(v2.get('impactScore'))
        vuln.cvss_v2_exploitability_sub_score = _to_float(v2.get('exploitabilityScore'))
        vuln.cvss_v2_vector = cvss_data.get('vectorString')


def convert(cve: Dict[str, Any]) -> Vulnerability:
    """
    Convert a `cve` object into a Vulnerability

    Severity is not assigned here; it is derived from the CVSS scores.

    Raises:
        ParseException: If the record has no CVE id
    """
    vuln_id = (cve.get('id') or '').strip()
    if not vuln_id:
        raise ParseException("CVE record without id", source_name=Source.NVD.value)

    published = parse_nvd_datetime(cve.get('published'))
    vuln = Vulnerability(
        vuln_id=vuln_id,
        source=Source.NVD,
        description=extract_description(cve),
        references=extract_references(cve),
        created=published,
        published=published,
        updated=parse_nvd_datetime(cve.get('lastModified')),
        cwes=extract_cwes(cve),
    )
    apply_cvss_metrics(vuln, cve)
    return vuln


def _cpe_value(component: str) -> Optional[str]:
    return component.replace('\\:', ':') if component else None


def parse_cpe23(cpe23: str) -> Dict[str, Optional[str]]:
    """
    Split a CPE 2.3 formatted string into its named components

    Raises:
        ValueError: If the string is not a CPE 2.3 formatted string
    """
    parts = CPE_SPLIT_PATTERN.split(cpe23)
    if len(parts) != 13 or parts[0] != 'cpe' or parts[1] != '2.3':
        raise ValueError(f"Not a CPE 2.3 formatted string: {cpe23!r}")
    return {name: _cpe_value(value) for name, value in zip(CPE_COMPONENTS, parts[2:])}


def convert_cpe_match(cpe_match: Dict[str, Any]) -> AffectedSoftware:
    criteria = cpe_match['criteria']
    return AffectedSoftware(
        cpe23=criteria,
        version_start_including=cpe_match.get('versionStartIncluding'),
        version_start_excluding=cpe_match.get('versionStartExcluding'),
        version_end_including=cpe_match.get('versionEndIncluding'),
        version_end_excluding=cpe_match.get('versionEndExcluding'),
        vulnerable=bool(cpe_match.get('vulnerable', False)),
        **parse_cpe23(criteria),
    )


def convert_configurations(vuln_id: str, configurations: Optional[List[Dict[str, Any]]]) -> List[AffectedSoftware]:
    """
    Vulnerable CPE matches of all configuration nodes, in feed order and without duplicates

    Malformed entries are logged and skipped; they never fail the whole record.
    """
    affected: List[AffectedSoftware] = []
    seen = set()

    for configuration in configurations or []:
        for node in configuration.get('nodes') or []:
            for cpe_match in node.get('cpeMatch') or []:
                if not cpe_match.get('vulnerable', False):
                    continue
                try:
                    software = convert_cpe_match(cpe_match)
                except (KeyError, ValueError) as e:
                    logger.warning(f"⚠️ {vuln_id}: skipping malformed cpeMatch {cpe_match.get('criteria')!r}: {e}")
                    continue
                if software.key not in seen:
                    seen.add(software.key)
                    affected.append(software)

    return affected


def convert_item(item: Dict[str, Any]) -> Optional[Tuple[Vulnerability, List[AffectedSoftware]]]:
    """
    Convert one entry of a page's `vulnerabilities` array

    Returns None for entries without a `cve` object.
    """
    cve = item.get('cve')
    if cve is None:
        return None
    vuln = convert(cve)
    return vuln, convert_configurations(vuln.vuln_id, cve.get('configurations'))
