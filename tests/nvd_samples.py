"""Builders for NVD CVE API 2.0 payloads and a scripted feed client."""
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from vuln_mirror.sources.base.base_fetcher import BaseFeedClient
from vuln_mirror.sources.nvd.converter import parse_nvd_datetime

CPE_P = "cpe:2.3:a:acme:widget:*:*:*:*:*:*:*:*"
CPE_Q = "cpe:2.3:a:acme:gadget:*:*:*:*:*:*:*:*"


def cpe_match(criteria: str, start_including: str = None, end_excluding: str = None,
              end_including: str = None, vulnerable: bool = True) -> Dict[str, Any]:
    match = {"vulnerable": vulnerable, "criteria": criteria, "matchCriteriaId": "00000000-0000-0000-0000-000000000000"}
    if start_including:
        match["versionStartIncluding"] = start_including
    if end_excluding:
        match["versionEndExcluding"] = end_excluding
    if end_including:
        match["versionEndIncluding"] = end_including
    return match


def cve_item(cve_id: str,
             last_modified: str = "2024-01-10T12:00:00.000",
             published: str = "2024-01-01T08:30:00.000",
             description: str = "A flaw in widget allows remote attackers to do things.",
             cvss_v3: Optional[float] = 7.5,
             cvss_v2: Optional[float] = None,
             matches: Sequence[Dict[str, Any]] = (),
             references: Sequence[str] = ("https://example.com/advisory",),
             cwes: Sequence[str] = ("CWE-79",)) -> Dict[str, Any]:
    """One entry of the `vulnerabilities` array of an API response"""
    metrics: Dict[str, List[Dict[str, Any]]] = {}
    if cvss_v3 is not None:
        metrics["cvssMetricV31"] = [{
            "source": "nvd@nist.gov",
            "type": "Primary",
            "cvssData": {
                "version": "3.1",
                "vectorString": "CVSS:3.1/AV:N/AC:L/PR:N/UI:N/S:U/C:H/I:N/A:N",
                "baseScore": cvss_v3,
            },
            "exploitabilityScore": 3.9,
            "impactScore": 3.6,
        }]
    if cvss_v2 is not None:
        metrics["cvssMetricV2"] = [{
            "source": "nvd@nist.gov",
            "type": "Primary",
            "cvssData": {"version": "2.0", "vectorString": "AV:N/AC:L/Au:N/C:P/I:N/A:N", "baseScore": cvss_v2},
            "exploitabilityScore": 10.0,
            "impactScore": 2.9,
        }]

    cve = {
        "id": cve_id,
        "sourceIdentifier": "cve@mitre.org",
        "published": published,
        "lastModified": last_modified,
        "vulnStatus": "Analyzed",
        "descriptions": [
            {"lang": "es", "value": "Una falla en widget."},
            {"lang": "en", "value": description},
        ],
        "metrics": metrics,
        "weaknesses": [{
            "source": "nvd@nist.gov",
            "type": "Primary",
            "description": [{"lang": "en", "value": cwe} for cwe in cwes],
        }],
        "references": [{"url": url, "source": "cve@mitre.org"} for url in references],
    }
    if matches:
        cve["configurations"] = [{"nodes": [{"operator": "OR", "negate": False, "cpeMatch": list(matches)}]}]
    return {"cve": cve}


def api_page(items: List[Dict[str, Any]], start_index: int = 0, total: Optional[int] = None) -> Dict[str, Any]:
    return {
        "resultsPerPage": len(items),
        "startIndex": start_index,
        "totalResults": len(items) if total is None else total,
        "format": "NVD_CVE",
        "version": "2.0",
        "timestamp": "2024-01-15T00:00:00.000",
        "vulnerabilities": items,
    }


class ScriptedFeedClient(BaseFeedClient):
    """Feed client replaying prepared pages; an Exception in place of a page is raised"""

    def __init__(self, pages: List[Union[List[Dict[str, Any]], Exception]]):
        super().__init__("scripted", "https://feed.invalid", request_delay=0)
        self.pages = list(pages)
        self.served = 0
        self.closed = False

    def has_next(self) -> bool:
        return bool(self.pages)

    async def next(self) -> List[Dict[str, Any]]:
        page = self.pages.pop(0)
        if isinstance(page, Exception):
            raise page
        self.served += 1
        for item in page:
            self._observe_modified(parse_nvd_datetime((item.get("cve") or {}).get("lastModified")))
        return page

    def _get_auth_headers(self) -> Dict[str, str]:
        return {}

    async def close(self):
        self.closed = True


def epoch(value: str) -> int:
    return int(parse_nvd_datetime(value).timestamp())


def at(value: str) -> datetime:
    return parse_nvd_datetime(value)
