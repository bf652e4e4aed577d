"""
PostgreSQL schema for the mirror.

Every statement is idempotent so it can be applied on each start-up; this is
not a migration system.
"""

SCHEMA_QUERIES = [
    """
    CREATE TABLE IF NOT EXISTS vulnerabilities (
        id BIGSERIAL PRIMARY KEY,
        source VARCHAR(32) NOT NULL,
        vuln_id VARCHAR(64) NOT NULL,
        title TEXT,
        sub_title TEXT,
        description TEXT,
        detail TEXT,
        recommendation TEXT,
        "references" TEXT,
        credits TEXT,
        created TIMESTAMPTZ,
        published TIMESTAMPTZ,
        updated TIMESTAMPTZ,
        cwes INTEGER[] NOT NULL DEFAULT '{}',
        severity VARCHAR(16),
        cvss_v2_base_score DOUBLE PRECISION,
        cvss_v2_impact_sub_score DOUBLE PRECISION,
        cvss_v2_exploitability_sub_score DOUBLE PRECISION,
        cvss_v2_vector TEXT,
        cvss_v3_base_score DOUBLE PRECISION,
        cvss_v3_impact_sub_score DOUBLE PRECISION,
        cvss_v3_exploitability_sub_score DOUBLE PRECISION,
        cvss_v3_vector TEXT,
        owasp_rr_likelihood_score DOUBLE PRECISION,
        owasp_rr_technical_impact_score DOUBLE PRECISION,
        owasp_rr_business_impact_score DOUBLE PRECISION,
        owasp_rr_vector TEXT,
        vulnerable_versions TEXT,
        patched_versions TEXT,
        epss_score DOUBLE PRECISION,
        epss_percentile DOUBLE PRECISION,
        UNIQUE (source, vuln_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS affected_software (
        id BIGSERIAL PRIMARY KEY,
        cpe23 TEXT,
        part VARCHAR(8),
        vendor TEXT,
        product TEXT,
        version TEXT,
        update TEXT,
        edition TEXT,
        language TEXT,
        sw_edition TEXT,
        target_sw TEXT,
        target_hw TEXT,
        other TEXT,
        version_start_including TEXT,
        version_start_excluding TEXT,
        version_end_including TEXT,
        version_end_excluding TEXT,
        vulnerable BOOLEAN NOT NULL DEFAULT true
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_affected_software_cpe23
        ON affected_software (cpe23)
    """,
    """
    CREATE TABLE IF NOT EXISTS vulnerability_affected_software (
        vulnerability_id BIGINT NOT NULL REFERENCES vulnerabilities(id) ON DELETE CASCADE,
        affected_software_id BIGINT NOT NULL REFERENCES affected_software(id) ON DELETE CASCADE,
        PRIMARY KEY (vulnerability_id, affected_software_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS affected_version_attributions (
        id BIGSERIAL PRIMARY KEY,
        vulnerability_id BIGINT NOT NULL REFERENCES vulnerabilities(id) ON DELETE CASCADE,
        affected_software_id BIGINT NOT NULL REFERENCES affected_software(id) ON DELETE CASCADE,
        source VARCHAR(32) NOT NULL,
        first_seen TIMESTAMPTZ NOT NULL,
        last_seen TIMESTAMPTZ NOT NULL,
        UNIQUE (vulnerability_id, affected_software_id, source)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS config_properties (
        group_name VARCHAR(255) NOT NULL,
        property_name VARCHAR(255) NOT NULL,
        property_value TEXT,
        PRIMARY KEY (group_name, property_name)
    )
    """,
]
