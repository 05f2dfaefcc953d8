"""Scoring criteria of the investigation agents.

Each table maps a criterion name to its weight and the metric names that
feed it.  Weights are relative; the Metric Scorer normalizes them over the
criteria that actually have data.
"""

from __future__ import annotations

from due_diligence.services.scoring import criteria_from_mapping

FINANCIAL_AUDITOR = criteria_from_mapping({
    "Data Transparency": {
        "weight": 25,
        "metrics": ["arr", "mrr", "revenue", "gross_margin", "monthly_burn", "cash_on_hand"],
    },
    "Metrics Health": {
        "weight": 25,
        "metrics": ["arr_growth_yoy", "nrr", "gross_retention", "burn_multiple"],
    },
    "Valuation Rationality": {
        "weight": 20,
        "metrics": ["valuation_multiple", "implied_multiple"],
    },
    "Unit Economics Viability": {
        "weight": 15,
        "metrics": ["ltv_cac_ratio", "cac_payback_months", "ltv", "cac"],
    },
    "Burn Efficiency": {
        "weight": 15,
        "metrics": ["burn_multiple", "runway_months", "monthly_burn"],
    },
})

TEAM_INVESTIGATOR = criteria_from_mapping({
    "Domain Expertise": {
        "weight": 25,
        "metrics": ["domain_expertise", "relevant_industry_years"],
    },
    "Entrepreneurial Track": {
        "weight": 25,
        "metrics": ["entrepreneurial_experience", "successful_exits", "total_ventures"],
    },
    "Execution Capability": {
        "weight": 20,
        "metrics": ["execution_capability", "team_completeness"],
    },
    "Network & Ecosystem": {
        "weight": 15,
        "metrics": ["network_strength", "linkedin_verified_ratio"],
    },
    "Team Cohesion": {
        "weight": 15,
        "metrics": ["team_cohesion", "complementarity"],
    },
})

COMPETITIVE_INTEL = criteria_from_mapping({
    "Competitive Position": {"weight": 30, "metrics": ["moat_strength", "differentiation_score"]},
    "Market Structure": {"weight": 20, "metrics": ["entry_barriers", "market_concentration"]},
    "Threat Level": {"weight": 25, "metrics": ["direct_threat_level", "competitive_density"]},
    "Competitive Awareness": {
        "weight": 25,
        "metrics": ["competitors_missed_in_deck", "competitive_transparency"],
    },
})

MARKET_INTELLIGENCE = criteria_from_mapping({
    "Market Size Validation": {
        "weight": 25,
        "metrics": ["tam_validation", "sam_validation", "som_validation"],
    },
    "Growth Dynamics": {"weight": 25, "metrics": ["market_cagr", "funding_trend"]},
    "Market Timing": {"weight": 25, "metrics": ["timing_score", "adoption_stage"]},
    "Data Credibility": {"weight": 25, "metrics": ["discrepancy_level", "source_quality"]},
})

DECK_FORENSICS = criteria_from_mapping({
    "Narrative Coherence": {"weight": 25, "metrics": ["story_coherence", "credibility_assessment"]},
    "Claim Verification": {
        "weight": 30,
        "metrics": ["claims_verified_ratio", "claims_contradicted_count"],
    },
    "Deck Quality": {
        "weight": 20,
        "metrics": ["professionalism_score", "completeness_score", "transparency_score"],
    },
    "Consistency": {"weight": 25, "metrics": ["inconsistency_count", "inconsistency_severity"]},
})

LEGAL_REGULATORY = criteria_from_mapping({
    "Legal Structure": {
        "weight": 25,
        "metrics": ["structure_appropriateness", "vesting_status", "shareholder_agreement"],
    },
    "Compliance Status": {
        "weight": 30,
        "metrics": ["compliance_score", "gaps_count", "compliance_coverage"],
    },
    "IP Protection": {"weight": 25, "metrics": ["ip_protection_score", "ip_ownership_clarity"]},
    "Regulatory Risk": {"weight": 20, "metrics": ["regulatory_risk_level", "litigation_risk"]},
})

TECHNICAL_DD = criteria_from_mapping({
    "Product Maturity": {"weight": 30, "metrics": ["product_maturity_score", "product_stability"]},
    "Stack Quality": {
        "weight": 25,
        "metrics": ["stack_modernity", "stack_adequacy", "stack_maturity"],
    },
    "Scalability": {
        "weight": 25,
        "metrics": ["scalability_score", "architecture_quality", "bottleneck_risk"],
    },
    "Security Posture": {"weight": 20, "metrics": ["security_score", "security_compliance"]},
})

CAP_TABLE_AUDITOR = criteria_from_mapping({
    "Ownership Structure": {
        "weight": 25,
        "metrics": ["founder_ownership", "checksum_valid", "ownership_clarity"],
    },
    "Dilution Protection": {
        "weight": 30,
        "metrics": ["dilution_projection", "anti_dilution_terms", "esop_adequacy"],
    },
    "Terms Fairness": {
        "weight": 25,
        "metrics": ["terms_fairness", "preferential_rights", "governance_balance"],
    },
    "Investor Alignment": {
        "weight": 20,
        "metrics": ["investor_quality", "pro_rata_coverage", "follow_on_capacity"],
    },
})

CUSTOMER_INTEL = criteria_from_mapping({
    "Customer Quality": {"weight": 25, "metrics": ["customer_quality_score", "icp_clarity"]},
    "Retention Health": {
        "weight": 30,
        "metrics": ["nrr_customers", "churn_rate", "gross_retention_customers"],
    },
    "PMF Signals": {"weight": 25, "metrics": ["pmf_score", "pmf_evidence_count"]},
    "Concentration Risk": {
        "weight": 20,
        "metrics": ["concentration_risk", "top_customer_revenue_pct"],
    },
})

EXIT_STRATEGIST = criteria_from_mapping({
    "Exit Viability": {"weight": 30, "metrics": ["exit_viability_score", "scenario_count"]},
    "Return Potential": {"weight": 25, "metrics": ["expected_multiple", "irr_best_case"]},
    "Liquidity Risk": {"weight": 25, "metrics": ["liquidity_risk_score", "time_to_liquidity"]},
    "Comparable Quality": {
        "weight": 20,
        "metrics": ["comparable_exits_count", "comparable_relevance"],
    },
})

GTM_ANALYST = criteria_from_mapping({
    "Channel Effectiveness": {
        "weight": 30,
        "metrics": ["channel_effectiveness", "primary_channel_efficiency"],
    },
    "Sales Economics": {
        "weight": 25,
        "metrics": ["cac_efficiency", "cac_payback_gtm", "ltv_cac_gtm"],
    },
    "GTM Scalability": {"weight": 25, "metrics": ["gtm_scalability", "channel_diversification"]},
    "Execution Quality": {"weight": 20, "metrics": ["gtm_execution_score", "motion_clarity"]},
})

QUESTION_MASTER = criteria_from_mapping({
    "Questions Relevance": {
        "weight": 30,
        "metrics": ["questions_relevance", "critical_questions_count"],
    },
    "DD Completeness": {"weight": 25, "metrics": ["dd_completeness", "checklist_coverage"]},
    "Negotiation Leverage": {
        "weight": 20,
        "metrics": ["negotiation_leverage", "leverage_points_count"],
    },
    "Risk Identification": {"weight": 15, "metrics": ["dealbreakers_identified", "risk_coverage"]},
    "Actionability": {"weight": 10, "metrics": ["actionability_score"]},
})

BY_AGENT = {
    "financial-auditor": FINANCIAL_AUDITOR,
    "team-investigator": TEAM_INVESTIGATOR,
    "competitive-intel": COMPETITIVE_INTEL,
    "market-intelligence": MARKET_INTELLIGENCE,
    "deck-forensics": DECK_FORENSICS,
    "legal-regulatory": LEGAL_REGULATORY,
    "technical-dd": TECHNICAL_DD,
    "cap-table-auditor": CAP_TABLE_AUDITOR,
    "customer-intel": CUSTOMER_INTEL,
    "exit-strategist": EXIT_STRATEGIST,
    "gtm-analyst": GTM_ANALYST,
    "question-master": QUESTION_MASTER,
}
