import re
from dataclasses import dataclass, field
from typing import Iterable


def match_any_keyword(text: str, keywords: Iterable[str]) -> bool:
    """Check if any keyword appears in text as a whole word (not substring)."""
    lower = text.lower()
    return any(re.search(rf"\b{re.escape(kw)}\b", lower) for kw in keywords)


def matched_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    lower = text.lower()
    return [kw for kw in keywords if re.search(rf"\b{re.escape(kw)}\b", lower)]


HAZARD_KEYWORDS = (
    "gas", "smell gas", "fumes", "carbon monoxide",            # Gas
    "crackling", "sparking", "burning smell", "smoke",         # Electrical
    "structural", "foundation", "subsidence", "collapse",      # Structural
    "mold", "mould", "damp", "leak behind wall",               # Diagnostic heavy
)

COMPLEX_JOB_KEYWORDS = (
    "renovation", "refurbishment", "entire house", "office floor",
    "building site", "extension", "commercial",
)

ELDERLY_KEYWORDS = ("elderly", "80 years old", "pensioner")

TECH_AVERSE_KEYWORDS = (
    "no smartphone", "don't have a smartphone", "landline",
    "can't use whatsapp", "too old for technology", "just come round",
)

COMMERCIAL_LEAD_TYPES = {"commercial", "property manager"}

PROPERTY_MANAGER_KEYWORDS = (
    "property manager", "landlord", "i manage", "managing properties",
    "rental property", "tenant", "property management",
    "calling on behalf", "letting agent",
)

# Checked against the raw, unsplit call text. The splitter can sanitize a
# hazard away ("I smell gas" -> "Check gas supply").
GLOBAL_SAFETY_KEYWORDS = (
    "gas", "smell gas", "fumes", "carbon monoxide",
    "crackling", "sparking", "burning", "smoke",
    "foundation", "subsidence", "collapse",
    "mold", "mould", "damp", "leak behind wall",
    "commercial", "office floor",
)


@dataclass
class RiskAssessment:
    hazards: list[str] = field(default_factory=list)
    complex_job: list[str] = field(default_factory=list)
    is_commercial: bool = False
    is_elderly: bool = False
    is_tech_averse: bool = False
    lead_type: str = ""

    @property
    def flagged(self) -> bool:
        return bool(
            self.hazards or self.complex_job or self.is_commercial
            or self.is_elderly or self.is_tech_averse
        )

    @property
    def rationale(self) -> str:
        if self.hazards:
            reason = f"Safety hazard mentioned ({', '.join(self.hazards)})"
        elif self.is_commercial:
            reason = f"Client type is {self.lead_type or 'Commercial'}"
        elif self.is_elderly:
            reason = "Elderly client/High-touch required"
        elif self.is_tech_averse:
            reason = "User flagged as tech-averse"
        elif self.complex_job:
            reason = f"Complex/High-touch job detected ({', '.join(self.complex_job)})"
        else:
            return ""
        return f"{reason} - Recommending Paid Site Visit"


def is_commercial_lead(lead_type: str | None) -> bool:
    return bool(lead_type) and lead_type.strip().lower() in COMMERCIAL_LEAD_TYPES


def assess_risk(
    text: str,
    history: Iterable[str] = (),
    lead_type: str | None = None,
    is_elderly: bool = False,
    is_commercial: bool = False,
) -> RiskAssessment:
    """Look for conditions that need human judgement before any remote pricing."""
    combined = " ".join([*history, text])
    return RiskAssessment(
        hazards=matched_keywords(combined, HAZARD_KEYWORDS),
        complex_job=matched_keywords(combined, COMPLEX_JOB_KEYWORDS),
        is_commercial=is_commercial or is_commercial_lead(lead_type),
        is_elderly=is_elderly or match_any_keyword(combined, ELDERLY_KEYWORDS),
        is_tech_averse=match_any_keyword(combined, TECH_AVERSE_KEYWORDS),
        lead_type=lead_type or "",
    )


def has_global_safety_risk(text: str) -> bool:
    return match_any_keyword(text, GLOBAL_SAFETY_KEYWORDS)


def detect_property_manager(text: str) -> bool:
    return match_any_keyword(text, PROPERTY_MANAGER_KEYWORDS)
