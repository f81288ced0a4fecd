from typing import Iterable, Optional, Sequence

from switchboard.catalog import CatalogItem

SPLIT_SYSTEM = "You are a job parser."

SPLIT_PROMPT = """Analyze this request: "{text}"
Break it down into individual distinct physical tasks.

Rules:
1. ONLY extract tasks that are EXPLICITLY mentioned.
2. Do NOT invent specific tasks (e.g. do not convert "lots of issues" into "fix socket").
3. If the request is vague or general (e.g. "I have a mess", "lots of problems"), return it as a single task using the original text.
4. Return JSON: {{ "tasks": [{{ "description": "string", "quantity": number }}] }}

Example 1: "Fix tap and hang 2 shelves" -> {{ "tasks": [{{ "description": "Fix tap", "quantity": 1 }}, {{ "description": "Hang shelves", "quantity": 2 }}] }}
Example 2: "I have a property with lots of issues" -> {{ "tasks": [{{ "description": "Property with lots of issues", "quantity": 1 }}] }}"""

CLASSIFY_SYSTEM = "You are a helpful handyman dispatcher."

CLASSIFY_PROMPT = """User Request: "{text}"

We are an odd-job service. Which of the following predefined services matches this request?
Candidates:
{candidates}

Rules:
- Return JSON {{ "matchedIndex": number | null, "confidence": number (0-100), "rationale": "string" }}
- If "Fixing a TV on wall" matches "TV Mounting", return high confidence and that index.
- If generic ("fix stuff"), return null."""

COMPLEXITY_PROMPT = """You are classifying a handyman job for routing. Analyze the job description and determine:

1. TRAFFIC LIGHT:
   - GREEN: Simple job, can quote instantly with standard pricing
   - AMBER: Needs video/photos to assess properly, likely quotable after seeing
   - RED: Complex/specialist work, needs site visit or specialist referral

2. RECOMMENDED ROUTE:
   - instant: Can give price now (green jobs)
   - video: Send video for assessment (amber jobs)
   - visit: Book diagnostic visit (complex amber/red jobs)
   - refer: Refer to specialist (red jobs requiring licensed trades)

3. COMPLEXITY SCORE (1-10):
   - 1-3: Simple, routine handyman tasks
   - 4-6: Moderate, may need assessment
   - 7-8: Complex, multi-step or technical
   - 9-10: Specialist trade required

4. SPECIALIST NEEDED:
   - true: Requires licensed contractor (gas, electrical, structural)
   - false: Within general handyman scope

RED FLAGS (always RED):
- Gas work (boilers, pipes, cookers)
- Full rewiring or new circuits
- Structural changes (load bearing walls, foundations)
- Asbestos or hazardous materials
- Major building works (extensions, conversions)

AMBER FLAGS (needs visual confirmation):
- Leak/water damage (could be minor tap or major pipe burst)
- Damp (could be condensation or structural issue)
- Unspecified damage or "not sure what's wrong"
- Multiple vague jobs

Return JSON:
{
  "trafficLight": "green" | "amber" | "red",
  "recommendedRoute": "instant" | "video" | "visit" | "refer",
  "complexityScore": 1-10,
  "needsSpecialist": boolean,
  "confidence": 0-100,
  "signals": ["signal1", "signal2"],
  "reasoning": "brief explanation"
}"""

METADATA_PROMPT = """You are an expert call analyzer. Extract structured data about the CUSTOMER calling for help.

Distinguish the agent answering the phone from the customer. Ignore names the agent gives for themselves.
If the customer calls for a company ("This is John from Acme Corp"), the name is "John" and the company is "Acme Corp".
If a name is spelled out letter by letter, reconstruct it. Fix phonetic postcode errors ("M 1" -> "M1").

Return ONLY valid JSON with these fields:
- nameCandidates: up to 3 objects {"name": string, "confidence": 0.0-1.0}, most likely first
- companyName: string or null
- address: full service address or null
- postcode: UK postcode or null
- urgency: "Critical" | "High" | "Standard" | "Low"
- leadType: "Homeowner" | "Landlord" | "Property Manager" | "Tenant" | "Commercial" | "Unknown"

Do not guess or fabricate values."""


def build_split_prompt(text: str) -> str:
    return SPLIT_PROMPT.format(text=text)


def build_classify_prompt(text: str, candidates: Sequence[CatalogItem]) -> str:
    lines = "\n".join(
        f"{i}. [{c.code}] {c.name} - {c.description}" for i, c in enumerate(candidates)
    )
    return CLASSIFY_PROMPT.format(text=text, candidates=lines)


def build_complexity_input(
    description: str,
    sku_name: Optional[str] = None,
    other_jobs: Iterable[str] = (),
) -> str:
    """Job description plus whatever call context helps the model judge it."""
    parts = [f"JOB DESCRIPTION:\n{description}"]
    if sku_name:
        parts.append(f'[Note: This job matched to SKU "{sku_name}" but needs complexity verification]')
    others = list(other_jobs)
    if others:
        parts.append(f"[Other jobs in this call: {', '.join(others)}]")
    return "\n\n".join(parts)
