# compliance_engine/baseline.py
# ------------------------------------------------------------
# Static baseline document checklists per visa type.
# Used when the rule engine cannot produce a result (fallback) and,
# optionally, to pad an empty rule-engine result (hybrid).
# ------------------------------------------------------------

import datetime as dt
from typing import Any, Dict, List, Optional

BASELINE_CHECKLISTS: Dict[str, List[Dict[str, Any]]] = {
    "F1": [
        {"id": "f1-passport", "title": "Valid Passport",
         "description": "Passport must be valid for at least 6 months beyond your intended period of stay",
         "category": "immigration", "priority": "high"},
        {"id": "f1-visa", "title": "F-1 Visa",
         "description": "Valid F-1 visa stamp in passport",
         "category": "immigration", "priority": "high"},
        {"id": "f1-i94", "title": "I-94 Arrival Record",
         "description": "Most recent electronic I-94 record showing F-1 status",
         "category": "immigration", "priority": "high"},
        {"id": "f1-i20", "title": "Current I-20",
         "description": "Form I-20 with valid travel signature (signed within last 12 months)",
         "category": "immigration", "priority": "high", "recurringInterval": "yearly"},
        {"id": "f1-sevis-receipt", "title": "SEVIS Fee Receipt",
         "description": "Proof of payment for SEVIS I-901 fee",
         "category": "immigration", "priority": "medium"},
        {"id": "f1-admission-letter", "title": "University Admission Letter",
         "description": "Official admission letter from your educational institution",
         "category": "academic", "priority": "medium"},
    ],
    "OPT": [
        {"id": "opt-i20", "title": "OPT I-20",
         "description": "Form I-20 with OPT recommendation from DSO",
         "category": "immigration", "priority": "high"},
        {"id": "opt-ead", "title": "OPT EAD Card",
         "description": "Employment Authorization Document for OPT",
         "category": "employment", "priority": "high"},
        {"id": "opt-employer-letter", "title": "Employer Letter",
         "description": "Letter from employer confirming employment related to field of study",
         "category": "employment", "priority": "high"},
        {"id": "opt-sevp-portal", "title": "SEVP Portal Registration",
         "description": "Confirmation of SEVP Portal account setup",
         "category": "immigration", "priority": "medium"},
    ],
    "STEM_OPT": [
        {"id": "stem-i20", "title": "STEM OPT I-20",
         "description": "Form I-20 with STEM OPT recommendation from DSO",
         "category": "immigration", "priority": "high"},
        {"id": "stem-i983", "title": "Form I-983 Training Plan",
         "description": "Completed and signed Form I-983 training plan",
         "category": "employment", "priority": "high"},
        {"id": "stem-ead", "title": "STEM OPT EAD Card",
         "description": "Employment Authorization Document for STEM OPT extension",
         "category": "employment", "priority": "high"},
        {"id": "stem-employer-letter", "title": "Employer Letter",
         "description": "Letter from E-Verify employer confirming employment related to STEM field",
         "category": "employment", "priority": "high"},
        {"id": "stem-eval-12", "title": "12-Month Self-Evaluation",
         "description": "Mandatory 12-month self-evaluation for STEM OPT",
         "category": "employment", "priority": "medium", "recurringInterval": "yearly"},
        {"id": "stem-eval-24", "title": "24-Month Final Evaluation",
         "description": "Final evaluation at the conclusion of STEM OPT period",
         "category": "employment", "priority": "medium"},
    ],
    "J1": [
        {"id": "j1-ds2019", "title": "Form DS-2019",
         "description": "Certificate of Eligibility for Exchange Visitor (J-1) Status",
         "category": "immigration", "priority": "high"},
        {"id": "j1-sponsor-letter", "title": "Sponsor Letter",
         "description": "Official letter from your J-1 sponsor organization",
         "category": "immigration", "priority": "medium"},
        {"id": "j1-funding", "title": "Proof of Funding",
         "description": "Documentation showing sufficient financial resources",
         "category": "financial", "priority": "high"},
        {"id": "j1-insurance", "title": "Health Insurance",
         "description": "Proof of health insurance meeting J-1 requirements",
         "category": "personal", "priority": "high", "recurringInterval": "yearly"},
    ],
    "H1B": [
        {"id": "h1b-i797", "title": "Form I-797 Approval Notice",
         "description": "H-1B petition approval notice from USCIS",
         "category": "immigration", "priority": "high"},
        {"id": "h1b-i94", "title": "H-1B I-94",
         "description": "Most recent I-94 showing H-1B status",
         "category": "immigration", "priority": "high"},
        {"id": "h1b-employer-letter", "title": "Employer Support Letter",
         "description": "Letter from employer confirming current H-1B employment",
         "category": "employment", "priority": "high"},
        {"id": "h1b-resume", "title": "Updated Resume/CV",
         "description": "Current resume showing qualifications for specialty occupation",
         "category": "employment", "priority": "medium"},
    ],
}

# days from today by priority; recurring items always get 30
BASELINE_DUE_DAYS = {"high": 7, "medium": 30, "low": 90}
RECURRING_DUE_DAYS = 30


def _key(value: Optional[str]) -> str:
    return (value or "").strip().upper().replace(" ", "_").replace("-", "_")


def get_baseline_checklist(visa_type: Optional[str], phase: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    F1 always gets the F1 list; an OPT phase adds the OPT list, a STEM OPT
    phase adds both OPT and STEM OPT. Other visa types get their own list.
    """
    visa = _key(visa_type)
    if not visa:
        return []
    if visa == "F1":
        items = [dict(i, phase="F1") for i in BASELINE_CHECKLISTS["F1"]]
        stage = _key(phase)
        if stage in ("OPT", "OPT_ACTIVE"):
            items += [dict(i, phase="OPT") for i in BASELINE_CHECKLISTS["OPT"]]
        elif stage in ("STEM_OPT", "STEM_ACTIVE"):
            items += [dict(i, phase="OPT") for i in BASELINE_CHECKLISTS["OPT"]]
            items += [dict(i, phase="STEM_OPT") for i in BASELINE_CHECKLISTS["STEM_OPT"]]
        return items
    return [dict(i, phase=visa) for i in BASELINE_CHECKLISTS.get(visa, [])]


def baseline_to_tasks(items: List[Dict[str, Any]], today: dt.date,
                      now: Optional[dt.datetime] = None) -> List[Dict[str, Any]]:
    stamp = now or dt.datetime.now(dt.timezone.utc)
    tasks = []
    for item in items:
        recurring = bool(item.get("recurringInterval"))
        days = RECURRING_DUE_DAYS if recurring else BASELINE_DUE_DAYS.get(item["priority"], 30)
        tasks.append({
            "id": item["id"],
            "title": item["title"],
            "description": item["description"],
            "dueDate": today + dt.timedelta(days=days),
            "completed": False,
            "category": item["category"],
            "phase": item["phase"],
            "priority": item["priority"],
            "createdAt": stamp,
            "updatedAt": stamp,
            "ruleId": None,
            "dependsOn": [],
            "tags": ["baseline"],
            "isRecurring": recurring,
            "recurringInterval": item.get("recurringInterval"),
            "source": "baseline",
        })
    return tasks
