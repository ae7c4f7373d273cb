"""Shared sample notes and fixtures."""

import json

import httpx
import pytest
from fastapi import FastAPI

from neuro_discharge.clients.llm_client import LLMClient
from neuro_discharge.config import LLMConfig, LLMProvider
from neuro_discharge.telemetry import set_event_sink

SEGMENTED_NOTES = """ADMISSION H&P
Patient: John Smith
Age: 58
Sex: Male
MRN: 4417
Admission Date: 12/10/2024
Chief Complaint: Progressive headaches

HPI:
58 year old man with two weeks of progressive headaches and word-finding difficulty. MRI brain showed a left frontal enhancing mass.

Admitting Diagnosis: Left frontal glioblastoma

PMH:
Hypertension
Type 2 diabetes

PSH: Appendectomy

Allergies: NKDA

=====
OPERATIVE NOTE
Procedure Date: 12/11/2024
Post-Op Procedure(s) (LRB):
Left frontal craniotomy for tumor resection

=====
PROGRESS NOTE
POD 1: Awake and alert, following commands. Mild right arm weakness.
POD 2: Ambulating with physical therapy. Developed a seizure overnight, loaded with Keppra.
POD 3: No further seizures. Tolerating diet.

=====
Cardiology Consult 12/12/2024
Recommendations:
- Continue metoprolol 25 mg BID
- Follow up with cardiology in 4 weeks

=====
DISCHARGE SUMMARY
Discharge Date: 12/14/2024
Discharge Diagnosis: Glioblastoma, left frontal

Hospital Course:
Underwent uneventful left frontal craniotomy on 12/11/2024. Post-operative seizure on POD 2 was controlled with Keppra. Recovered well.

Discharge Exam: Awake, alert, oriented x3. Motor 5/5 throughout. Independent with ambulation.

Discharge Medications:
1. Keppra 500 mg BID
2. Dexamethasone 4 mg q6h
3. Acetaminophen 650 mg PRN

Disposition: Home
Follow-up:
Neurosurgery clinic in 2 weeks
Oncology referral
"""

# Single unified note with template boilerplate around the real procedure
UNIFIED_NOTE = """
Patient: Bryan Kay
Age: 83 yo
Sex: M

Reason for Admission: occasionally led to frustration on his part. He denies associated headaches, focal weakness, seizures, visual disturbances, dysphagia, or nausea and vomiting.

Admitting Diagnosis: Brain tumor

PMH:
Atrial fibrillation
Dyslipidemia
Hypertension
Type 2 DM
Parkinson's disease

Procedure: progress
Post-Op Procedure(s) (LRB):
Left Minicraniotomy, Open Biopsy of Tumor, Duraplasty, Image Guidance and Microscope (Left)

Discharge Diagnosis: tumor, glioma, seizures
"""

COMPLICATIONS_REPLY = {
    "complications": [{
        "type": "seizure",
        "specific": "breakthrough seizure",
        "onset": "POD 2",
        "severity": "mild",
        "treatment": "Keppra load",
        "status": "resolved",
    }],
    "hasComplications": True,
    "complicationCount": 5,
}

CONSULTANTS_REPLY = {
    "consultants": [{
        "service": "Cardiology",
        "date": "12/12/2024",
        "recommendations": ["Continue metoprolol"],
        "medications": ["Metoprolol 25 mg BID"],
        "followUp": "Cardiology in 4 weeks",
        "duration": "",
    }],
    "count": 1,
}

NARRATIVE_REPLY = {
    "historyPresenting": "LLM history of present illness.",
    "hospitalCourse": "LLM hospital course.",
    "postOpProgress": "POD 1: stable. POD 2: walking.",
    "majorEvents": ["Seizure on POD 2"],
    "currentStatus": "LLM current status.",
}


def anthropic_reply(payload) -> httpx.Response:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return httpx.Response(200, json={"content": [{"type": "text", "text": text}]})


def route_prompt(prompt: str) -> str:
    if "complications expert" in prompt:
        return "complications"
    if "parsing medical consultant notes" in prompt:
        return "consultants"
    return "narrative"


@pytest.fixture
def segmented_notes():
    return SEGMENTED_NOTES


@pytest.fixture
def unified_note():
    return UNIFIED_NOTE


@pytest.fixture
def anthropic_config():
    return LLMConfig(provider=LLMProvider.ANTHROPIC, api_keys={LLMProvider.ANTHROPIC: "test-key"})


@pytest.fixture
def unconfigured_client():
    return LLMClient(LLMConfig())


@pytest.fixture
def llm_calls():
    """Prompts seen by the mock provider, keyed by adapter."""
    return []


@pytest.fixture
def make_client(anthropic_config, llm_calls):
    """
    Build a configured client whose replies come from a per-adapter map.

    A reply may be a dict (sent as JSON text), a str (sent verbatim) or an
    httpx.Response (returned as-is).
    """
    def _make(replies=None, config=None):
        replies = replies or {
            "complications": COMPLICATIONS_REPLY,
            "consultants": CONSULTANTS_REPLY,
            "narrative": NARRATIVE_REPLY,
        }

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            adapter = route_prompt(body["messages"][0]["content"])
            llm_calls.append(adapter)
            reply = replies[adapter]
            if isinstance(reply, httpx.Response):
                return reply
            return anthropic_reply(reply)

        return LLMClient(config or anthropic_config, transport=httpx.MockTransport(handler))

    return _make


@pytest.fixture
def stage_events():
    events = []
    set_event_sink(events.append)
    yield events
    set_event_sink(None)


@pytest.fixture
def app():
    from neuro_discharge.api import router

    app = FastAPI()
    app.include_router(router)
    return app
