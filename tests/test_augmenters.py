"""Tests for the augmentation adapters: LLM path, fallback path and failure routing."""

import asyncio

import httpx
import pytest

from neuro_discharge.augmenters import ComplicationDetector, ConsultantParser, NarrativeSynthesizer
from neuro_discharge.augmenters.consultant_parser import find_service_sections
from neuro_discharge.augmenters.narrative_synthesizer import basic_hospital_course
from neuro_discharge.clients.llm_client import LLMClient
from neuro_discharge.note_detector import detect_note_types
from neuro_discharge.schemas import Complication, ExtractedRecord, NoteBundle

CONSULT_NOTES = """Infectious Disease Consultation 12/14/2024
Recommendations:
- Vancomycin 1 g IV q12h for 6 weeks
- Weekly CBC and CRP
- Follow up in ID clinic in 2 weeks

Cardiology Consultation
- Metoprolol 25 mg BID
"""


@pytest.fixture
def bundle(segmented_notes):
    return detect_note_types(segmented_notes)


class TestFailureRouting:
    """Every failure ends in the fallback, with the reason on the result."""

    def test_unconfigured_client_uses_fallback(self, bundle, unconfigured_client):
        result = asyncio.run(ComplicationDetector(client=unconfigured_client).augment(bundle, ExtractedRecord()))
        assert result.source == "fallback"
        assert result.error == "LLM not configured"

    def test_http_error(self, bundle, make_client, llm_calls):
        client = make_client({"complications": httpx.Response(500, text="overloaded")})
        result = asyncio.run(ComplicationDetector(client=client).augment(bundle, ExtractedRecord()))
        assert result.source == "fallback"
        assert "HTTP 500" in result.error
        assert llm_calls == ["complications"]

    def test_unparseable_reply(self, bundle, make_client):
        client = make_client({"complications": "I could not find any complications worth noting"})
        result = asyncio.run(ComplicationDetector(client=client).augment(bundle, ExtractedRecord()))
        assert result.source == "fallback"
        assert result.error.startswith("unparseable response")

    def test_schema_violation(self, bundle, make_client):
        client = make_client({"complications": {"complications": "oops"}})
        result = asyncio.run(ComplicationDetector(client=client).augment(bundle, ExtractedRecord()))
        assert result.source == "fallback"
        assert result.error.startswith("schema violation")

    def test_timeout(self, bundle, anthropic_config):
        async def slow(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"content": [{"type": "text", "text": "{}"}]})

        client = LLMClient(anthropic_config, transport=httpx.MockTransport(slow))
        detector = ComplicationDetector(client=client, timeout=0.01)
        result = asyncio.run(detector.augment(bundle, ExtractedRecord()))
        assert result.source == "fallback"
        assert result.error == "timed out after 0.01s"
        # The fallback still did its job
        assert result.payload.hasComplications

    def test_timeout_defaults_to_client_setting(self, anthropic_config):
        assert ComplicationDetector(client=LLMClient(anthropic_config)).timeout == anthropic_config.request_timeout


class TestComplicationDetector:
    def test_llm_reply_count_is_recomputed(self, bundle, make_client):
        result = asyncio.run(ComplicationDetector(client=make_client()).augment(bundle, ExtractedRecord()))
        assert result.source == "llm"
        assert result.error is None
        assert result.payload.complicationCount == 1
        assert result.payload.hasComplications is True
        assert result.payload.complications[0].specific == "breakthrough seizure"

    def test_bare_list_reply_is_accepted(self, bundle, make_client):
        client = make_client({"complications": [{"type": "csf_leak", "specific": "CSF leak"}]})
        result = asyncio.run(ComplicationDetector(client=client).augment(bundle, ExtractedRecord()))
        assert result.source == "llm"
        assert result.payload.complicationCount == 1

    def test_fallback_first_match_per_family(self, bundle):
        report = ComplicationDetector().fallback(bundle, ExtractedRecord())
        assert [(c.type, c.specific) for c in report.complications] == [
            ("seizure", "seizure"), ("deficit", "weakness"),
        ]
        seizure = report.complications[0]
        assert seizure.status == "documented"
        assert "seizure" in seizure.context
        assert "\n" not in seizure.context

    def test_fallback_with_nothing_found(self):
        report = ComplicationDetector().fallback(NoteBundle(final="Uneventful stay, discharged home"), ExtractedRecord())
        assert report.complications == []
        assert report.hasComplications is False
        assert report.complicationCount == 0

    def test_dvt_abbreviation_is_case_sensitive(self):
        report = ComplicationDetector().fallback(NoteBundle(final="Developed left leg DVT"), ExtractedRecord())
        assert [c.type for c in report.complications] == ["dvt_pe"]
        quiet = ComplicationDetector().fallback(NoteBundle(final="ambulating at pe session"), ExtractedRecord())
        assert quiet.complications == []

    @pytest.mark.parametrize("text", [
        "PE: alert and oriented x3, moves all extremities",
        "PE : no acute distress",
        "Started on heparin for DVT prophylaxis",
        "Lovenox 40 mg daily for DVT/PE prophylaxis",
        "SCDs for DVT ppx",
    ])
    def test_exam_headers_and_prophylaxis_are_not_dvt_pe(self, text):
        report = ComplicationDetector().fallback(NoteBundle(final=text), ExtractedRecord())
        assert report.complications == []

    def test_real_pe_found_after_prophylaxis_order(self):
        text = "PE: nonfocal\nOn DVT prophylaxis\nPOD 3 CTA showed a PE, started heparin drip"
        report = ComplicationDetector().fallback(NoteBundle(final=text), ExtractedRecord())
        assert [(c.type, c.specific) for c in report.complications] == [("dvt_pe", "PE")]
        assert "CTA" in report.complications[0].context


class TestConsultantParser:
    def test_skipped_without_consultant_text(self, make_client, llm_calls):
        result = asyncio.run(ConsultantParser(client=make_client()).augment(NoteBundle(admission="H&P"), ExtractedRecord()))
        assert result.source == "skipped"
        assert result.payload.consultants == []
        assert llm_calls == []

    def test_fallback_result_also_skips(self):
        result = ConsultantParser().fallback_result(NoteBundle(admission="H&P"), ExtractedRecord())
        assert result.source == "skipped"

    def test_sections_run_to_next_service(self):
        sections = find_service_sections(CONSULT_NOTES)
        assert [s for s, _ in sections] == ["Infectious Disease", "Cardiology"]
        assert "Metoprolol" not in sections[0][1]

    def test_fallback_parses_each_service(self):
        report = ConsultantParser().fallback(NoteBundle(consultant=CONSULT_NOTES), ExtractedRecord())
        assert report.count == 2

        infectious, cardiology = report.consultants
        assert infectious.service == "Infectious Disease"
        assert infectious.date == "12/14/2024"
        assert infectious.duration == "6 weeks"
        assert infectious.followUp == "Follow up in ID clinic in 2 weeks"
        assert infectious.medications == ["Vancomycin 1 g IV q12h for 6 weeks"]
        assert len(infectious.recommendations) == 3

        assert cardiology.recommendations == ["Metoprolol 25 mg BID"]
        assert report.recommendations[0] == "Infectious Disease: Vancomycin 1 g IV q12h for 6 weeks"

    def test_service_without_bullets_is_dropped(self):
        report = ConsultantParser().fallback(NoteBundle(consultant="Neurology consult: EEG pending."), ExtractedRecord())
        assert report.consultants == []

    def test_llm_reply(self, bundle, make_client):
        result = asyncio.run(ConsultantParser(client=make_client()).augment(bundle, ExtractedRecord()))
        assert result.source == "llm"
        assert result.payload.recommendations == ["Cardiology: Continue metoprolol"]
        assert result.payload.count == 1


class TestNarrativeSynthesizer:
    def test_fallback_reuses_baseline(self):
        baseline = ExtractedRecord(
            admittingDiagnosis="Meningioma",
            procedures=["Right frontal craniotomy"],
            postOpProgress=["POD 1: stable"],
            dischargeExam="Nonfocal",
        )
        narrative = NarrativeSynthesizer().fallback(NoteBundle(), baseline)
        assert narrative.historyPresenting == "Patient admitted with Meningioma."
        assert narrative.hospitalCourse == (
            "Patient admitted with Meningioma. Underwent Right frontal craniotomy. "
            "Patient progressed through recovery as documented in progress notes."
        )
        assert narrative.postOpProgress == ["POD 1: stable"]
        assert narrative.currentStatus == "Nonfocal"

    def test_fallback_on_empty_baseline_is_empty(self):
        narrative = NarrativeSynthesizer().fallback(NoteBundle(), ExtractedRecord())
        assert narrative.historyPresenting == ""
        assert narrative.hospitalCourse == ""
        assert narrative.currentStatus == ""

    def test_basic_course_mentions_complications(self):
        record = ExtractedRecord(complications=[Complication(type="seizure", specific="focal seizure")])
        assert "Complications: focal seizure." in basic_hospital_course(record)

    def test_prompt_carries_baseline_fields(self, bundle):
        prompt = NarrativeSynthesizer().build_prompt(bundle, ExtractedRecord(admittingDiagnosis="Meningioma"))
        assert '"admittingDiagnosis": "Meningioma"' in prompt
        assert '"mrn"' not in prompt

    def test_llm_progress_string_is_split(self, bundle, make_client):
        result = asyncio.run(NarrativeSynthesizer(client=make_client()).augment(bundle, ExtractedRecord()))
        assert result.source == "llm"
        assert result.payload.postOpProgress == ["POD 1: stable.", "POD 2: walking."]
        assert result.payload.currentStatus == "LLM current status."
