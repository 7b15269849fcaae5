# app/intake/prompts.py
"""
System prompts and fixed user-facing messages for the intake stages.
"""
from app.intake.stages import Dimension

COMPLETION_MARKER = "COMPLETE: "

FOCUS_REQUIREMENTS = {
    Dimension.ONSET: "When and how the symptoms started (timing and circumstances of initial occurrence)",
    Dimension.PROVOCATION: "What makes the symptoms better or worse (aggravating and alleviating factors)",
    Dimension.QUALITY: "The nature and characteristics of the symptoms (description of how it feels)",
    Dimension.RADIATION: "Whether and where the symptoms spread to other areas",
    Dimension.SEVERITY: "The intensity of symptoms on a scale of 1-10",
    Dimension.TIMING: "How long symptoms last and any patterns in their occurrence",
}


def opqrst_interview_prompt(focus: Dimension) -> str:
    name = focus.value
    return (
        "You are conducting an OPQRST medical interview.\n"
        f"Focus on gathering information about: {name}\n\n"
        f"For {name}, we need to know:\n"
        f"{FOCUS_REQUIREMENTS[focus]}\n\n"
        "Review the conversation history carefully.\n"
        f"If you have sufficient information about {name}, respond with:\n"
        f'"{COMPLETION_MARKER}[summary of {name} information]"\n\n'
        f"If you need more specific information about {name}, ask a focused question.\n"
        "Do not ask about other aspects of OPQRST at this time.\n"
        "Keep your response conversational but professional."
    )


TRIAGE_PROMPT = """Assess the medical situation using standard triage criteria:
EMERGENCY (immediate attention needed):
- Life-threatening conditions
- Severe chest pain, difficulty breathing
- Chest pain radiating to the arm, shoulder or jaw
- Stroke symptoms
- Severe trauma

URGENT (same day, within 24 hours):
- Moderate trauma
- Persistent fever
- Severe pain
- Worsening chronic conditions

NON_URGENT (within 72 hours):
- Minor injuries
- Mild symptoms
- Routine follow-up

SELF_CARE:
- Minor cold symptoms
- Simple first aid
- General wellness

Pick exactly one label. When in doubt between two labels, pick the more urgent one.
Return ONLY a JSON object of the form:
{"decision": "EMERGENCY" | "URGENT" | "NON_URGENT" | "SELF_CARE",
 "confidence": number between 0 and 1,
 "reasoning": "short explanation addressed to the patient"}"""


EXTRACTION_SCHEMA = """
{
  "chief_complaint": string or null,
  "opqrst": {
    "onset": string or null,
    "provocation": string or null,
    "quality": string or null,
    "radiation": string or null,
    "severity": string or null,
    "timing": string or null
  },
  "symptoms": [
    {
      "name": string,
      "onset": string or null,
      "location": string or null,
      "character": string or null,
      "severity": string or null,
      "aggravating_factors": string or null,
      "relieving_factors": string or null,
      "associated_symptoms": [string, ...]
    }
  ],
  "medications": [{"name": string, "dose": string or null, "frequency": string or null}],
  "allergies": [{"substance": string, "reaction": string or null}],
  "past_medical_history": [string, ...],
  "red_flags": [string, ...],
  "other_notes": string or null
}
"""

EXTRACTION_PROMPT = (
    "You are a medical scribe tasked with creating a structured summary of a "
    "patient conversation.\n"
    "Extract the present illness, the OPQRST details, red flags or urgent "
    "concerns, previous treatments and relevant medical history.\n\n"
    "Do NOT invent details that are not clearly implied. "
    "Leave fields null or empty lists if information is missing.\n\n"
    "You must return a single JSON object with the following structure:\n"
    f"{EXTRACTION_SCHEMA}\n"
    "Return ONLY the JSON object, with no additional commentary."
)

CASE_TITLE_PROMPT = (
    "Write a clear, concise case title (5 to 100 characters) that captures the "
    "patient's chief complaint, e.g. 'Sudden chest pain radiating to left shoulder'. "
    "Return ONLY the title text."
)

EMERGENCY_BANNER = "⚠️ EMERGENCY situation detected. Please review immediately."
EXTRACTION_DONE_MESSAGE = "Medical data extracted and structured."
PREPARE_CASE_MESSAGE = "Please review and approve the case creation"
DEFAULT_CASE_TITLE = "Medical Consultation"

# Shown to the patient instead of any internal error text
RETRY_MESSAGE = (
    "I apologize, but I encountered an error processing your message. "
    "Please try again."
)
OPERATOR_ERROR_MESSAGE = (
    "We could not continue this conversation automatically. "
    "A member of staff has been asked to review it."
)
