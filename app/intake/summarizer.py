# app/intake/summarizer.py
from __future__ import annotations

import logging
from typing import List, Sequence

from pydantic import ValidationError

from app.errors import CollaboratorError
from app.intake.prompts import EXTRACTION_PROMPT
from app.intake.schema import StructuredIntakeModel
from app.intake.state import MedicalData, Turn
from app.llm import LLMClient

logger = logging.getLogger(__name__)


def build_transcript_text(messages: Sequence[Turn]) -> str:
    """
    Build a plain text transcript like:

      assistant: ...
      user: ...

    System turns are left out; they never come from the patient.
    """
    lines: List[str] = []
    for turn in messages:
        if turn.role == "system":
            continue
        lines.append(f"{turn.role}: {turn.content}")
    return "\n".join(lines)


def extract_medical_data(llm_client: LLMClient, messages: Sequence[Turn]) -> MedicalData:
    """
    Use the LLM to turn the whole conversation into a StructuredIntakeModel.

    Any failure propagates as CollaboratorError: the extraction stage must
    not be marked done with a made-up payload.
    """
    data_dict = llm_client.complete_json(EXTRACTION_PROMPT, messages, temperature=0.0)

    try:
        intake_model = StructuredIntakeModel.model_validate(data_dict)
    except ValidationError as e:
        logger.warning("Extraction reply did not match the intake schema: %s", e)
        raise CollaboratorError("llm", "extraction reply did not match schema") from e

    return MedicalData(
        structured_data=intake_model.model_dump(),
        raw_text=build_transcript_text(messages),
    )
