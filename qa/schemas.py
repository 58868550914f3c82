"""Answer contract the model must satisfy."""
from __future__ import annotations

from typing import Annotated, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, StrictInt

QA_PROMPT_VERSION = "qa_answer_v1"
MAX_FOLLOW_UPS = 3

NonEmptyStr = Annotated[str, StringConstraints(strict=True, strip_whitespace=True, min_length=1)]
Citation = Union[StrictInt, NonEmptyStr]


class AnswerPayload(BaseModel):
    """
    Structured model answer.

    promptVersion ties a response to the prompt that produced it; citations
    reference chunk ids shown in the prompt.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt_version: str = Field(
        QA_PROMPT_VERSION,
        alias="promptVersion",
        pattern=r"^qa_answer_v\d+$",
        description="Prompt contract version"
    )
    answer: NonEmptyStr = Field(..., description="Answer text")
    citations: list[Citation] = Field(..., min_length=1, description="Chunk ids the answer relies on")
    follow_ups: list[NonEmptyStr] = Field(
        default_factory=list,
        alias="followUps",
        max_length=MAX_FOLLOW_UPS,
        description="Suggested follow-up questions"
    )
