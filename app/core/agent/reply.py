"""
Assistant reply contract.

The receptionist model answers with exactly one JSON object:

    {"kind": "reply", "message": "..."}
    {"kind": "scheduling-intent", "message": "...", "date_time": "...",
     "email": "...", "subject": "...", "duration_minutes": 30}

Replies that are not valid JSON are treated as plain text.
"""

import logging
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError

from app.core.scheduling.intent import iter_json_objects

logger = logging.getLogger(__name__)


class PlainReply(BaseModel):
    """Conversational answer with no side effects."""

    kind: Literal["reply"] = "reply"
    message: str


class SchedulingIntentReply(BaseModel):
    """The user asked for a meeting; fields are whatever the model could extract."""

    kind: Literal["scheduling-intent"] = "scheduling-intent"
    message: Optional[str] = None
    date_time: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[str] = None
    duration_minutes: Optional[int] = None


AssistantReply = Annotated[
    Union[PlainReply, SchedulingIntentReply],
    Field(discriminator="kind"),
]

_reply_adapter: TypeAdapter = TypeAdapter(AssistantReply)


def parse_assistant_reply(text: str) -> Union[PlainReply, SchedulingIntentReply]:
    """
    Parse a model completion into an AssistantReply.

    The first embedded object carrying a valid "kind" wins. Anything else
    becomes a PlainReply holding the raw text.
    """
    for obj in iter_json_objects(text):
        if "kind" not in obj:
            continue
        try:
            return _reply_adapter.validate_python(obj)
        except ValidationError as e:
            logger.debug(f"Ignoring malformed reply object: {e.error_count()} errors")

    return PlainReply(message=text.strip())
