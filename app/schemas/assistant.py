from typing import Any, List, Literal, Optional
from pydantic import BaseModel, UUID4


AssistantType = Literal["chat", "venue", "voice", "welcome"]


class AssistantQuery(BaseModel):
    query: str
    venue_id: Optional[UUID4] = None
    type: AssistantType = "chat"


class AssistantReply(BaseModel):
    answer: str
    venues: Optional[List[Any]] = None


class SpeechRequest(BaseModel):
    text: str
    voice: Optional[str] = None
