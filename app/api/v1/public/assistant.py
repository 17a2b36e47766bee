from fastapi import APIRouter, Depends, Response

from app.schemas.assistant import AssistantQuery, AssistantReply, SpeechRequest
from app.services.assistant import AssistantClient, get_assistant_client

router = APIRouter(prefix="/assistant", tags=["Assistant"])


@router.post("/query", response_model=AssistantReply)
def ask_assistant(
    data: AssistantQuery,
    client: AssistantClient = Depends(get_assistant_client),
):
    """Forward a question to the venue assistant; `venue_id` scopes it to one venue."""
    return client.ask(data.query, venue_id=data.venue_id, type=data.type)


@router.post("/speech", response_class=Response)
def speak(
    data: SpeechRequest,
    client: AssistantClient = Depends(get_assistant_client),
):
    audio = client.text_to_speech(data.text, voice=data.voice)
    return Response(content=audio, media_type="audio/mpeg")
