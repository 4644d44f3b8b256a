import asyncio
import base64
import logging
from dataclasses import dataclass
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from starlette.staticfiles import StaticFiles

from .analyzer import ClarityJudge, TranscriptAnalyzer
from .config import Settings
from .crawler import FirecrawlClient
from .errors import (
    ImageGenerationError,
    LLMError,
    SourceResolutionError,
    SpeechSynthesisError,
    StorageError,
    TurnGenerationError,
)
from .interactive import TurnEngine, audio_content_type, extend_history
from .llm_providers import ChatClient, ChatModel
from .media_providers import ImageClient, SpeechClient, WhisperClient
from .models import (
    AnalysisResult,
    AnalyzeRequest,
    GenerationRequest,
    ImageRequest,
    ImageResponse,
    InteractiveChatRequest,
    InteractiveChatResponse,
    PersistedSlide,
    PracticeSessionResponse,
    TextGenerationRequest,
    TextGenerationResponse,
    TranscriptionResult,
    UrlSummaryRequest,
    UrlSummaryResponse,
)
from .orchestrator import GenerationOrchestrator, ImageModel
from .progress import ProgressChannel, sse_frames
from .prompts import SINGLE_SLIDE_SYSTEM_PROMPT, SINGLE_SLIDE_USER_TMPL
from .resolver import ContentResolver, UrlSummarizer
from .security import MAX_FILE_SIZE_BYTES, identify_caller, mask_api_key
from .store import InMemoryPracticeStore, InMemorySlideStore, LocalObjectStorage, ObjectStorage, SlideStore, image_object_key
from .transcription import TranscriptionService

# ---------- LOGGING ----------
logging.basicConfig(level=logging.INFO, format="%(levelname)s: %(message)s")
logger = logging.getLogger("slidecoach")
# -----------------------------

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


@dataclass
class Services:
    """Every collaborator the routes need, injected once at app construction."""

    orchestrator: GenerationOrchestrator
    analyzer: TranscriptAnalyzer
    transcription: TranscriptionService
    turn_engine: TurnEngine
    summarizer: UrlSummarizer
    chat: ChatModel
    images: ImageModel
    slide_store: SlideStore
    object_storage: ObjectStorage
    practice_store: InMemoryPracticeStore


def build_services(settings: Settings) -> Services:
    chat = ChatClient(
        settings.llm_provider,
        settings.llm_model,
        settings.llm_api_key,
        openai_base=settings.openai_base,
        timeout=settings.llm_timeout,
    )
    images = ImageClient(
        settings.openai_api_key, base_url=settings.openai_base, model=settings.image_model, timeout=settings.image_timeout
    )
    speech = SpeechClient(
        settings.groq_api_key, base_url=settings.groq_base, model=settings.tts_model, timeout=settings.speech_timeout
    )
    whisper = WhisperClient(
        settings.groq_api_key,
        base_url=settings.groq_base,
        model=settings.transcription_model,
        timeout=settings.speech_timeout,
    )
    crawler = FirecrawlClient(
        settings.firecrawl_api_key, base_url=settings.firecrawl_base, timeout=settings.crawl_timeout
    )
    slide_store = InMemorySlideStore()
    object_storage = LocalObjectStorage(settings.media_dir, settings.media_url)

    logger.info("LLM provider = %s (key=%s)", settings.llm_provider, mask_api_key(settings.llm_api_key))
    logger.info("OPENAI_BASE = %s", settings.openai_base)
    if not settings.api_tokens:
        logger.warning("SLIDECOACH_API_TOKENS is empty; generation requests will be refused")

    return Services(
        orchestrator=GenerationOrchestrator(
            chat,
            images,
            slide_store,
            object_storage,
            ContentResolver(crawler),
            temperature=settings.generation_temperature,
            image_concurrency=settings.image_concurrency,
        ),
        analyzer=TranscriptAnalyzer(ClarityJudge(chat)),
        transcription=TranscriptionService(whisper),
        turn_engine=TurnEngine(chat, speech, voice=settings.tts_voice, audio_format=settings.tts_format),
        summarizer=UrlSummarizer(crawler, chat),
        chat=chat,
        images=images,
        slide_store=slide_store,
        object_storage=object_storage,
        practice_store=InMemoryPracticeStore(),
    )


async def _read_upload(request: Request, upload: UploadFile) -> bytes:
    # Enforce upload size limit
    body_len = request.headers.get("content-length", "")
    if body_len.isdigit() and int(body_len) > MAX_FILE_SIZE_BYTES:
        raise HTTPException(413, detail=f"Payload too large (> {MAX_FILE_SIZE_BYTES // (1024*1024)} MB).")

    data = await upload.read()
    if len(data) > MAX_FILE_SIZE_BYTES:
        raise HTTPException(413, detail=f"Recording too large (> {MAX_FILE_SIZE_BYTES // (1024*1024)} MB).")
    return data


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    if settings is None:
        load_dotenv()
        settings = Settings.from_env()
    services = services or build_services(settings)

    app = FastAPI(title="SlideCoach", version="1.0.0")
    app.state.settings = settings
    app.state.services = services

    # Serve generated images at /media
    settings.media_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/media", StaticFiles(directory=str(settings.media_dir)), name="media")

    # CORS: open to any origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def caller_from(authorization: Optional[str]) -> Optional[str]:
        return identify_caller(authorization, settings.api_tokens)

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/api/generate-presentation")
    async def generate_presentation(
        payload: GenerationRequest,
        authorization: Optional[str] = Header(None),
    ):
        # Identity is checked inside the stream so the failure reaches the client as an `init` error event.
        caller_id = caller_from(authorization)
        channel = ProgressChannel()
        worker = asyncio.create_task(services.orchestrator.run(payload, caller_id, channel))
        return StreamingResponse(
            sse_frames(channel, worker),
            media_type="text/event-stream; charset=utf-8",
            headers=SSE_HEADERS,
        )

    @app.get("/api/presentations/{presentation_id}/slides", response_model=List[PersistedSlide])
    def list_slides(presentation_id: str):
        return services.slide_store.list_slides(presentation_id)

    @app.post("/api/analyze", response_model=AnalysisResult)
    async def analyze(payload: AnalyzeRequest):
        return await services.analyzer.analyze(payload.transcription, payload.duration_seconds, payload.slide_contents)

    @app.post("/api/transcribe", response_model=TranscriptionResult)
    async def transcribe(request: Request, audio: UploadFile = File(..., description="Recorded practice audio")):
        data = await _read_upload(request, audio)
        return await services.transcription.transcribe(
            data,
            filename=audio.filename or "recording.webm",
            content_type=audio.content_type or "audio/webm",
        )

    @app.post("/api/practice-sessions", response_model=PracticeSessionResponse)
    async def practice_session(
        request: Request,
        audio: UploadFile = File(..., description="Recorded practice audio"),
        duration_seconds: float = Form(..., gt=0),
        slide_contents: List[str] = Form(default=[]),
        presentation_id: Optional[str] = Form(None),
        authorization: Optional[str] = Header(None),
    ):
        caller_id = caller_from(authorization)
        if not caller_id:
            raise HTTPException(401, detail="User authentication failed.")
        data = await _read_upload(request, audio)
        transcription = await services.transcription.transcribe(
            data,
            filename=audio.filename or "recording.webm",
            content_type=audio.content_type or "audio/webm",
        )
        analysis = await services.analyzer.analyze(transcription, duration_seconds, slide_contents)
        session_id = services.practice_store.save_session(
            presentation_id, caller_id, transcription, analysis, duration_seconds
        )
        logger.info("Stored practice session %s (overall score %d)", session_id, analysis.overall_score)
        return PracticeSessionResponse(
            session_id=session_id,
            presentation_id=presentation_id,
            transcription=transcription,
            analysis=analysis,
        )

    @app.post("/api/interactive-chat", response_model=InteractiveChatResponse)
    async def interactive_chat(payload: InteractiveChatRequest):
        engine = services.turn_engine
        try:
            result = await engine.respond(
                payload.slide_content,
                payload.slide_title,
                payload.user_response,
                payload.conversation_history,
            )
            text, audio, audio_format = result.assistant_text, result.audio, result.audio_format
        except TurnGenerationError as e:
            logger.error(f"Interactive turn failed: {e}")
            raise HTTPException(502, detail=str(e))
        except SpeechSynthesisError as e:
            # Text-only turn: the conversation continues without audio.
            text, audio, audio_format = e.text, None, None
        except ValueError as e:
            raise HTTPException(422, detail=str(e))

        return InteractiveChatResponse(
            ai_text_response=text,
            ai_audio_base64=base64.b64encode(audio).decode("ascii") if audio else None,
            content_type=audio_content_type(audio_format) if audio_format else None,
            updated_conversation_history=extend_history(
                payload.conversation_history, payload.user_response, text, audio_format
            ),
        )

    @app.post("/api/generate-image", response_model=ImageResponse)
    async def generate_image(payload: ImageRequest):
        try:
            image = await services.images.generate(payload.image_prompt)
            url = services.object_storage.upload(image_object_key(), image, "image/png")
        except (ImageGenerationError, StorageError) as e:
            logger.error(f"Image generation failed: {e}")
            raise HTTPException(502, detail=f"Image generation failed: {e}")
        return ImageResponse(image_url=url)

    @app.post("/api/generate", response_model=TextGenerationResponse)
    async def generate_text(payload: TextGenerationRequest):
        try:
            text = await services.chat.complete(
                SINGLE_SLIDE_SYSTEM_PROMPT,
                SINGLE_SLIDE_USER_TMPL.format(prompt=payload.prompt),
                temperature=0.7,
                max_tokens=2000,
            )
        except LLMError as e:
            logger.error(f"LLM error: {e}")
            raise HTTPException(502, detail="Failed to generate text")
        return TextGenerationResponse(text=text)

    @app.post("/api/summarize-url", response_model=UrlSummaryResponse)
    async def summarize_url(payload: UrlSummaryRequest):
        try:
            summary = await services.summarizer.summarize(payload.url)
        except SourceResolutionError as e:
            logger.warning(f"Fetching {payload.url} for summary failed: {e}")
            raise HTTPException(400, detail="Failed to fetch URL content")
        except LLMError as e:
            logger.error(f"LLM error: {e}")
            raise HTTPException(502, detail="Failed to summarize content")
        return UrlSummaryResponse(summary=summary)

    return app
