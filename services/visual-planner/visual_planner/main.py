import logging
from typing import Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import CONTEXT_WINDOW_SIZE, load_settings
from .errors import PromptGenerationAborted, VisualPlannerError
from .llm.gateway import ChatGateway
from .llm.router import ModelRouter
from .llm.selector import ModelSelector
from .models import (
    CandidateAsset,
    ClassifiedItem,
    GeneratedImage,
    GlobalScriptContext,
    KeywordSet,
    MediaKind,
    Pool,
    ScoredAsset,
    Segment,
    StockVideo,
    TextOverlay,
)
from .nodes import classifier, context_aware, drama, keywords, prompt_generator
from .nodes.style import PromptStyle
from .pipeline import run_visual_plan
from .search.duration_match import rank_assets

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger(__name__)

app = FastAPI(
    title="Visual Planner",
    description="Classifies narration segments into stock footage or generated images and writes their prompts",
)

SETTINGS = load_settings()

# Created on startup; one selector per service process.
_http_client: httpx.AsyncClient | None = None
_gateway: ChatGateway | None = None


class OverlayIO(BaseModel):
    type: str
    text: str
    reference: Optional[str] = None


class SegmentIn(BaseModel):
    timestamp: str = ""
    text: str
    overlay: Optional[OverlayIO] = None

    def to_segment(self) -> Segment:
        overlay = TextOverlay(**self.overlay.model_dump()) if self.overlay else None
        return Segment(self.timestamp, self.text, overlay)


class StyleIn(BaseModel):
    art_style: str = "cinematic"
    custom_art_style: str = ""
    lighting: str = "auto"
    composition: str = "auto"
    default_era: Optional[str] = None
    custom_instructions: str = ""

    def to_style(self) -> PromptStyle:
        return PromptStyle(**self.model_dump())


class ItemIO(BaseModel):
    index: int
    timestamp: str = ""
    text: str
    media_type: MediaKind = MediaKind.STOCK_VIDEO
    prompt: str = ""
    reasoning: str = ""
    estimated_duration_seconds: float = 3.0
    era: Optional[str] = None
    overlay: Optional[OverlayIO] = None

    @classmethod
    def from_item(cls, item: ClassifiedItem) -> "ItemIO":
        media = item.media
        overlay = None
        if isinstance(media, StockVideo) and media.overlay is not None:
            overlay = OverlayIO(type=media.overlay.type, text=media.overlay.text,
                                reference=media.overlay.reference)
        return cls(
            index=item.index,
            timestamp=item.timestamp,
            text=item.text,
            media_type=item.kind,
            prompt=item.prompt,
            reasoning=item.reasoning,
            estimated_duration_seconds=item.estimated_duration_seconds,
            era=media.era if isinstance(media, GeneratedImage) else None,
            overlay=overlay,
        )

    def to_item(self) -> ClassifiedItem:
        if self.media_type is MediaKind.GENERATED_IMAGE:
            media = GeneratedImage(era=self.era)
        else:
            overlay = TextOverlay(**self.overlay.model_dump()) if self.overlay else None
            media = StockVideo(overlay=overlay)
        return ClassifiedItem(self.index, self.timestamp, self.text, media, self.prompt,
                              self.reasoning, self.estimated_duration_seconds)


class ClassifyRequest(BaseModel):
    topic: str = ""
    segments: list[SegmentIn]
    style: StyleIn = Field(default_factory=StyleIn)


class ItemsResponse(BaseModel):
    items: list[ItemIO]
    completed: Optional[int] = None


class PromptsRequest(BaseModel):
    topic: str = ""
    media_type: MediaKind
    items: list[ItemIO]
    resume_only: bool = False
    style: StyleIn = Field(default_factory=StyleIn)


class SinglePromptRequest(BaseModel):
    topic: str = ""
    text: str
    media_type: MediaKind
    index: int = 0
    style: StyleIn = Field(default_factory=StyleIn)


class ContextPromptsRequest(PromptsRequest):
    context: Optional[GlobalScriptContext] = None
    window_size: int = CONTEXT_WINDOW_SIZE


class ContextRequest(BaseModel):
    topic: str = ""
    items: list[ItemIO]


class ContextResponse(BaseModel):
    context: Optional[GlobalScriptContext] = None


class SentenceIn(BaseModel):
    id: int
    text: str


class KeywordsRequest(BaseModel):
    text: Optional[str] = None
    sentences: list[SentenceIn] = Field(default_factory=list)
    mood: Optional[str] = None


class KeywordsResponse(BaseModel):
    keywords: Optional[KeywordSet] = None
    success: bool = True
    error: Optional[str] = None
    batch: dict[int, KeywordSet] = Field(default_factory=dict)


class DramaRequest(BaseModel):
    entries: list[SentenceIn]


class DramaResponse(BaseModel):
    success: bool
    pause_durations: dict[int, float] = Field(default_factory=dict)
    tokens_used: int = 0
    error: Optional[str] = None


class PlanRequest(ClassifyRequest):
    use_context: bool = True
    window_size: int = CONTEXT_WINDOW_SIZE


class PlanResponse(BaseModel):
    topic: str
    items: list[ItemIO]
    context: Optional[GlobalScriptContext] = None
    report: dict


class RankRequest(BaseModel):
    target_seconds: int
    candidates: list[CandidateAsset]
    exclude_beyond: Optional[float] = None


class RankResponse(BaseModel):
    selected: Optional[CandidateAsset] = None
    ranked: list[ScoredAsset]


class SelectModelRequest(BaseModel):
    model: str


@app.on_event("startup")
async def startup():
    global _http_client, _gateway
    _http_client = httpx.AsyncClient(
        base_url=SETTINGS.base_url,
        headers={"Authorization": f"Bearer {SETTINGS.api_key}"},
        timeout=SETTINGS.timeout_seconds,
    )
    router = ModelRouter(SETTINGS.high_reasoning_models, SETTINGS.fast_models,
                         SETTINGS.default_model, cooldown_seconds=SETTINGS.cooldown_seconds)
    selector = ModelSelector(SETTINGS.high_reasoning_models, SETTINGS.fast_models,
                             SETTINGS.default_model)
    _gateway = ChatGateway(_http_client, selector, router=router)
    log.info("LLM endpoint=%s current_model=%s high_reasoning=%s fast=%s",
             SETTINGS.base_url, selector.current_model,
             SETTINGS.high_reasoning_models, SETTINGS.fast_models)


@app.on_event("shutdown")
async def shutdown():
    if _http_client:
        await _http_client.aclose()


def get_gateway() -> ChatGateway:
    if _gateway is None:
        raise HTTPException(status_code=503, detail="Service not started")
    return _gateway


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    body = await request.body()
    log.error("422 validation error on %s %s", request.method, request.url.path)
    log.error("Validation errors: %s", exc.errors())
    return JSONResponse(status_code=422, content={"detail": exc.errors(), "body_preview": body.decode(errors="replace")[:500]})


@app.exception_handler(PromptGenerationAborted)
async def prompt_aborted_handler(request: Request, exc: PromptGenerationAborted):
    log.error("%s %s aborted: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=409, content={
        "detail": str(exc), "index": exc.index, "completed": exc.completed, "total": exc.total,
    })


@app.exception_handler(VisualPlannerError)
async def planner_error_handler(request: Request, exc: VisualPlannerError):
    log.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def _log_batch(items: list[ClassifiedItem]) -> None:
    log.info("Classified %d segments so far", len(items))


def _log_progress(completed: int) -> None:
    log.info("Prompts written: %d", completed)


@app.get("/health")
async def health(gateway: ChatGateway = Depends(get_gateway)):
    return {"status": "ok", "current_model": gateway.selector.current_model}


@app.get("/models")
async def list_models(gateway: ChatGateway = Depends(get_gateway)):
    pools = {}
    if gateway.router is not None:
        for pool in Pool:
            pools[pool.value] = [
                {"id": e.id, "on_cooldown": gateway.router.is_on_cooldown(e.id)}
                for e in gateway.router.entries(pool)
            ]
    return {
        "current": gateway.selector.current_model,
        "available": gateway.selector.available_models,
        "pools": pools,
    }


@app.put("/models/current")
async def select_model(request: SelectModelRequest, gateway: ChatGateway = Depends(get_gateway)):
    if not request.model.strip():
        raise HTTPException(status_code=400, detail="model must not be blank")
    changed = gateway.selector.select_model(request.model.strip())
    return {"current": gateway.selector.current_model, "changed": changed}


@app.post("/classify", response_model=ItemsResponse)
async def classify(request: ClassifyRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /classify -- topic=%r segments=%d", request.topic, len(request.segments))
    items = await classifier.classify_and_generate_prompts(
        [s.to_segment() for s in request.segments], request.topic,
        gateway=gateway, style=request.style.to_style(), on_batch_complete=_log_batch)
    return ItemsResponse(items=[ItemIO.from_item(it) for it in items])


@app.post("/classify-only", response_model=ItemsResponse)
async def classify_only(request: ClassifyRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /classify-only -- topic=%r segments=%d", request.topic, len(request.segments))
    items = await classifier.classify_segments_only(
        [s.to_segment() for s in request.segments], request.topic,
        gateway=gateway, style=request.style.to_style(), on_batch_complete=_log_batch)
    return ItemsResponse(items=[ItemIO.from_item(it) for it in items])


@app.post("/prompts", response_model=ItemsResponse)
async def generate_prompts(request: PromptsRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /prompts -- type=%s items=%d resume=%s",
             request.media_type.value, len(request.items), request.resume_only)
    items = [it.to_item() for it in request.items]
    completed = await prompt_generator.generate_prompts_for_type(
        items, request.media_type, request.topic, gateway=gateway,
        style=request.style.to_style(), resume_only=request.resume_only, on_progress=_log_progress)
    return ItemsResponse(items=[ItemIO.from_item(it) for it in items], completed=completed)


@app.post("/prompts/single")
async def generate_single_prompt(request: SinglePromptRequest, gateway: ChatGateway = Depends(get_gateway)):
    prompt = await prompt_generator.generate_prompt_for_type(
        request.text, request.media_type, request.topic,
        gateway=gateway, style=request.style.to_style(), index=request.index)
    return {"prompt": prompt}


@app.post("/prompts/context", response_model=ItemsResponse)
async def generate_prompts_with_context(request: ContextPromptsRequest,
                                        gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /prompts/context -- type=%s items=%d resume=%s",
             request.media_type.value, len(request.items), request.resume_only)
    items = [it.to_item() for it in request.items]
    context = request.context
    if context is None:
        context = await context_aware.extract_global_context(items, request.topic, gateway=gateway)
    if context is None:
        completed = await prompt_generator.generate_prompts_for_type(
            items, request.media_type, request.topic, gateway=gateway,
            style=request.style.to_style(), resume_only=request.resume_only, on_progress=_log_progress)
    else:
        completed = await context_aware.generate_prompts_with_context(
            items, request.media_type, request.topic, context, gateway=gateway,
            style=request.style.to_style(), window_size=request.window_size,
            resume_only=request.resume_only, on_progress=_log_progress)
    return ItemsResponse(items=[ItemIO.from_item(it) for it in items], completed=completed)


@app.post("/context", response_model=ContextResponse)
async def extract_context(request: ContextRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /context -- topic=%r items=%d", request.topic, len(request.items))
    context = await context_aware.extract_global_context(
        [it.to_item() for it in request.items], request.topic, gateway=gateway)
    return ContextResponse(context=context)


@app.post("/keywords", response_model=KeywordsResponse)
async def extract_keywords(request: KeywordsRequest, gateway: ChatGateway = Depends(get_gateway)):
    if request.sentences:
        batch = await keywords.extract_keyword_sets(
            [(s.id, s.text) for s in request.sentences], request.mood, gateway=gateway)
        return KeywordsResponse(batch=batch)
    if not request.text or not request.text.strip():
        raise HTTPException(status_code=400, detail="either text or sentences is required")
    result = await keywords.extract_keywords(request.text, request.mood, gateway=gateway)
    return KeywordsResponse(keywords=result.keyword_set, success=result.success, error=result.error)


@app.post("/drama", response_model=DramaResponse)
async def detect_drama(request: DramaRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /drama -- entries=%d", len(request.entries))
    result = await drama.detect_drama([(e.id, e.text) for e in request.entries], gateway=gateway)
    return DramaResponse(success=result.success, pause_durations=result.pause_durations,
                         tokens_used=result.tokens_used, error=result.error)


@app.post("/plan", response_model=PlanResponse)
async def plan(request: PlanRequest, gateway: ChatGateway = Depends(get_gateway)):
    log.info("POST /plan -- topic=%r segments=%d context=%s",
             request.topic, len(request.segments), request.use_context)
    result = await run_visual_plan(
        [s.to_segment() for s in request.segments], request.topic,
        gateway=gateway, style=request.style.to_style(),
        use_context=request.use_context, window_size=request.window_size)
    return PlanResponse(
        topic=result.topic,
        items=[ItemIO.from_item(it) for it in result.items],
        context=result.context,
        report=result.report,
    )


@app.post("/assets/rank", response_model=RankResponse)
async def rank(request: RankRequest):
    ranked = rank_assets(request.target_seconds, request.candidates, request.exclude_beyond)
    return RankResponse(selected=ranked[0].asset if ranked else None, ranked=ranked)


def run() -> None:
    uvicorn.run(app, host=SETTINGS.host, port=SETTINGS.port)


if __name__ == "__main__":
    run()
