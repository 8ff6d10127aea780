"""FastAPI application factory for the funnel preview service."""

from __future__ import annotations

import logging

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware

from funnelchat.conversation import ConversationEngine
from funnelchat.validation import FlowIssue, validate_flow

from .config import Settings, ensure_data_directory, get_settings
from .schemas import (
    ConversationCreate,
    ConversationRead,
    FlowIssueRead,
    FunnelCreate,
    FunnelList,
    FunnelRead,
    OptionSelect,
    TextSubmit,
    TimerActivate,
    TimerResolve,
)
from .store import ConversationEntry, ConversationRegistry, FunnelRecord, FunnelStore

logger = logging.getLogger("funnelchat.api")


def _issue_read(issue: FlowIssue) -> FlowIssueRead:
    return FlowIssueRead(code=issue.code, message=issue.message, block_id=issue.block_id)


def _funnel_read(record: FunnelRecord) -> FunnelRead:
    return FunnelRead(
        id=record.id,
        name=record.name,
        start_block_id=record.flow.start_block_id,
        stage_count=len(record.flow.stages),
        block_count=len(record.flow.blocks),
        offer_block_ids=[block.id for block in record.flow.offer_blocks()],
        issues=[_issue_read(issue) for issue in validate_flow(record.flow)],
    )


def _conversation_read(entry: ConversationEntry) -> ConversationRead:
    snapshot = entry.engine.snapshot()
    return ConversationRead(id=entry.id, funnel_id=entry.funnel_id, **dict(snapshot))


def create_app() -> FastAPI:
    settings = get_settings()
    ensure_data_directory(settings.funnels_path)

    funnels = FunnelStore(settings.funnels_path)
    conversations = ConversationRegistry(max_entries=settings.max_conversations)

    app = FastAPI(title="Funnel Chat Preview API", version="0.1.0", docs_url="/docs")
    app.state.funnels = funnels
    app.state.conversations = conversations
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", summary="Simple health check")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "funnels": len(app.state.funnels.list_funnels()),
            "conversations": len(app.state.conversations),
            "environment": app.state.settings.environment,
        }

    def get_funnels(request: Request) -> FunnelStore:
        return request.app.state.funnels

    def get_conversations(request: Request) -> ConversationRegistry:
        return request.app.state.conversations

    def get_app_settings(request: Request) -> Settings:
        return request.app.state.settings

    def load_funnel(funnel_id: str, store: FunnelStore = Depends(get_funnels)) -> FunnelRecord:
        try:
            return store.get(funnel_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    def load_conversation(
        conversation_id: str,
        registry: ConversationRegistry = Depends(get_conversations),
    ) -> ConversationEntry:
        try:
            return registry.get(conversation_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc

    @app.get("/funnels", response_model=FunnelList, summary="List stored funnels")
    async def list_funnels(store: FunnelStore = Depends(get_funnels)) -> FunnelList:
        return FunnelList(funnels=[_funnel_read(record) for record in store.list_funnels()])

    @app.post(
        "/funnels",
        response_model=FunnelRead,
        status_code=status.HTTP_201_CREATED,
        summary="Store a funnel definition",
    )
    async def create_funnel(
        payload: FunnelCreate, store: FunnelStore = Depends(get_funnels)
    ) -> FunnelRead:
        record = store.add_funnel(FunnelRecord(id=payload.id, name=payload.name, flow=payload.flow))
        read = _funnel_read(record)
        if read.issues:
            logger.warning("Funnel %s stored with %d integrity issues", record.id, len(read.issues))
        return read

    @app.get(
        "/funnels/{funnel_id}/validation",
        response_model=list[FlowIssueRead],
        summary="Report integrity problems in a funnel",
    )
    async def funnel_validation(record: FunnelRecord = Depends(load_funnel)) -> list[FlowIssueRead]:
        return [_issue_read(issue) for issue in validate_flow(record.flow)]

    @app.post(
        "/funnels/{funnel_id}/conversations",
        response_model=ConversationRead,
        status_code=status.HTTP_201_CREATED,
        summary="Start a preview conversation",
    )
    async def start_conversation(
        payload: ConversationCreate,
        record: FunnelRecord = Depends(load_funnel),
        registry: ConversationRegistry = Depends(get_conversations),
        settings: Settings = Depends(get_app_settings),
    ) -> ConversationRead:
        engine = ConversationEngine(
            record.flow,
            selected_offer=payload.selected_offer,
            debounce_seconds=settings.debounce_seconds,
        )
        engine.start(payload.resume)
        entry = registry.add(record.id, engine)
        logger.info("Conversation %s started on funnel %s", entry.id, record.id)
        return _conversation_read(entry)

    @app.get(
        "/conversations/{conversation_id}",
        response_model=ConversationRead,
        summary="Current state of a conversation",
    )
    async def get_conversation(
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        return _conversation_read(entry)

    @app.delete(
        "/conversations/{conversation_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        summary="Discard a preview conversation",
    )
    async def delete_conversation(
        conversation_id: str,
        registry: ConversationRegistry = Depends(get_conversations),
    ) -> None:
        try:
            registry.remove(conversation_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        logger.info("Conversation %s discarded", conversation_id)

    @app.post(
        "/conversations/{conversation_id}/restart",
        response_model=ConversationRead,
        summary="Start the conversation over",
    )
    async def restart_conversation(
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        entry.engine.start()
        return _conversation_read(entry)

    @app.post(
        "/conversations/{conversation_id}/options",
        response_model=ConversationRead,
        summary="Click one of the offered options",
    )
    async def select_option(
        payload: OptionSelect,
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        options = entry.engine.options
        if payload.index >= len(options):
            raise HTTPException(
                status_code=422,
                detail=f"Option {payload.index} is not available ({len(options)} offered)",
            )
        entry.engine.select_option(options[payload.index], payload.index)
        return _conversation_read(entry)

    @app.post(
        "/conversations/{conversation_id}/messages",
        response_model=ConversationRead,
        summary="Send free text",
    )
    async def submit_text(
        payload: TextSubmit,
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        entry.engine.submit_text(payload.text)
        return _conversation_read(entry)

    @app.post(
        "/conversations/{conversation_id}/timer",
        response_model=ConversationRead,
        summary="Start the upsell/downsell timer for a product block",
    )
    async def activate_timer(
        payload: TimerActivate,
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        if not entry.engine.activate_timer(payload.block_id):
            raise HTTPException(
                status_code=409,
                detail=f"Block {payload.block_id} has no upsell or downsell",
            )
        return _conversation_read(entry)

    @app.post(
        "/conversations/{conversation_id}/timer/resolve",
        response_model=ConversationRead,
        summary="Resolve a pending offer timer",
    )
    async def resolve_timer(
        payload: TimerResolve,
        entry: ConversationEntry = Depends(load_conversation),
    ) -> ConversationRead:
        entry.engine.resolve_timer(payload.outcome)
        return _conversation_read(entry)

    return app
