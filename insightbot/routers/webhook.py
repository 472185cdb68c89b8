from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from starlette.requests import ClientDisconnect

from insightbot.config import settings
from insightbot.database import get_db
from insightbot.logging_config import TurnLogger, get_logger
from insightbot.models import ChannelInstance
from insightbot.schemas.webhook import WebhookResponse
from insightbot.services.agent_service import AgentLoop
from insightbot.services.alert_service import alert_error, alert_warning
from insightbot.services.complexity_service import classify, pick_filler
from insightbot.services.context_service import acquire_phone_lock, get_context
from insightbot.services.dataset_service import dataset_footer, select_dataset
from insightbot.services.dedup_service import is_duplicate_message
from insightbot.services.errors import (
    SynthesisFailure,
    TranscriptionFailure,
    UnauthorizedSender,
    UpstreamFailure,
)
from insightbot.services.evolution_service import EvolutionClient
from insightbot.services.inbound_service import (
    InboundEvent,
    InvalidEnvelope,
    classify_ignored,
    normalize_event,
    parse_envelope,
)
from insightbot.services.learning_service import get_working_queries, identify_question_intent, record_query_results
from insightbot.services.llm import LLMProvider, get_llm_provider
from insightbot.services.message_service import (
    INCOMING,
    OUTGOING,
    get_recent_messages,
    is_quota_exceeded,
    render_history,
    save_message,
)
from insightbot.services.prompt_service import build_system_prompt, get_model_documentation
from insightbot.services.resolver_service import resolve_channel
from insightbot.services.sanitizer_service import sanitize_response
from insightbot.services.selection_menu import MenuAction
from insightbot.services.speech_service import TRANSCRIPTION_APOLOGY, obtain_audio_bytes, synthesize, transcribe
from insightbot.services.tool_registry import QueryScope, ToolRegistry, build_default_registry

router = APIRouter()
logger = get_logger("webhook")

MSG_UPSTREAM_FAILURE = (
    "⚠️ Não consegui consultar seus dados agora. Tente novamente em alguns instantes."
)
MSG_QUOTA_REACHED = (
    "📊 O limite mensal de consultas da sua empresa foi atingido.\n\n"
    "Fale com o administrador para ampliar o plano."
)

STATUS_IGNORED = "ignored"
STATUS_MENU = "menu"
STATUS_NO_DATASET = "no_dataset"
STATUS_LIMIT = "limit_reached"
STATUS_TRANSCRIPTION = "transcription_failed"
STATUS_PROCESSED = "processed"
STATUS_ERROR = "error"


def _get_request_webhook_secret(request: Request) -> str | None:
    for header in ("apikey", "X-Webhook-Secret"):
        value = request.headers.get(header)
        if value:
            return value.strip()
    query_secret = request.query_params.get("webhook_secret")
    if query_secret:
        return query_secret.strip()
    return None


def _reply(instance: Optional[ChannelInstance], phone: str, text: Optional[str]) -> bool:
    if instance is None or not text:
        return False
    return EvolutionClient(instance).send_text(phone, text)


def _abort_turn(
    db: Session,
    client: Optional[EvolutionClient],
    event: InboundEvent,
    turn_log: TurnLogger,
    *,
    service: str,
    error: Exception,
    unexpected: bool = False,
) -> WebhookResponse:
    db.rollback()
    title = "Turn failed with unexpected error" if unexpected else "Turn aborted by upstream failure"
    turn_log.error(title, context={"service": service, "error": str(error)[:300]}, exc_info=unexpected)
    alert_error(
        title,
        service=service,
        phone=event.sender_id,
        instance=event.instance_name,
        detail=f"{type(error).__name__}: {error}",
    )
    sent = client.send_text(event.sender_id, MSG_UPSTREAM_FAILURE) if client is not None else False
    return WebhookResponse(success=False, status=STATUS_ERROR, message=f"{service} unavailable", sent=sent)


def process_turn(
    event: InboundEvent,
    db: Session,
    *,
    now: Optional[datetime] = None,
    provider: Optional[LLMProvider] = None,
    registry: Optional[ToolRegistry] = None,
) -> WebhookResponse:
    """Handle one inbound WhatsApp message end to end."""
    ignored = classify_ignored(event)
    if ignored:
        logger.info("Webhook event ignored", extra={"context": {"reason": ignored, "event": event.event_type}})
        return WebhookResponse(success=True, status=STATUS_IGNORED, message=ignored)

    phone = event.sender_id
    turn_log = TurnLogger(logger, {"phone": phone, "message_id": event.message_id, "instance": event.instance_name})

    if is_duplicate_message(event.instance_name, event.message_id):
        return WebhookResponse(success=True, status=STATUS_IGNORED, message="duplicate")

    now = now or datetime.now(timezone.utc)
    client: Optional[EvolutionClient] = None

    try:
        acquire_phone_lock(db, phone)
        context = get_context(db, phone, now)

        try:
            channel = resolve_channel(db, phone, event.text, context, instance_name=event.instance_name, now=now)
        except UnauthorizedSender:
            db.rollback()
            turn_log.info("Message from unauthorized sender dropped")
            return WebhookResponse(success=True, status=STATUS_IGNORED, message="unauthorized")

        if channel.outcome.ends_turn:
            sent = _reply(channel.reply_instance, phone, channel.outcome.reply)
            db.commit()
            return WebhookResponse(success=True, status=STATUS_MENU, message=channel.outcome.action.value, sent=sent)

        contact = channel.contact
        tenant = contact.tenant
        client = EvolutionClient(contact.channel_instance)
        turn_log = turn_log.bind(tenant_id=tenant.id)

        if is_quota_exceeded(db, tenant, now):
            turn_log.warning("Monthly message quota reached")
            sent = client.send_text(phone, MSG_QUOTA_REACHED)
            db.commit()
            return WebhookResponse(success=True, status=STATUS_LIMIT, message="monthly quota reached", sent=sent)

        dataset_context = None if (channel.outcome.persist or channel.outcome.reset) else context
        dataset = select_dataset(db, phone, contact, dataset_context, event.text, now=now)
        if dataset.outcome.ends_turn:
            sent = client.send_text(phone, dataset.outcome.reply) if dataset.outcome.reply else False
            db.commit()
            turn_status = STATUS_NO_DATASET if dataset.outcome.action == MenuAction.EMPTY else STATUS_MENU
            return WebhookResponse(success=True, status=turn_status, message=dataset.outcome.action.value, sent=sent)

        binding = dataset.binding
        question = event.text
        if event.is_audio:
            try:
                question = transcribe(obtain_audio_bytes(event.audio, client))
            except TranscriptionFailure as e:
                turn_log.warning("Audio transcription failed", context={"error": str(e)})
                sent = client.send_text(phone, TRANSCRIPTION_APOLOGY)
                db.commit()
                return WebhookResponse(success=True, status=STATUS_TRANSCRIPTION, message="transcription failed", sent=sent)

        tier = classify(question)
        turn_log = turn_log.bind(tier=tier.level)
        intent = identify_question_intent(question)
        history = render_history(get_recent_messages(db, tenant.id, phone, tier.history_messages))
        save_message(
            db,
            tenant.id,
            phone,
            f"🎤 {question}" if event.is_audio else question,
            INCOMING,
            sender_label=contact.name or phone,
        )

        if tier.send_filler:
            client.send_text(phone, pick_filler())
        client.send_presence(phone)

        system_prompt = build_system_prompt(
            tier,
            now=now.astimezone(ZoneInfo(settings.timezone)),
            user_name=contact.name,
            dataset_name=binding.dataset_name,
            documentation=get_model_documentation(db, binding.connection_id),
            working_queries=get_working_queries(db, binding.connection_id, binding.dataset_id, intent),
            history=history,
        )
        loop = AgentLoop(provider or get_llm_provider(), registry or build_default_registry())
        result = loop.run(system_prompt, question, tier, QueryScope(binding.connection, binding.dataset_id))
        record_query_results(
            db,
            tenant_id=tenant.id,
            binding=binding,
            question=question,
            intent=intent,
            invocations=result.invocations,
            now=now,
        )

        footer = dataset_footer(binding.dataset_name or "Dataset") if dataset.has_alternatives else ""
        answer = sanitize_response(result.text, tier.max_chars - len(footer))

        sent = False
        if event.is_audio:
            try:
                sent = client.send_audio(phone, synthesize(answer))
            except SynthesisFailure as e:
                turn_log.warning("Speech synthesis failed, sending text", context={"error": str(e)})
        if not sent:
            sent = client.send_text(phone, answer + footer)
        if not sent:
            alert_warning("WhatsApp answer not delivered", phone=phone, instance=event.instance_name)

        save_message(db, tenant.id, phone, answer, OUTGOING)
        db.commit()
        turn_log.info(
            "Turn answered",
            context={"intent": intent, "rounds": result.rounds, "stop_reason": result.stop_reason, "sent": sent},
        )
        return WebhookResponse(success=True, status=STATUS_PROCESSED, message=result.stop_reason, sent=sent)

    except UpstreamFailure as e:
        return _abort_turn(db, client, event, turn_log, service=e.service, error=e)
    except Exception as e:
        return _abort_turn(db, client, event, turn_log, service="internal", error=e, unexpected=True)


@router.post("/webhook/whatsapp", response_model=WebhookResponse)
async def handle_whatsapp_webhook(request: Request, db: Session = Depends(get_db)):
    """Evolution API webhook: messages.upsert events from WhatsApp."""
    if settings.webhook_secret:
        provided_secret = _get_request_webhook_secret(request)
        if provided_secret != settings.webhook_secret:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid webhook secret")

    try:
        raw = await request.body()
    except ClientDisconnect:
        logger.info("Webhook client disconnected during read")
        return WebhookResponse(success=True, status=STATUS_IGNORED, message="Client disconnected")

    if not raw or not raw.strip():
        logger.info("Webhook ping with empty body")
        return WebhookResponse(success=True, status=STATUS_IGNORED, message="Empty payload")

    try:
        payload = await request.json()
    except ValueError as exc:
        logger.warning(
            "Webhook payload is not valid JSON",
            extra={"context": {"error": str(exc), "body_preview": raw[:200].decode("utf-8", "ignore")}},
        )
        return WebhookResponse(success=False, status=STATUS_ERROR, message="Invalid JSON payload")

    try:
        event = normalize_event(parse_envelope(payload))
    except InvalidEnvelope as exc:
        logger.warning("Webhook payload validation failed", extra={"context": {"error": str(exc)[:300]}})
        return WebhookResponse(success=False, status=STATUS_ERROR, message="Invalid webhook payload")

    return await run_in_threadpool(process_turn, event, db)


@router.get("/webhook/whatsapp")
async def handle_whatsapp_ping():
    """Reachability check for gateway UI tests; real webhooks must use POST."""
    return {"ok": True, "message": "Use POST with JSON payload"}
