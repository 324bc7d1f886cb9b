"""
Portfolio Events - API
======================
FastAPI application for contact submission, contact management,
visitor tracking and the live-stats WebSocket feed.
"""

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import Body, FastAPI, HTTPException, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portfolio_events import __version__
from portfolio_events.config import Settings, get_settings
from portfolio_events.core.contact_states import ContactStatus, Priority
from portfolio_events.core.errors import ContactNotFoundError, IllegalTransitionError
from portfolio_events.db.repository import ContactRepository
from portfolio_events.events.consumer import StreamConsumer
from portfolio_events.events.contact_consumer import ContactEventHandler
from portfolio_events.events.publisher import EventPublisher
from portfolio_events.events.visitor_consumer import LiveStatsAggregator, VisitorEventHandler
from portfolio_events.logging_config import configure_logging
from portfolio_events.services.broadcast import LIVE_STATS_CHANNEL, InMemoryBroadcaster
from portfolio_events.services.contact_service import ContactService, ContactSubmission
from portfolio_events.services.notifications import LoggingNotificationDispatcher, NotificationDispatcher
from portfolio_events.services.visitor_tracking import (
    SESSION_COOKIE_NAME,
    StaticLocationResolver,
    VisitorTrackingService,
    client_ip,
)


logger = logging.getLogger(__name__)


# ── Wiring ────────────────────────────────────────────────────────────────────

@dataclass
class AppServices:
    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    publisher: EventPublisher
    contacts: ContactService
    visitors: VisitorTrackingService
    aggregator: LiveStatsAggregator
    broadcaster: InMemoryBroadcaster
    consumers: list[StreamConsumer] = field(default_factory=list)


def build_services(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    publisher=None,
    notifier: NotificationDispatcher | None = None,
) -> AppServices:
    publisher = publisher or EventPublisher(settings)
    notifier = notifier or LoggingNotificationDispatcher()
    broadcaster = InMemoryBroadcaster()
    aggregator = LiveStatsAggregator()

    contact_handler = ContactEventHandler(
        session_factory,
        publisher,
        notifier,
        topic=settings.contact_events_topic,
        notify=not settings.notify_on_submit,
    )
    visitor_handler = VisitorEventHandler(aggregator, broadcaster)

    return AppServices(
        settings=settings,
        session_factory=session_factory,
        publisher=publisher,
        contacts=ContactService(
            ContactRepository(session_factory),
            publisher,
            notifier,
            topic=settings.contact_events_topic,
            notify_on_submit=settings.notify_on_submit,
        ),
        visitors=VisitorTrackingService(
            publisher,
            topic=settings.visitor_events_topic,
            locations=StaticLocationResolver(),
        ),
        aggregator=aggregator,
        broadcaster=broadcaster,
        consumers=[
            StreamConsumer(settings, settings.contact_events_topic, contact_handler, publisher),
            StreamConsumer(settings, settings.visitor_events_topic, visitor_handler, publisher),
        ],
    )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    services: AppServices = app.state.services
    if not services.settings.kafka_enabled:
        logger.info("Kafka disabled, running API only")
        yield
        return

    await services.publisher.start()
    tasks = []
    for consumer in services.consumers:
        await consumer.start()
        tasks.append(asyncio.create_task(consumer.run()))

    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for consumer in services.consumers:
            await consumer.stop()
        await services.publisher.stop()


# ── Request/Response Models ───────────────────────────────────────────────────

class VisitorSessionRequest(BaseModel):
    page: str | None = None
    referrer: str | None = None


class PageViewRequest(BaseModel):
    page: str
    previous_page: str | None = None
    time_spent: int = 0
    scroll_depth: str | None = None


def _field_name(loc) -> str:
    parts = [str(part) for part in loc if part not in ("body", "query", "path")]
    return ".".join(parts) or "body"


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"field": _field_name(error.get("loc", ())), "message": error.get("msg", "Invalid value")}
        for error in exc.errors()
    ]
    return JSONResponse(status_code=400, content={"errors": errors})


def _parse_enum(enum_cls, value: str | None, name: str):
    if value is None:
        return None
    try:
        return enum_cls(value.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


def _services(request: Request) -> AppServices:
    return request.app.state.services


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Clients never send on this feed; anything but a disconnect is ignored
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


# ── Application ───────────────────────────────────────────────────────────────

def create_app(services: AppServices | None = None) -> FastAPI:
    if services is None:
        from portfolio_events.db.database import async_session_factory

        services = build_services(get_settings(), async_session_factory)

    app = FastAPI(
        title="Portfolio Events",
        description="Event-driven contact processing and live visitor statistics",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.get("/")
    async def root():
        return {
            "service": "Portfolio Events",
            "version": __version__,
            "status": "running",
        }

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {
            "status": "UP",
            "publisher": services.publisher.is_started,
            "consumers": {c.topic: c.is_running for c in services.consumers},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # ── Contacts ──────────────────────────────────────────────────────────────

    @app.post("/contacts", status_code=201)
    async def submit_contact(submission: ContactSubmission, request: Request):
        """
        Submit a contact form.

        The contact is:
        1. Classified by message keywords
        2. Stored with status NEW
        3. Published as CONTACT_SUBMITTED for async processing
        """
        try:
            response = await _services(request).contacts.submit(
                submission,
                ip_address=client_ip(request.headers, request.client.host if request.client else None) or "unknown",
                user_agent=request.headers.get("user-agent", "unknown"),
            )
        except Exception:
            logger.error("Error processing contact", exc_info=True)
            return JSONResponse(status_code=500, content={"error": "Failed to process contact"})
        return response.model_dump()

    @app.get("/contacts")
    async def list_contacts(
        request: Request,
        status: str | None = None,
        priority: str | None = None,
        page: int = 0,
        size: int = 10,
    ):
        """List contacts, newest first, with optional status/priority filter"""
        if page < 0 or size < 1 or size > 100:
            raise HTTPException(status_code=400, detail="page must be >= 0 and size between 1 and 100")

        result = await _services(request).contacts.list_contacts(
            status=_parse_enum(ContactStatus, status, "status"),
            priority=_parse_enum(Priority, priority, "priority"),
            page=page,
            size=size,
        )
        return result.to_dict()

    @app.get("/contacts/analytics")
    async def contact_analytics(request: Request):
        return await _services(request).contacts.analytics()

    @app.get("/contacts/{contact_id}")
    async def get_contact(contact_id: str, request: Request):
        try:
            contact = await _services(request).contacts.get_contact(contact_id)
        except ContactNotFoundError:
            raise HTTPException(status_code=404, detail="Contact not found")
        return contact.to_dict()

    @app.get("/contacts/{contact_id}/history")
    async def get_contact_history(contact_id: str, request: Request):
        """Get full transition history for a contact (audit trail)"""
        try:
            transitions = await _services(request).contacts.history(contact_id)
        except ContactNotFoundError:
            raise HTTPException(status_code=404, detail="Contact not found")
        return {
            "contact_id": contact_id,
            "transition_count": len(transitions),
            "transitions": [t.to_dict() for t in transitions],
        }

    @app.put("/contacts/{contact_id}/respond")
    async def mark_responded(contact_id: str, request: Request):
        try:
            contact = await _services(request).contacts.mark_responded(contact_id)
        except ContactNotFoundError:
            raise HTTPException(status_code=404, detail="Contact not found")
        except IllegalTransitionError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return {
            "status": "SUCCESS",
            "message": "Contact marked as responded",
            "contact_status": contact.status.value,
        }

    # ── Visitors ──────────────────────────────────────────────────────────────

    @app.post("/visitor/session")
    async def track_session(
        request: Request,
        response: Response,
        body: VisitorSessionRequest | None = Body(default=None),
    ):
        svc = _services(request)
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        if not session_id:
            session_id = str(uuid.uuid4())
            response.set_cookie(
                SESSION_COOKIE_NAME,
                session_id,
                max_age=svc.settings.session_cookie_max_age,
                path="/",
                httponly=True,
                secure=True,
            )

        body = body or VisitorSessionRequest()
        await svc.visitors.track_session(
            session_id,
            ip_address=client_ip(request.headers, request.client.host if request.client else None),
            user_agent=request.headers.get("user-agent"),
            page=body.page,
            referrer=body.referrer or request.headers.get("referer"),
        )
        return {"status": "SUCCESS", "session_id": session_id, "message": "Session tracked successfully"}

    @app.post("/visitor/pageview")
    async def track_page_view(payload: PageViewRequest, request: Request):
        session_id = request.cookies.get(SESSION_COOKIE_NAME)
        if not session_id:
            raise HTTPException(status_code=400, detail="No visitor session")

        await _services(request).visitors.track_page_view(
            session_id,
            page=payload.page,
            previous_page=payload.previous_page,
            time_spent_seconds=payload.time_spent,
            scroll_depth=payload.scroll_depth,
        )
        return {"status": "SUCCESS", "message": "Page view tracked"}

    @app.get("/visitor/stats")
    async def live_stats(request: Request):
        return _services(request).aggregator.snapshot().to_payload()

    @app.websocket("/ws/live-stats")
    async def live_stats_feed(websocket: WebSocket):
        svc: AppServices = websocket.app.state.services
        await websocket.accept()
        queue = svc.broadcaster.subscribe(LIVE_STATS_CHANNEL)
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        try:
            await websocket.send_json(svc.aggregator.snapshot().to_payload())
            while True:
                update = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({update, disconnected}, return_when=asyncio.FIRST_COMPLETED)
                if disconnected in done:
                    update.cancel()
                    break
                await websocket.send_json(update.result())
        except WebSocketDisconnect:
            pass
        finally:
            disconnected.cancel()
            svc.broadcaster.unsubscribe(LIVE_STATS_CHANNEL, queue)

    return app


def main():
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    uvicorn.run(create_app(), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
