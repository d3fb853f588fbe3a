"""
Conversation Engine - Main Orchestrator.

Processes one inbound WhatsApp message per call:

    lock(clinic, phone) -> load session -> dedupe -> flow.step -> save

and hands the resulting replies to the messaging channel.
"""

import logging
from typing import Optional

from app.core.intelligence.session.manager import SessionManager, get_session_manager
from app.core.intelligence.session.models import SessionData
from app.core.intelligence.session.state import ConversationState
from app.core.patients.directory import PatientDirectory
from app.core.scheduling.availability import AvailabilityGenerator
from app.core.scheduling.booking import BookingService
from app.core.scheduling.errors import TransientDependencyError
from app.core.scheduling.flow import ConversationFlow, FlowOutcome
from app.core.scheduling.response import ResponseGenerator, get_response_generator, text_message
from app.core.scheduling.store import ScheduleStore
from app.infra.messaging import MessagingChannel

logger = logging.getLogger(__name__)


class ConversationEngine:
    """
    Main orchestrator for WhatsApp booking conversations.

    Coordinates:
    - Per-counterparty locking and session persistence
    - Duplicate delivery detection
    - The conversation flow
    - Outbound delivery
    """

    def __init__(
        self,
        flow: ConversationFlow,
        sessions: Optional[SessionManager] = None,
        channel: Optional[MessagingChannel] = None,
        responses: Optional[ResponseGenerator] = None,
    ):
        """Initialize engine.

        Args:
            flow: Conversation flow (transition function)
            sessions: Session manager, defaults to the shared one
            channel: Outbound channel, None disables delivery
            responses: Response templates
        """
        self.flow = flow
        self.channel = channel
        self._sessions = sessions
        self._responses = responses or get_response_generator()

    async def _get_sessions(self) -> SessionManager:
        if self._sessions is None:
            self._sessions = await get_session_manager()
        return self._sessions

    def _apology(self) -> list[dict]:
        return [text_message(self._responses.apology())]

    async def process_inbound_message(
        self,
        clinic_id: str,
        phone: str,
        text: Optional[str],
        message_id: Optional[str] = None,
    ) -> list[dict]:
        """Process one inbound message.

        Args:
            clinic_id: Clinic the number belongs to
            phone: Counterparty phone
            text: Message text
            message_id: Inbound message id, used to drop duplicate deliveries

        Returns:
            Replies to send, in order. Empty for a duplicate delivery.
        """
        sessions = await self._get_sessions()

        try:
            async with sessions.lock(clinic_id, phone) as backend:
                return await self._process_locked(
                    sessions, backend, clinic_id, phone, text, message_id
                )
        except TransientDependencyError as e:
            # Session left untouched so a redelivery can retry the turn
            logger.warning(f"Turn for {clinic_id}:{phone} not processed: {e.message}")
            return self._apology()

    async def _process_locked(
        self,
        sessions: SessionManager,
        backend,
        clinic_id: str,
        phone: str,
        text: Optional[str],
        message_id: Optional[str],
    ) -> list[dict]:
        # Load and save on the backend holding the lock
        session = await sessions.get_or_create(clinic_id, phone, redis=backend)

        if session.is_duplicate(message_id):
            logger.info(f"Duplicate delivery {message_id} for {clinic_id}:{phone} ignored")
            return []

        try:
            outcome = await self.flow.step(
                session.state,
                session.context,
                text,
                clinic_id=clinic_id,
                phone=phone,
            )
        except TransientDependencyError:
            raise
        except Exception:
            logger.exception(
                f"Turn failed for {clinic_id}:{phone} in state {session.state.value}"
            )
            outcome = FlowOutcome(ConversationState.IDLE, {}, self._apology())

        await sessions.save(
            session.advance(outcome.next_state, outcome.context, message_id), redis=backend
        )
        return outcome.replies

    async def deliver_replies(self, clinic_id: str, phone: str, replies: list[dict]) -> int:
        """Send replies in order, best effort.

        Returns:
            Number of replies delivered
        """
        if self.channel is None:
            logger.debug(f"No messaging channel configured, {len(replies)} replies not sent")
            return 0

        delivered = 0
        for reply in replies:
            try:
                await self.channel.send(clinic_id, phone, reply)
            except Exception:
                logger.error(f"Failed to deliver reply to {clinic_id}:{phone}", exc_info=True)
                break
            delivered += 1
        return delivered

    async def handle_message(
        self,
        clinic_id: str,
        phone: str,
        text: Optional[str],
        message_id: Optional[str] = None,
    ) -> list[dict]:
        """Process a message and deliver its replies."""
        replies = await self.process_inbound_message(clinic_id, phone, text, message_id)
        await self.deliver_replies(clinic_id, phone, replies)
        return replies

    async def get_session(self, clinic_id: str, phone: str) -> Optional[SessionData]:
        sessions = await self._get_sessions()
        return await sessions.get(clinic_id, phone)

    async def reset_session(self, clinic_id: str, phone: str) -> bool:
        """Drop a conversation so the next message starts from idle.

        Returns:
            True if a session existed
        """
        sessions = await self._get_sessions()
        async with sessions.lock(clinic_id, phone) as backend:
            return await sessions.delete(clinic_id, phone, redis=backend)


def create_conversation_engine(
    store: ScheduleStore,
    directory: PatientDirectory,
    channel: Optional[MessagingChannel] = None,
    sessions: Optional[SessionManager] = None,
) -> ConversationEngine:
    """Wire an engine over the given store and patient directory."""
    availability = AvailabilityGenerator(store)
    booking = BookingService(store, directory)
    flow = ConversationFlow(store, directory, availability, booking)
    return ConversationEngine(flow, sessions=sessions, channel=channel)
