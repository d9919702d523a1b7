import time
from typing import Optional

from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from tuckshop.core import messages
from tuckshop.core.errors import SenderBusy, TransientInfraError
from tuckshop.core.state_machine import ConversationStateMachine
from tuckshop.observability.logging import log
from tuckshop.observability.metrics import Metrics
from tuckshop.store.dedup import MessageDeduplicationGuard
from tuckshop.store.models import ConversationSession
from tuckshop.store.session_repo import ConversationStore
from tuckshop.transport.whatsapp_client import WhatsAppClient, normalize_phone
from tuckshop.utils.lock import SenderLocks


class MessageOrchestrator:
    """
    One inbound chat message, end to end:

      dedup admit -> sender lock -> load session -> state machine -> save session

    Infra failures anywhere inside the lock leave the stored session untouched and
    produce the generic apology. Duplicates produce no reply at all.
    """

    def __init__(self, dedup: MessageDeduplicationGuard, sessions: ConversationStore, locks: SenderLocks,
                 machine: ConversationStateMachine, metrics: Metrics, transport: WhatsAppClient):
        self.dedup = dedup
        self.sessions = sessions
        self.locks = locks
        self.machine = machine
        self.metrics = metrics
        self.transport = transport

    def handle_inbound_message(self, sender: str, text: str, message_id: str,
                               display_name: Optional[str] = None) -> Optional[str]:
        phone = normalize_phone(sender)
        if not phone:
            log(event="message_ignored", reason="no_sender", messageId=message_id)
            return None

        try:
            admitted = self.dedup.admit(message_id)
        except RedisError as e:
            log(event="dedup_unavailable", phone=phone, messageId=message_id, error=str(e)[:300])
            self.metrics.message_failed()
            return messages.APOLOGY

        if not admitted:
            self.metrics.message_duplicate()
            log(event="message_duplicate", phone=phone, messageId=message_id)
            return None
        self.metrics.message_admitted()

        start = time.time()
        try:
            with self.locks.hold(phone) as lease:
                session = self.sessions.load(phone)
                is_new = session is None
                if is_new:
                    session = ConversationSession.new(phone)
                step_from = session.step

                turn = self.machine.run_turn(session, text)
                # A turn that outlived its lease must not overwrite a newer session
                lease.confirm()

                if turn.logged_out:
                    self.sessions.delete(phone)
                else:
                    self.sessions.save(session)
        except SenderBusy:
            self.metrics.message_failed()
            log(event="sender_busy", phone=phone, messageId=message_id)
            return messages.BUSY
        except (SQLAlchemyError, RedisError, TransientInfraError) as e:
            self.metrics.message_failed()
            log(event="message_failed", phone=phone, messageId=message_id, errorType=type(e).__name__,
                error=str(e)[:300])
            return messages.APOLOGY

        log(
            event="turn_processed",
            phone=phone,
            messageId=message_id,
            displayName=display_name,
            newSession=is_new,
            stepFrom=step_from.value,
            stepTo=session.step.value,
            hops=len(turn.steps),
            loggedOut=turn.logged_out,
            latencyMs=int((time.time() - start) * 1000),
            reply=turn.text,
        )
        return turn.text

    def process_and_reply(self, sender: str, text: str, message_id: str,
                          display_name: Optional[str] = None) -> bool:
        """Handle a message and push the reply through the transport. False if a reply failed to send."""
        reply = self.handle_inbound_message(sender, text, message_id, display_name=display_name)
        if not reply:
            return True
        ok = self.transport.send_text(normalize_phone(sender), reply)
        if not ok:
            self.metrics.outbound_failed()
        return ok
