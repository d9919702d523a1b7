"""
Service wiring. Connections and repositories are built once per process and passed
down explicitly; the API keeps the result on `app.state`, RQ workers keep one per
worker process.
"""
from dataclasses import dataclass
from typing import Optional

from redis import Redis
from rq import Retry

from tuckshop.core.accounts import AccountService
from tuckshop.core.artifacts import ArtifactIssuer
from tuckshop.core.checkout import CheckoutService
from tuckshop.core.orchestrator import MessageOrchestrator
from tuckshop.core.state_machine import ConversationStateMachine
from tuckshop.observability.logging import log
from tuckshop.observability.metrics import Metrics
from tuckshop.payments.provider import PaymentProvider
from tuckshop.queue.jobs import notify_customer_job
from tuckshop.queue.rq_conn import get_queue
from tuckshop.settings import settings
from tuckshop.store.cache import ShopCache
from tuckshop.store.db import init_schema, make_engine, make_session_factory
from tuckshop.store.dedup import MessageDeduplicationGuard
from tuckshop.store.redis_conn import get_redis
from tuckshop.store.session_repo import ConversationStore
from tuckshop.store.shop_repo import ShopRepository
from tuckshop.transport.whatsapp_client import WhatsAppClient
from tuckshop.utils.lock import SenderLocks


@dataclass
class Services:
    redis: Redis
    engine: object
    session_factory: object
    metrics: Metrics
    cache: ShopCache
    repo: ShopRepository
    accounts: AccountService
    issuer: ArtifactIssuer
    payments: PaymentProvider
    checkout: CheckoutService
    dedup: MessageDeduplicationGuard
    sessions: ConversationStore
    locks: SenderLocks
    machine: ConversationStateMachine
    transport: WhatsAppClient
    orchestrator: MessageOrchestrator


def _make_notifier(transport: WhatsAppClient, metrics: Metrics):
    def notify(phone: str, text: str) -> None:
        if settings.INTAKE_MODE == "rq":
            get_queue().enqueue(notify_customer_job, phone, text, retry=Retry(max=3, interval=[5, 15, 30]))
            return
        if not transport.send_text(phone, text):
            metrics.outbound_failed()

    return notify


def build_services(redis: Optional[Redis] = None, engine=None, transport: Optional[WhatsAppClient] = None,
                   payments: Optional[PaymentProvider] = None, create_schema: bool = True) -> Services:
    redis = redis if redis is not None else get_redis()
    engine = engine if engine is not None else make_engine()
    if create_schema:
        init_schema(engine)
    session_factory = make_session_factory(engine)

    transport = transport or WhatsAppClient()
    payments = payments or PaymentProvider()
    metrics = Metrics(redis)
    cache = ShopCache(redis)
    repo = ShopRepository(session_factory, cache)
    accounts = AccountService(repo)
    issuer = ArtifactIssuer(session_factory)
    checkout = CheckoutService(session_factory, issuer, payments, cache, metrics,
                               notifier=_make_notifier(transport, metrics))
    machine = ConversationStateMachine(repo, accounts, checkout)
    dedup = MessageDeduplicationGuard(redis)
    sessions = ConversationStore(redis)
    locks = SenderLocks(redis)
    orchestrator = MessageOrchestrator(dedup, sessions, locks, machine, metrics, transport)

    log(event="services_built", intakeMode=settings.INTAKE_MODE, database=engine.url.get_backend_name())
    return Services(
        redis=redis,
        engine=engine,
        session_factory=session_factory,
        metrics=metrics,
        cache=cache,
        repo=repo,
        accounts=accounts,
        issuer=issuer,
        payments=payments,
        checkout=checkout,
        dedup=dedup,
        sessions=sessions,
        locks=locks,
        machine=machine,
        transport=transport,
        orchestrator=orchestrator,
    )
