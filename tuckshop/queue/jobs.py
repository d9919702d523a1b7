from tuckshop.observability.logging import log

_services = None


def get_worker_services():
    """Built lazily, once per worker process."""
    global _services
    if _services is None:
        from tuckshop.services import build_services

        _services = build_services()
    return _services


def process_inbound_message_job(sender: str, text: str, message_id: str, display_name: str = None):
    """
    Worker-side intake for INTAKE_MODE=rq. The dedup guard inside the orchestrator makes
    a re-run of the same job a no-op.
    """
    try:
        log(event="intake_job_start", phone=sender, messageId=message_id)
        return get_worker_services().orchestrator.process_and_reply(sender, text, message_id,
                                                                    display_name=display_name)
    except Exception as e:
        log(event="intake_job_exception", phone=sender, messageId=message_id, error=str(e))
        raise


def notify_customer_job(phone: str, text: str):
    services = get_worker_services()
    ok = services.transport.send_text(phone, text)
    if not ok:
        services.metrics.outbound_failed()
        log(event="notify_job_failed", phone=phone)
        raise RuntimeError("Customer notification failed")
    return True
