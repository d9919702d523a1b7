from unittest.mock import MagicMock, patch

import pytest

from tuckshop.queue.jobs import notify_customer_job, process_inbound_message_job


@patch("tuckshop.queue.jobs.log")
@patch("tuckshop.queue.jobs.get_worker_services")
def test_intake_job_runs_orchestrator(mock_services, mock_log):
    services = MagicMock()
    services.orchestrator.process_and_reply.return_value = True
    mock_services.return_value = services

    assert process_inbound_message_job("15550001111", "hi", "wamid.1", "Ada") is True

    services.orchestrator.process_and_reply.assert_called_once_with("15550001111", "hi", "wamid.1",
                                                                   display_name="Ada")
    assert mock_log.call_args_list[0].kwargs["event"] == "intake_job_start"


@patch("tuckshop.queue.jobs.log")
@patch("tuckshop.queue.jobs.get_worker_services")
def test_intake_job_reraises_for_rq_retry(mock_services, mock_log):
    mock_services.return_value.orchestrator.process_and_reply.side_effect = RuntimeError("boom")

    with pytest.raises(RuntimeError):
        process_inbound_message_job("1", "hi", "wamid.2")

    assert mock_log.call_args.kwargs["event"] == "intake_job_exception"


def test_intake_job_with_real_services_is_idempotent(services, transport):
    with patch("tuckshop.queue.jobs.get_worker_services", return_value=services):
        process_inbound_message_job("15550001111", "hi", "wamid.3")
        process_inbound_message_job("15550001111", "hi", "wamid.3")

    assert transport.send_text.call_count == 1


@patch("tuckshop.queue.jobs.get_worker_services")
def test_notify_job_raises_when_send_fails(mock_services):
    services = MagicMock()
    services.transport.send_text.return_value = False
    mock_services.return_value = services

    with pytest.raises(RuntimeError):
        notify_customer_job("15550001111", "Your order is paid")

    services.metrics.outbound_failed.assert_called_once()


@patch("tuckshop.queue.jobs.get_worker_services")
def test_notify_job_success(mock_services):
    mock_services.return_value.transport.send_text.return_value = True
    assert notify_customer_job("15550001111", "Your order is paid") is True


@patch("tuckshop.services.get_queue")
def test_payment_notice_is_enqueued_in_rq_mode(mock_get_queue, services, customer, catalog, monkeypatch,
                                               transport):
    from tuckshop.settings import settings

    monkeypatch.setattr(settings, "INTAKE_MODE", "rq")
    queue = MagicMock()
    mock_get_queue.return_value = queue
    services.repo.add_to_cart(customer.id, catalog["Water"], 1)
    result = services.checkout.checkout(customer.id, "PREPAID")

    services.checkout.confirm_payment(result.payment_reference)

    args = queue.enqueue.call_args[0]
    assert args[0] is notify_customer_job
    assert args[1] == "15550001111"
    assert queue.enqueue.call_args.kwargs["retry"].max == 3
    transport.send_text.assert_not_called()
