from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from apps.api.metrics.definitions import OPS_INTERACTIONS_TOTAL, OPS_STATUS_TRANSITIONS_TOTAL
from apps.api.ops.simulator import InvalidTicketStateError, TransitionSimulator
from apps.api.services.ops import (
    OpsAction,
    OpsOutcome,
    OpsPersistenceError,
    OpsService,
)
from apps.api.services.tickets import Customer, TicketNotFoundError, TicketStatus
from packages.db.models import OpsLogTable


async def _create(ticket_service, ticket_id: str = "T-1", status: TicketStatus | None = None):
    return await ticket_service.create_ticket(
        ticket_id=ticket_id,
        subject="Printer on fire",
        description="Smoke coming out of tray 2",
        customer=Customer(name="Ada", email="ada@example.com"),
        category="hardware",
        status=status,
    )


@pytest.mark.asyncio
async def test_send_success_marks_ticket_sent_and_logs(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service)
    service = make_ops_service([0.1])

    result = await service.send_to_ops("T-1")

    assert result.response.success
    assert result.response.message == "Ticket T-1 successfully sent to OPS"
    assert result.response.data["ticketId"] == "T-1"
    assert result.response.data["opsId"].startswith("OPS-")
    assert result.ticket.status == TicketStatus.SENT
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.SENT

    logs = await log_repository.list_logs(ticket_id="T-1")
    assert len(logs) == 1
    assert logs[0].action == OpsAction.SEND
    assert logs[0].status == OpsOutcome.SUCCESS
    assert logs[0].response.data["opsId"] == result.response.data["opsId"]


@pytest.mark.asyncio
async def test_send_failure_leaves_ticket_and_logs_failed(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service)
    service = make_ops_service([0.95])

    result = await service.send_to_ops("T-1")

    assert not result.response.success
    assert "T-1" in result.response.message
    assert "connection timeout" in result.response.message
    assert result.response.data is None
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.NEW

    logs = await log_repository.list_logs(ticket_id="T-1")
    assert [(log.action, log.status) for log in logs] == [(OpsAction.SEND, OpsOutcome.FAILED)]
    assert logs[0].response.success is False


@pytest.mark.asyncio
async def test_query_sent_ticket_moves_to_delayed(ticket_service, make_ops_service, log_repository, metrics):
    await _create(ticket_service, status=TicketStatus.SENT)
    service = make_ops_service([0.0, 0.75])

    result = await service.query_status("T-1")

    assert result.response.data == {
        "ticketId": "T-1",
        "status": "delayed",
        "updated": True,
        "details": "Ticket processing has been delayed",
    }
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.DELAYED
    transitions = metrics.counter(OPS_STATUS_TRANSITIONS_TOTAL, label_names=("from_status", "to_status"))
    assert transitions.value(labels={"from_status": "sent", "to_status": "delayed"}) == 1


@pytest.mark.asyncio
async def test_query_self_loop_still_writes_log(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service, status=TicketStatus.IN_PROGRESS)
    service = make_ops_service([0.0, 0.5])

    result = await service.query_status("T-1")

    assert result.response.success
    assert result.response.data["updated"] is False
    assert result.ticket.status == TicketStatus.IN_PROGRESS
    logs = await log_repository.list_logs(ticket_id="T-1")
    assert [(log.action, log.status) for log in logs] == [(OpsAction.QUERY, OpsOutcome.SUCCESS)]


@pytest.mark.asyncio
async def test_query_closed_ticket_is_idempotent(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service, status=TicketStatus.CLOSED)
    service = make_ops_service([0.0] * 5)

    for _ in range(5):
        result = await service.query_status("T-1")
        assert result.response.data["status"] == "closed"
        assert result.response.data["updated"] is False

    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.CLOSED
    assert len(await log_repository.list_logs(ticket_id="T-1")) == 5


@pytest.mark.asyncio
async def test_query_unavailable_is_logged_as_failed(ticket_service, make_ops_service, log_repository, metrics):
    await _create(ticket_service, status=TicketStatus.SENT)
    service = make_ops_service([0.95])

    result = await service.query_status("T-1")

    assert not result.response.success
    assert result.response.message == "Failed to query status for ticket T-1: OPS system unavailable"
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.SENT
    logs = await log_repository.list_logs(ticket_id="T-1")
    assert logs[0].status == OpsOutcome.FAILED
    interactions = metrics.counter(OPS_INTERACTIONS_TOTAL, label_names=("action", "outcome"))
    assert interactions.value(labels={"action": "query", "outcome": "failed"}) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [TicketStatus.NEW, TicketStatus.PENDING, TicketStatus.FAILED])
async def test_query_invalid_state_writes_no_log(ticket_service, make_ops_service, log_repository, status):
    await _create(ticket_service, status=status)
    service = make_ops_service([])

    with pytest.raises(InvalidTicketStateError):
        await service.query_status("T-1")

    assert await log_repository.list_logs(ticket_id="T-1") == []


@pytest.mark.asyncio
async def test_missing_ticket_writes_no_log(make_ops_service, log_repository):
    service = make_ops_service([])

    with pytest.raises(TicketNotFoundError):
        await service.send_to_ops("missing")
    with pytest.raises(TicketNotFoundError):
        await service.query_status("missing")

    assert await log_repository.list_logs() == []


@pytest.mark.asyncio
async def test_retry_failed_ticket_logs_retry_action(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service, status=TicketStatus.FAILED)
    service = make_ops_service([0.2])

    result = await service.retry_send("T-1")

    assert result.response.success
    assert result.ticket.status == TicketStatus.SENT
    logs = await log_repository.list_logs(ticket_id="T-1")
    assert [(log.action, log.status) for log in logs] == [(OpsAction.RETRY, OpsOutcome.SUCCESS)]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [TicketStatus.NEW, TicketStatus.PENDING, TicketStatus.IN_PROGRESS])
async def test_retry_only_allowed_for_failed_tickets(ticket_service, make_ops_service, log_repository, status):
    await _create(ticket_service, status=status)
    service = make_ops_service([])

    with pytest.raises(InvalidTicketStateError):
        await service.retry_send("T-1")

    assert await log_repository.list_logs(ticket_id="T-1") == []


@pytest.mark.asyncio
async def test_every_interaction_writes_exactly_one_log(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service)
    # send ok, query ok -> in_progress, query unavailable, query ok -> closed
    service = make_ops_service([0.1, 0.0, 0.1, 0.95, 0.0, 0.99])

    await service.send_to_ops("T-1")
    await service.query_status("T-1")
    await service.query_status("T-1")
    await service.query_status("T-1")

    logs = await service.get_ticket_logs("T-1")
    assert len(logs) == 4
    assert all(log.ticket_id == "T-1" for log in logs)
    assert sorted(log.action.value for log in logs) == ["query", "query", "query", "send"]
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.CLOSED

    failed = await service.list_logs(status=OpsOutcome.FAILED)
    assert len(failed) == 1
    sends = await service.list_logs(action=OpsAction.SEND)
    assert len(sends) == 1


@pytest.mark.asyncio
async def test_log_write_failure_surfaces_persistence_error(ticket_repository, ticket_service, metrics, scripted_random):
    await _create(ticket_service)
    logs = AsyncMock()
    logs.record_interaction = AsyncMock(side_effect=OperationalError("INSERT", {}, Exception("disk full")))
    service = OpsService(
        ticket_repository,
        logs,
        simulator=TransitionSimulator(rng=scripted_random([0.1])),
        metrics=metrics,
    )

    with pytest.raises(OpsPersistenceError):
        await service.send_to_ops("T-1")

    logs.record_interaction.assert_awaited_once()
    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.NEW


@pytest.mark.asyncio
async def test_get_ticket_logs_requires_existing_ticket(make_ops_service):
    service = make_ops_service([])

    with pytest.raises(TicketNotFoundError):
        await service.get_ticket_logs("missing")


@pytest.mark.asyncio
async def test_logs_survive_ticket_deletion(ticket_service, make_ops_service, log_repository):
    await _create(ticket_service)
    service = make_ops_service([0.1])
    await service.send_to_ops("T-1")

    await ticket_service.delete_ticket("T-1")

    assert len(await log_repository.list_logs(ticket_id="T-1")) == 1


@pytest.mark.asyncio
async def test_failed_log_insert_rolls_back_status_change(
    ticket_service, make_ops_service, log_repository, session_factory, monkeypatch
):
    await _create(ticket_service)
    async with session_factory() as session:
        async with session.begin():
            session.add(
                OpsLogTable(id="log-taken", ticket_id="T-0", action="send", status="success", response={})
            )
    monkeypatch.setattr("apps.api.services.ops.uuid", SimpleNamespace(uuid4=lambda: "log-taken"))
    service = make_ops_service([0.1])

    with pytest.raises(OpsPersistenceError):
        await service.send_to_ops("T-1")

    assert (await ticket_service.get_ticket("T-1")).status == TicketStatus.NEW
    assert await log_repository.list_logs(ticket_id="T-1") == []
