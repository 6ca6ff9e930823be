import asyncio
from datetime import timedelta, timezone, datetime

import pytest
from sqlalchemy import update

from conftest import NOW, WEBHOOK_URL, FakeConnector, cron_config, store_attachment
from webhook_scheduler.connectors.base import DeliveryResult, DeliveryStatus
from webhook_scheduler.constants.execution_outcomes import ExecutionOutcome, TerminationReason
from webhook_scheduler.models.saved_webhook import SavedWebhook
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.models.schedule_execution import ScheduleExecution
from webhook_scheduler.schemas.schedule import ScheduleUpdate
from webhook_scheduler.services import schedule_service
from webhook_scheduler.services.dispatcher import ScheduleDispatcher, plan_transition

REJECTED = DeliveryResult(status=DeliveryStatus.REJECTED, status_code=400, error="Invalid Form Body")
TRANSIENT = DeliveryResult(status=DeliveryStatus.TRANSIENT, status_code=503, error="Service Unavailable")


def load(db, schedule_id) -> Schedule:
    db.expire_all()
    return db.get(Schedule, schedule_id)


def executions(db, schedule_id):
    return (
        db.query(ScheduleExecution)
        .filter(ScheduleExecution.schedule_id == schedule_id)
        .order_by(ScheduleExecution.id)
        .all()
    )


def make_dispatcher(session_factory, connector, storage, **kwargs) -> ScheduleDispatcher:
    options = dict(max_workers=4, batch_size=100, lease_seconds=300)
    options.update(kwargs)
    return ScheduleDispatcher(connector=connector, session_factory=session_factory, storage=storage, **options)


@pytest.mark.asyncio
async def test_one_time_schedule_fires_once_and_deactivates(db, dispatcher, connector, make_schedule):
    schedule_id = make_schedule()

    result = await dispatcher.run_tick(now=NOW)

    assert result.due == 1
    assert result.processed == 1
    assert connector.calls == [{"url": WEBHOOK_URL, "payload": {"content": "hello"}, "attachments": []}]

    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.next_execution_at is None
    assert schedule.execution_count == 1
    assert schedule.last_executed_at == NOW
    assert schedule.claim_token is None

    [execution] = executions(db, schedule_id)
    assert execution.success is True
    assert execution.status_code == 204
    assert execution.outcome == ExecutionOutcome.EXHAUSTED.value
    assert execution.execution_number == 1

    second = await dispatcher.run_tick(now=NOW + timedelta(minutes=5))
    assert second.due == 0
    assert len(connector.calls) == 1


@pytest.mark.asyncio
async def test_one_time_schedule_deactivates_after_failed_delivery(db, session_factory, storage, make_schedule):
    connector = FakeConnector(results=[REJECTED])
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule()

    result = await dispatcher.run_tick(now=NOW)

    assert result.reports[0].success is False
    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.next_execution_at is None
    assert schedule.execution_count == 1

    [execution] = executions(db, schedule_id)
    assert execution.success is False
    assert execution.status_code == 400
    assert "Invalid Form Body" in execution.error_message


@pytest.mark.asyncio
async def test_recurring_schedule_keeps_cadence_after_failure(db, session_factory, storage, make_schedule):
    connector = FakeConnector(results=[TRANSIENT])
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 9 * * *"),
        next_execution_at=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc),
    )

    result = await dispatcher.run_tick(now=NOW)

    report = result.reports[0]
    assert report.success is False
    assert report.continues
    schedule = load(db, schedule_id)
    assert schedule.is_active is True
    assert schedule.execution_count == 1
    assert schedule.last_executed_at == NOW
    assert schedule.next_execution_at == datetime(2024, 1, 2, 9, 0, tzinfo=timezone.utc)
    assert executions(db, schedule_id)[0].outcome == ExecutionOutcome.RESCHEDULED.value


@pytest.mark.asyncio
async def test_max_executions_deactivates_after_third_attempt(db, session_factory, storage, make_schedule):
    connector = FakeConnector(results=[
        DeliveryResult(status=DeliveryStatus.SUCCESS, status_code=204),
        REJECTED,
        DeliveryResult(status=DeliveryStatus.SUCCESS, status_code=204),
    ])
    dispatcher = make_dispatcher(session_factory, connector, storage)
    first_fire = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 * * * *"),
        max_executions=3,
        next_execution_at=first_fire,
    )

    for attempt in range(1, 4):
        schedule = load(db, schedule_id)
        assert schedule.is_active is True
        await dispatcher.run_tick(now=schedule.next_execution_at)
        schedule = load(db, schedule_id)
        assert schedule.execution_count == attempt
        if attempt < 3:
            assert schedule.is_active is True
            assert schedule.next_execution_at == first_fire + timedelta(hours=attempt)

    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.next_execution_at is None
    assert [e.outcome for e in executions(db, schedule_id)] == ["rescheduled", "rescheduled", "exhausted"]

    result = await dispatcher.run_tick(now=first_fire + timedelta(days=1))
    assert result.due == 0
    assert len(connector.calls) == 3


@pytest.mark.asyncio
async def test_exhausted_schedule_is_retired_without_delivery(db, dispatcher, connector, make_schedule):
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 * * * *"),
        max_executions=2,
        execution_count=2,
    )

    result = await dispatcher.run_tick(now=NOW)

    assert connector.calls == []
    assert result.reports[0].outcome == ExecutionOutcome.EXHAUSTED
    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.next_execution_at is None
    assert schedule.execution_count == 2


@pytest.mark.asyncio
async def test_rows_not_due_or_inactive_are_untouched(db, dispatcher, connector, make_schedule):
    future_id = make_schedule(next_execution_at=NOW + timedelta(minutes=1))
    inactive_id = make_schedule(is_active=False)

    result = await dispatcher.run_tick(now=NOW)

    assert result.due == 0
    assert connector.calls == []
    assert load(db, future_id).execution_count == 0
    assert load(db, inactive_id).execution_count == 0


@pytest.mark.asyncio
async def test_oldest_due_first_within_batch(db, session_factory, storage, connector, make_schedule):
    dispatcher = make_dispatcher(session_factory, connector, storage, batch_size=2)
    newest = make_schedule(name="newest", next_execution_at=NOW - timedelta(minutes=1))
    oldest = make_schedule(name="oldest", next_execution_at=NOW - timedelta(minutes=10))
    middle = make_schedule(name="middle", next_execution_at=NOW - timedelta(minutes=5))

    result = await dispatcher.run_tick(now=NOW)

    assert result.due == 2
    assert {report.schedule_id for report in result.reports} == {oldest, middle}
    assert load(db, newest).is_active is True

    await dispatcher.run_tick(now=NOW)
    assert load(db, newest).is_active is False


def test_claim_is_compare_and_set(db, dispatcher, make_schedule):
    schedule_id = make_schedule()

    first = dispatcher.claim(db, schedule_id, NOW, NOW)
    second = dispatcher.claim(db, schedule_id, NOW, NOW)

    assert first is not None
    assert second is None
    assert load(db, schedule_id).claim_token == first


def test_claim_fails_when_next_execution_changed(db, dispatcher, make_schedule):
    schedule_id = make_schedule()
    assert dispatcher.claim(db, schedule_id, NOW - timedelta(minutes=1), NOW) is None


@pytest.mark.asyncio
async def test_concurrent_passes_deliver_exactly_once(session_factory, storage, make_schedule):
    connector = FakeConnector(delay=0.05)
    first = make_dispatcher(session_factory, connector, storage)
    second = make_dispatcher(session_factory, connector, storage)
    make_schedule()

    results = await asyncio.gather(first.run_tick(now=NOW), second.run_tick(now=NOW))

    assert len(connector.calls) == 1
    assert sum(result.processed for result in results) == 1


def test_lease_follows_wall_clock_not_tick_time(db, dispatcher, make_schedule):
    schedule_id = make_schedule(next_execution_at=NOW - timedelta(minutes=10))
    past = NOW - timedelta(minutes=10)

    token = dispatcher.claim(db, schedule_id, past, past)

    assert token is not None
    assert load(db, schedule_id).claimed_until > datetime.now(timezone.utc)
    assert dispatcher.claim(db, schedule_id, past, datetime.now(timezone.utc)) is None
    assert dispatcher.find_due(db, datetime.now(timezone.utc)) == []


@pytest.mark.asyncio
async def test_live_claim_is_not_due_until_lease_expires(db, session_factory, storage, connector, make_schedule):
    wall = [datetime.now(timezone.utc)]
    dispatcher = make_dispatcher(session_factory, connector, storage, clock=lambda: wall[0])
    schedule_id = make_schedule(claim_token="crashed-worker", claimed_until=wall[0] + timedelta(minutes=5))

    blocked = await dispatcher.run_tick(now=NOW)
    assert blocked.due == 0
    assert connector.calls == []

    wall[0] += timedelta(minutes=6)
    recovered = await dispatcher.run_tick(now=NOW)
    assert recovered.processed == 1
    schedule = load(db, schedule_id)
    assert schedule.execution_count == 1
    assert schedule.claim_token is None


@pytest.mark.asyncio
async def test_edit_during_delivery_wins(db, session_factory, storage, make_schedule):
    edited_next = NOW + timedelta(days=1)
    schedule_id = None

    def user_edit(url, payload):
        session = session_factory()
        try:
            session.execute(
                update(Schedule)
                .where(Schedule.id == schedule_id)
                .values(name="edited", next_execution_at=edited_next, claim_token=None, claimed_until=None)
            )
            session.commit()
        finally:
            session.close()

    connector = FakeConnector(on_deliver=user_edit)
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 9 * * *"),
    )

    result = await dispatcher.run_tick(now=NOW)

    assert result.reports[0].outcome == ExecutionOutcome.SUPERSEDED
    schedule = load(db, schedule_id)
    assert schedule.name == "edited"
    assert schedule.next_execution_at == edited_next
    assert schedule.execution_count == 1
    assert schedule.last_executed_at == NOW
    assert schedule.is_active is True
    [execution] = executions(db, schedule_id)
    assert execution.outcome == ExecutionOutcome.SUPERSEDED.value
    assert execution.execution_number == 1


@pytest.mark.asyncio
async def test_rename_during_delivery_does_not_redeliver(db, session_factory, storage, owner, make_schedule):
    schedule_id = None

    def user_rename(url, payload):
        session = session_factory()
        try:
            schedule_service.update_schedule(session, owner, schedule_id, ScheduleUpdate(name="renamed"), now=NOW)
        finally:
            session.close()

    connector = FakeConnector(on_deliver=user_rename)
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule()

    first = await dispatcher.run_tick(now=NOW)
    second = await dispatcher.run_tick(now=NOW + timedelta(minutes=1))

    assert len(connector.calls) == 1
    assert first.reports[0].outcome == ExecutionOutcome.EXHAUSTED
    assert second.due == 0
    schedule = load(db, schedule_id)
    assert schedule.name == "renamed"
    assert schedule.execution_count == 1
    assert schedule.is_active is False
    assert schedule.next_execution_at is None


@pytest.mark.asyncio
async def test_max_executions_lowered_during_delivery_is_honored(db, session_factory, storage, owner, make_schedule):
    schedule_id = None

    def lower_budget(url, payload):
        session = session_factory()
        try:
            schedule_service.update_schedule(session, owner, schedule_id, ScheduleUpdate(max_executions=1), now=NOW)
        finally:
            session.close()

    connector = FakeConnector(on_deliver=lower_budget)
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 9 * * *"),
    )

    result = await dispatcher.run_tick(now=NOW)

    assert result.reports[0].outcome == ExecutionOutcome.EXHAUSTED
    schedule = load(db, schedule_id)
    assert schedule.execution_count == 1
    assert schedule.is_active is False


@pytest.mark.asyncio
async def test_delete_during_delivery_is_superseded(db, session_factory, storage, make_schedule):
    schedule_id = None

    def user_delete(url, payload):
        session = session_factory()
        try:
            session.delete(session.get(Schedule, schedule_id))
            session.commit()
        finally:
            session.close()

    connector = FakeConnector(on_deliver=user_delete)
    dispatcher = make_dispatcher(session_factory, connector, storage)
    schedule_id = make_schedule()

    result = await dispatcher.run_tick(now=NOW)

    assert result.errors == 0
    assert result.reports[0].outcome == ExecutionOutcome.SUPERSEDED
    assert load(db, schedule_id) is None
    assert executions(db, schedule_id) == []


@pytest.mark.asyncio
async def test_cron_without_future_occurrence_deactivates(db, dispatcher, connector, make_schedule):
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("0 0 30 2 *"),
    )

    result = await dispatcher.run_tick(now=NOW)

    assert len(connector.calls) == 1
    assert result.reports[0].outcome == ExecutionOutcome.EXHAUSTED
    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.next_execution_at is None
    assert "no further occurrence" in executions(db, schedule_id)[0].error_message


@pytest.mark.asyncio
async def test_invalid_stored_recurrence_is_failed_terminal(db, dispatcher, make_schedule):
    schedule_id = make_schedule(
        is_recurring=True,
        recurrence_pattern="cron",
        recurrence_config=cron_config("99 * * * *"),
    )

    result = await dispatcher.run_tick(now=NOW)

    assert result.reports[0].outcome == ExecutionOutcome.FAILED_TERMINAL
    schedule = load(db, schedule_id)
    assert schedule.is_active is False
    assert schedule.execution_count == 1


@pytest.mark.asyncio
async def test_saved_webhook_reference_is_resolved_at_fire_time(db, dispatcher, connector, make_schedule):
    saved = SavedWebhook(owner_id="owner-1", name="Template", builder_state={"content": "old"})
    db.add(saved)
    db.commit()
    schedule_id = make_schedule(builder_state=None, saved_webhook_id=saved.id)

    saved.builder_state = {"content": "from saved", "embeds": [{"title": "T"}]}
    db.commit()

    await dispatcher.run_tick(now=NOW)

    assert connector.calls[0]["payload"] == {"content": "from saved", "embeds": [{"title": "T", "color": 0x5865F2}]}
    assert load(db, schedule_id).execution_count == 1


@pytest.mark.asyncio
async def test_legacy_message_data_is_delivered(dispatcher, connector, make_schedule):
    make_schedule(builder_state=None, message_data={"content": "legacy", "flags": 4})

    await dispatcher.run_tick(now=NOW)

    assert connector.calls[0]["payload"] == {"content": "legacy", "flags": 4}


@pytest.mark.asyncio
async def test_malformed_snapshot_degrades_to_defaults(dispatcher, connector, make_schedule):
    make_schedule(builder_state={"content": "still sent", "embeds": "garbage", "flags": "x"})

    result = await dispatcher.run_tick(now=NOW)

    assert result.errors == 0
    assert connector.calls[0]["payload"] == {"content": "still sent"}


@pytest.mark.asyncio
async def test_attachments_are_read_from_storage(dispatcher, connector, storage, make_schedule):
    second = store_attachment(storage, "s1", 1, "b.txt", b"bravo", "text/plain")
    first = store_attachment(storage, "s1", 0, "a.txt", b"alpha", "text/plain")
    files = [second.model_dump(by_alias=True), first.model_dump(by_alias=True)]
    make_schedule(builder_state={"content": "files", "files": files}, files=files)

    await dispatcher.run_tick(now=NOW)

    attachments = connector.calls[0]["attachments"]
    assert [a.filename for a in attachments] == ["a.txt", "b.txt"]
    assert [a.content for a in attachments] == [b"alpha", b"bravo"]
    assert attachments[0].content_type == "text/plain"


@pytest.mark.asyncio
async def test_missing_attachment_counts_as_failed_attempt(db, dispatcher, connector, make_schedule):
    files = [{"name": "gone.txt", "size": 4, "mimeType": "text/plain", "storagePath": "users/owner-1/gone.txt"}]
    schedule_id = make_schedule(builder_state={"content": "x", "files": files}, files=files)

    result = await dispatcher.run_tick(now=NOW)

    assert connector.calls == []
    assert result.reports[0].success is False
    schedule = load(db, schedule_id)
    assert schedule.execution_count == 1
    assert schedule.is_active is False
    assert "unavailable" in executions(db, schedule_id)[0].error_message


@pytest.mark.asyncio
async def test_undecryptable_url_counts_as_failed_attempt(db, dispatcher, connector, make_schedule):
    schedule_id = make_schedule(target_url="not-a-fernet-token")

    result = await dispatcher.run_tick(now=NOW)

    assert connector.calls == []
    assert result.reports[0].success is False
    assert load(db, schedule_id).execution_count == 1


@pytest.mark.asyncio
async def test_unexpected_error_leaves_row_to_its_lease(db, session_factory, storage, make_schedule):
    connector = FakeConnector(results=[RuntimeError("boom")])
    dispatcher = make_dispatcher(session_factory, connector, storage, max_workers=1)
    started = datetime.now(timezone.utc)
    broken = make_schedule(name="broken", next_execution_at=NOW - timedelta(minutes=2))
    healthy = make_schedule(name="healthy", next_execution_at=NOW - timedelta(minutes=1))

    result = await dispatcher.run_tick(now=NOW)

    assert result.errors == 1
    assert result.processed == 1
    broken_row = load(db, broken)
    assert broken_row.execution_count == 0
    assert broken_row.claim_token is not None
    lease = timedelta(seconds=300)
    assert started + lease <= broken_row.claimed_until <= datetime.now(timezone.utc) + lease
    assert load(db, healthy).execution_count == 1


@pytest.mark.asyncio
async def test_concurrency_is_bounded_by_max_workers(session_factory, storage, make_schedule):
    connector = FakeConnector(delay=0.02)
    dispatcher = make_dispatcher(session_factory, connector, storage, max_workers=2)
    for index in range(5):
        make_schedule(name=f"s{index}")

    result = await dispatcher.run_tick(now=NOW)

    assert result.processed == 5
    assert len(connector.calls) == 5
    assert connector.max_in_flight == 2


def test_plan_transition_one_time():
    schedule = Schedule(is_recurring=False, recurrence_pattern="once", max_executions=None)
    transition = plan_transition(schedule, 1, NOW)
    assert transition.outcome == ExecutionOutcome.EXHAUSTED
    assert transition.reason == TerminationReason.ONE_TIME
    assert transition.is_active is False
    assert transition.next_execution_at is None


def test_plan_transition_reschedules_from_now():
    schedule = Schedule(is_recurring=True, recurrence_pattern="cron",
                        recurrence_config=cron_config("*/15 * * * *"), max_executions=None)
    transition = plan_transition(schedule, 7, NOW)
    assert transition.outcome == ExecutionOutcome.RESCHEDULED
    assert transition.next_execution_at == datetime(2024, 1, 1, 9, 15, tzinfo=timezone.utc)


def test_plan_transition_max_executions_boundary():
    schedule = Schedule(is_recurring=True, recurrence_pattern="cron",
                        recurrence_config=cron_config("0 * * * *"), max_executions=3)
    assert plan_transition(schedule, 2, NOW).is_active is True
    terminal = plan_transition(schedule, 3, NOW)
    assert terminal.is_active is False
    assert terminal.reason == TerminationReason.MAX_EXECUTIONS_REACHED
