import asyncio

import httpx

from querychat.core.constants import (
    ACCESS_TOKEN_KEY,
    MSG_CONNECT_DATABASE_FIRST,
    MSG_NO_RESPONSE,
    STATUS_PROCESSING,
)
from querychat.core.errors import MSG_SERVICE_UNREACHABLE, MSG_SESSION_EXPIRED, MSG_STREAM_UNREADABLE
from querychat.schemas.api import ConnectionStatus
from querychat.schemas.chat import ChatMessage, QueryResult
from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_session import QuerySessionController, Rejection, TurnPhase
from tests.helpers import ndjson

SAMPLE_STREAM = ndjson(
    {"type": "status", "message": "Generating SQL"},
    {"type": "sql", "data": "SELECT 1"},
    {"type": "results", "data": {"columns": ["n"], "rows": [{"n": 1}]}},
    {"type": "visualization", "data": {"type": "bar", "plotly_code": ""}},
)


def _stored(history, controller):
    return history.get_session(controller.session_id).messages


def test_turn_folds_stream_into_one_assistant_message(controller, history, service):
    service.body = SAMPLE_STREAM
    reply = asyncio.run(controller.submit_question("  how many?  "))

    stored = _stored(history, controller)
    assert [m.role for m in stored] == ["user", "assistant"]
    assert stored[0].content == "how many?"
    assert stored[1] == reply
    assert reply.sql == "SELECT 1"
    assert reply.results == QueryResult(columns=["n"], rows=[{"n": 1}])
    assert reply.visualization.type == "bar"
    assert reply.content.index("Found 1 result.") < reply.content.index("I've created a bar chart")
    assert controller.phase == TurnPhase.IDLE
    assert controller.status is None
    assert controller.current_sql == "SELECT 1"


def test_request_carries_question_user_and_context(controller, service):
    service.body = ndjson({"type": "message", "data": "ok"})
    asyncio.run(controller.submit_question("first"))
    asyncio.run(controller.submit_question("second"))

    first, second = service.stream_bodies()
    assert first == {"message": "first", "user_id": "7", "previous_messages": []}
    assert second["message"] == "second"
    assert second["previous_messages"] == [
        {"role": "user", "content": "first"},
        {"role": "assistant", "content": "ok"},
    ]
    assert service.requests[0].headers.get("authorization") is None


def test_context_window_is_bounded_to_five(kv, client, service):
    history = ChatHistoryStore(kv, max_messages_per_chat=20)
    controller = QuerySessionController(history, client, user_id="7")
    controller.connection = ConnectionStatus(success=True, message="Connected")
    controller.new_chat()
    service.body = ndjson({"type": "message", "data": "ok"})
    for q in ("a", "b", "c", "d"):
        asyncio.run(controller.submit_question(q))

    last = service.stream_bodies()[-1]
    assert len(last["previous_messages"]) == 5
    assert last["previous_messages"][-1] == {"role": "assistant", "content": "ok"}


def test_bearer_token_is_sent_when_logged_in(kv, controller, service):
    kv.set(ACCESS_TOKEN_KEY, "tok-123")
    service.body = ndjson({"type": "message", "data": "ok"})
    asyncio.run(controller.submit_question("q"))
    assert service.requests[0].headers["authorization"] == "Bearer tok-123"


def test_not_connected_adds_one_local_error_and_sends_nothing(controller, history, service):
    controller.connection = None
    before = list(controller.messages)

    notice = asyncio.run(controller.submit_question("anything"))

    assert controller.notices == [notice]
    assert controller.messages == before
    assert notice.role == "assistant"
    assert notice.type == "error"
    assert notice.content == MSG_CONNECT_DATABASE_FIRST
    assert service.requests == []
    assert _stored(history, controller) == []


def test_not_connected_is_reported_even_when_session_is_full(controller, history, service):
    service.body = ndjson({"type": "message", "data": "ok"})
    for i in range(history.max_messages_per_chat // 2):
        asyncio.run(controller.submit_question(f"q{i}"))
    controller.connection = None

    notice = asyncio.run(controller.submit_question("more"))

    assert notice is not None
    assert notice.content == MSG_CONNECT_DATABASE_FIRST
    assert controller.notices == [notice]
    assert len(controller.messages) == history.max_messages_per_chat


def test_notices_stay_out_of_transcript_and_context(controller, history, service):
    limit = history.max_messages_per_chat
    service.body = ndjson({"type": "message", "data": "ok"})
    asyncio.run(controller.submit_question("q0"))
    asyncio.run(controller.submit_question("q1"))

    connection, controller.connection = controller.connection, None
    asyncio.run(controller.submit_question("offline 1"))
    asyncio.run(controller.submit_question("offline 2"))
    assert len(controller.messages) <= limit
    controller.connection = connection

    asyncio.run(controller.submit_question("q2"))
    assert len(controller.messages) == len(_stored(history, controller)) == limit
    assert len(controller.notices) == 2

    context = service.stream_bodies()[-1]["previous_messages"]
    assert MSG_CONNECT_DATABASE_FIRST not in [m["content"] for m in context]
    assert context[-2:] == [{"role": "user", "content": "q1"}, {"role": "assistant", "content": "ok"}]

    assert asyncio.run(controller.submit_question("q3")) is None
    assert len(controller.messages) == limit


def test_message_limit_blocks_further_turns(controller, history, service):
    service.body = ndjson({"type": "message", "data": "ok"})
    turns = history.max_messages_per_chat // 2
    for i in range(turns):
        assert asyncio.run(controller.submit_question(f"q{i}")) is not None
    assert controller.limit_reached

    assert asyncio.run(controller.submit_question("one more")) is None
    assert len(_stored(history, controller)) == history.max_messages_per_chat
    assert len(service.stream_bodies()) == turns


def test_limit_rejection_is_reported_as_update(controller, history, service):
    service.body = ndjson({"type": "message", "data": "ok"})
    for i in range(history.max_messages_per_chat // 2):
        asyncio.run(controller.submit_question(f"q{i}"))

    async def collect():
        return [u async for u in controller.iter_turn("again")]

    updates = asyncio.run(collect())
    assert [u.rejection for u in updates] == [Rejection.MESSAGE_LIMIT]


def test_empty_question_is_ignored(controller, service):
    assert asyncio.run(controller.submit_question("   ")) is None
    assert service.requests == []
    assert controller.messages == []


def test_second_submission_while_in_flight_is_rejected(controller, history, service):
    service.body = ndjson({"type": "message", "data": "ok"})

    async def scenario():
        turn = controller.iter_turn("first")
        first = await turn.__anext__()
        assert first.phase == TurnPhase.SENDING
        assert first.status == STATUS_PROCESSING
        rejected = [u async for u in controller.iter_turn("second")]
        rest = [u async for u in turn]
        return rejected, rest

    rejected, rest = asyncio.run(scenario())
    assert [u.rejection for u in rejected] == [Rejection.IN_FLIGHT]
    assert rest[-1].phase == TurnPhase.COMPLETED
    assert len(_stored(history, controller)) == 2


def test_http_error_turns_placeholder_into_error(controller, history, service):
    service.status_code = 500
    reply = asyncio.run(controller.submit_question("q"))

    stored = _stored(history, controller)
    assert len(stored) == 2
    assert stored[1].id == reply.id
    assert reply.type == "error"
    assert reply.content == "Error processing your query: HTTP error! status: 500"
    assert controller.phase == TurnPhase.IDLE


def test_network_error_is_local_and_recoverable(controller, history, service):
    service.error = httpx.ConnectError("connection refused")
    reply = asyncio.run(controller.submit_question("q"))
    assert reply.type == "error"
    assert reply.content == f"Error processing your query: {MSG_SERVICE_UNREACHABLE}"

    service.error = None
    service.body = ndjson({"type": "message", "data": "back"})
    assert asyncio.run(controller.submit_question("again")).content == "back"
    assert len(_stored(history, controller)) == 4


class _ResetAfterFirstRecord(httpx.AsyncByteStream):
    async def __aiter__(self):
        yield b'{"type": "sql", "data": "SELECT 1"}\n'
        raise httpx.ReadError("connection reset")


def test_stream_broken_mid_turn_becomes_single_error(controller, history, service):
    service.handler_override = lambda request: httpx.Response(200, stream=_ResetAfterFirstRecord())
    reply = asyncio.run(controller.submit_question("q"))

    stored = _stored(history, controller)
    assert len(stored) == 2
    assert stored[1].id == reply.id
    assert stored[1].type == "error"
    assert reply.content == f"Error processing your query: {MSG_STREAM_UNREADABLE}"
    assert reply.sql == "SELECT 1"
    assert controller.phase == TurnPhase.IDLE
    assert not controller.in_flight


def test_unauthorized_clears_token(kv, controller, service):
    kv.set(ACCESS_TOKEN_KEY, "expired")
    service.status_code = 401
    reply = asyncio.run(controller.submit_question("q"))
    assert reply.content == f"Error processing your query: {MSG_SESSION_EXPIRED}"
    assert kv.get(ACCESS_TOKEN_KEY) is None


def test_malformed_records_are_skipped(controller, service):
    service.body = ndjson(
        "{broken",
        {"type": "unknown_kind", "data": 1},
        {"type": "results", "data": "not rows"},
        {"type": "message", "data": "Hello"},
    )
    reply = asyncio.run(controller.submit_question("q"))
    assert reply.content == "Hello"
    assert reply.results is None


def test_empty_stream_gets_fallback_text(controller, history, service):
    service.body = b""
    reply = asyncio.run(controller.submit_question("q"))
    assert reply.content == MSG_NO_RESPONSE
    assert _stored(history, controller)[1].content == MSG_NO_RESPONSE


def test_status_updates_are_not_persisted(controller, history, service):
    service.body = ndjson({"type": "status", "message": "Thinking"}, {"type": "message", "data": "Done"})

    async def collect():
        return [u async for u in controller.iter_turn("q")]

    updates = asyncio.run(collect())
    assert "Thinking" in [u.status for u in updates]
    assert _stored(history, controller)[1].content == "Done"
    # every update refers to the same assistant message
    assert len({u.message.id for u in updates}) == 1


def test_placeholder_is_persisted_before_the_stream_is_read(controller, history, service):
    service.body = ndjson({"type": "message", "data": "later"})

    async def scenario():
        turn = controller.iter_turn("q")
        await turn.__anext__()
        snapshot = _stored(history, controller)
        await turn.aclose()
        return snapshot

    snapshot = asyncio.run(scenario())
    assert [(m.role, m.content) for m in snapshot] == [("user", "q"), ("assistant", "")]
    assert controller.phase == TurnPhase.IDLE


def test_new_chat_cancels_running_turn(controller, history, service):
    service.body = ndjson({"type": "message", "data": "late"})

    async def scenario():
        turn = controller.iter_turn("q")
        await turn.__anext__()
        old_session = controller.session_id
        controller.new_chat()
        rest = [u async for u in turn]
        return old_session, rest

    old_session, rest = asyncio.run(scenario())
    assert rest == []
    assert controller.session_id != old_session
    assert controller.messages == []
    assert controller.phase == TurnPhase.IDLE
    old = history.get_session(old_session).messages
    assert old[1].content == ""
    assert _stored(history, controller) == []


def test_select_session_restores_last_results(controller, history, service):
    service.body = SAMPLE_STREAM
    asyncio.run(controller.submit_question("q"))
    session_id = controller.session_id
    controller.new_chat()
    assert controller.current_sql is None

    controller.select_session(session_id)
    assert controller.current_sql == "SELECT 1"
    assert controller.current_results.columns == ["n"]
    assert controller.current_visualization.type == "bar"
    assert len(controller.messages) == 2


def test_delete_active_session_starts_new_chat(controller, history):
    history.add_message(controller.session_id, ChatMessage.create("user", "q"))
    old = controller.session_id
    assert controller.delete_session(old)
    assert controller.session_id != old
    assert history.get_session(old) is None


def test_connect_records_connection(controller, service):
    controller.connection = None
    status = asyncio.run(controller.connect("postgresql://db/example", "key"))
    assert status.success and controller.is_connected
    assert status.table_count == 2
    body = service.requests[0].content
    assert b'"db_url":"postgresql://db/example"' in body.replace(b" ", b"")
    assert b"gemini_api_key" in body


def test_connect_requires_db_url(controller, service):
    status = asyncio.run(controller.connect("  "))
    assert not status.success
    assert not controller.is_connected
    assert service.requests == []
