"""
Unit Tests for the Notification Fanout

Tests cover:
1. Per-user delivery across several connections
2. Broadcast to authenticated and anonymous connections
3. Unregistering and re-binding connections
4. Dropping connections that fail to deliver
"""

from decimal import Decimal
from uuid import uuid4

from notifications import ConnectionRegistry, MarketResultEvent, WalletUpdateEvent


class Recorder:
    def __init__(self):
        self.payloads = []

    def send(self, payload: dict) -> None:
        self.payloads.append(payload)


class Broken:
    def send(self, payload: dict) -> None:
        raise ConnectionResetError("peer went away")


def _wallet_event(user_id):
    return WalletUpdateEvent(
        user_id=user_id,
        amount=Decimal("50.00"),
        new_balance=Decimal("1050.00"),
        message="Your wallet has been credited with 50.00",
    )


def _result_event():
    return MarketResultEvent(market_id=uuid4(), result="47", message="Market result has been declared: 47")


class TestNotifyUser:
    """Tests for per-user delivery."""

    def test_every_connection_of_the_user_receives(self):
        registry = ConnectionRegistry()
        user_id = uuid4()
        phone, laptop, other = Recorder(), Recorder(), Recorder()
        registry.register(phone, user_id)
        registry.register(laptop, user_id)
        registry.register(other, uuid4())

        registry.notify_user(user_id, _wallet_event(user_id))

        assert len(phone.payloads) == 1
        assert len(laptop.payloads) == 1
        assert other.payloads == []

    def test_payload_is_json_ready(self):
        registry = ConnectionRegistry()
        user_id = uuid4()
        conn = Recorder()
        registry.register(conn, user_id)

        registry.notify_user(user_id, _wallet_event(user_id))

        payload = conn.payloads[0]
        assert payload["type"] == "wallet_update"
        assert payload["user_id"] == str(user_id)
        assert Decimal(payload["new_balance"]) == Decimal("1050.00")

    def test_unknown_user_is_a_no_op(self):
        registry = ConnectionRegistry()
        registry.notify_user(uuid4(), _wallet_event(uuid4()))


class TestBroadcast:
    """Tests for broadcast delivery."""

    def test_reaches_anonymous_connections(self):
        registry = ConnectionRegistry()
        anonymous, bound = Recorder(), Recorder()
        registry.register(anonymous)
        registry.register(bound, uuid4())

        registry.broadcast(_result_event())

        assert anonymous.payloads[0]["type"] == "market_result"
        assert bound.payloads[0]["result"] == "47"


class TestRegistration:
    """Tests for connection bookkeeping."""

    def test_unregister_stops_delivery(self):
        registry = ConnectionRegistry()
        user_id = uuid4()
        conn = Recorder()
        registry.register(conn, user_id)
        registry.unregister(conn)

        registry.notify_user(user_id, _wallet_event(user_id))
        registry.broadcast(_result_event())

        assert conn.payloads == []
        assert registry.connections_for(user_id) == []

    def test_rebinding_moves_connection(self):
        registry = ConnectionRegistry()
        first, second = uuid4(), uuid4()
        conn = Recorder()
        registry.register(conn, first)
        registry.bind(conn, second)

        assert registry.connections_for(first) == []
        assert registry.connections_for(second) == [conn]

    def test_failed_send_drops_connection_and_continues(self):
        registry = ConnectionRegistry()
        user_id = uuid4()
        broken, healthy = Broken(), Recorder()
        registry.register(broken, user_id)
        registry.register(healthy, user_id)

        registry.notify_user(user_id, _wallet_event(user_id))

        assert len(healthy.payloads) == 1
        assert registry.connections_for(user_id) == [healthy]
        assert broken not in registry.all_connections()
