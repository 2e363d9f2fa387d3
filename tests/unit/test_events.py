"""Tests for the event envelope model.

Tests for:
- Wire type parsing into EventKind
- Strict frame decoding and payload validation
- Lenient decoding used by the receive loop
- Frame encoding
"""

from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from storefront_realtime.domain.model.events import (
    LIFECYCLE_KINDS,
    ControlFrame,
    Envelope,
    EventKind,
    MalformedEnvelopeError,
    OrderStatusPayload,
    OutboundEvent,
    decode_envelope,
    decode_frame,
    encode_frame,
    to_jsonable,
)


class TestEventKindParse:
    """Tests for EventKind.parse."""

    def test_known_type(self) -> None:
        assert EventKind.parse("order:status_updated") is EventKind.ORDER_STATUS_UPDATED

    def test_unknown_type_is_unrecognized(self) -> None:
        assert EventKind.parse("inventory:restocked") is EventKind.UNRECOGNIZED

    @pytest.mark.parametrize("kind", sorted(LIFECYCLE_KINDS, key=lambda k: k.value))
    def test_lifecycle_names_are_reserved(self, kind: EventKind) -> None:
        """Lifecycle names arriving on the wire must not parse as lifecycle kinds."""
        assert EventKind.parse(kind.value) is EventKind.UNRECOGNIZED

    def test_unrecognized_literal_is_not_a_wire_type(self) -> None:
        assert EventKind.parse("unrecognized") is EventKind.UNRECOGNIZED

    def test_outbound_events_do_not_overlap_inbound_taxonomy(self) -> None:
        inbound = {kind.value for kind in EventKind}
        assert not inbound & {event.value for event in OutboundEvent}


class TestDecodeFrame:
    """Tests for strict frame decoding."""

    def test_decodes_json_text(self) -> None:
        raw = json.dumps({"type": "product:created", "payload": {"_id": "p1", "name": "Rice"}})

        envelope = decode_frame(raw)

        assert envelope.type == "product:created"
        assert envelope.kind is EventKind.PRODUCT_CREATED
        assert envelope.payload == {"_id": "p1", "name": "Rice"}
        assert envelope.is_recognized

    def test_decodes_mapping(self) -> None:
        envelope = decode_frame({"type": "faq:created", "payload": {"question": "Q?"}})
        assert envelope.kind is EventKind.FAQ_CREATED

    def test_missing_payload_defaults_to_empty(self) -> None:
        envelope = decode_frame({"type": "system:test"})
        assert envelope.payload == {}

    def test_unknown_type_passes_through(self) -> None:
        envelope = decode_frame({"type": "inventory:restocked", "payload": {"sku": "A1"}})

        assert envelope.kind is EventKind.UNRECOGNIZED
        assert not envelope.is_recognized
        assert envelope.payload == {"sku": "A1"}

    def test_invalid_json_raises(self) -> None:
        with pytest.raises(MalformedEnvelopeError, match="not valid JSON"):
            decode_frame("{not json")

    def test_non_object_raises(self) -> None:
        with pytest.raises(MalformedEnvelopeError, match="JSON object"):
            decode_frame("[1, 2]")

    @pytest.mark.parametrize("frame", [{"payload": {}}, {"type": "", "payload": {}}, {"type": 5}])
    def test_missing_type_raises(self, frame: dict) -> None:
        with pytest.raises(MalformedEnvelopeError, match="no type"):
            decode_frame(frame)

    def test_non_object_payload_raises(self) -> None:
        with pytest.raises(MalformedEnvelopeError, match="must be an object"):
            decode_frame({"type": "product:created", "payload": "oops"})

    def test_payload_model_violation_raises(self) -> None:
        """order:status_updated requires an orderId."""
        with pytest.raises(MalformedEnvelopeError, match="Invalid payload"):
            decode_frame({"type": "order:status_updated", "payload": {"status": "shipped"}})

    def test_wallet_balance_must_be_numeric(self) -> None:
        with pytest.raises(MalformedEnvelopeError):
            decode_frame({"type": "wallet:balance_updated", "payload": {"newBalance": "lots"}})

    def test_extra_payload_fields_are_kept(self) -> None:
        envelope = decode_frame(
            {
                "type": "order:status_updated",
                "payload": {"orderId": "o1", "status": "shipped", "courier": "BlueDart"},
            }
        )

        parsed = envelope.parsed_payload()

        assert isinstance(parsed, OrderStatusPayload)
        assert parsed.order_id == "o1"
        assert envelope.payload["courier"] == "BlueDart"


class TestDecodeEnvelope:
    """Tests for lenient decoding."""

    def test_returns_envelope_for_valid_frame(self) -> None:
        envelope = decode_envelope('{"type": "cart:item_added", "payload": {"productId": "p1"}}')
        assert envelope is not None
        assert envelope.kind is EventKind.CART_ITEM_ADDED

    def test_returns_none_for_malformed_frame(self) -> None:
        assert decode_envelope("garbage") is None
        assert decode_envelope({"type": "product:deleted", "payload": {}}) is None


class TestEnvelope:
    """Tests for Envelope construction and encoding."""

    def test_create_from_kind(self) -> None:
        envelope = Envelope.create(EventKind.ADMIN_MESSAGE, {"message": "hi"})

        assert envelope.type == "admin:message"
        assert envelope.kind is EventKind.ADMIN_MESSAGE
        assert envelope.to_frame() == {"type": "admin:message", "payload": {"message": "hi"}}

    def test_create_copies_payload(self) -> None:
        payload = {"a": 1}
        envelope = Envelope.create("product:created", payload)
        payload["a"] = 2
        assert envelope.payload == {"a": 1}

    def test_parsed_payload_none_for_untyped_kind(self) -> None:
        assert Envelope.create(EventKind.PRODUCT_CREATED, {"x": 1}).parsed_payload() is None

    def test_admin_message_sender_alias(self) -> None:
        parsed = Envelope.create(
            EventKind.ADMIN_MESSAGE, {"message": "hello", "from": "Admin Support"}
        ).parsed_payload()
        assert parsed is not None
        assert parsed.sender == "Admin Support"


class TestEncoding:
    """Tests for encode_frame and to_jsonable."""

    def test_encode_frame_uses_enum_value(self) -> None:
        frame = json.loads(encode_frame(OutboundEvent.PRODUCT_VIEW, {"productId": "p1"}))
        assert frame == {"type": "product:view", "payload": {"productId": "p1"}}

    def test_encode_control_frame(self) -> None:
        assert json.loads(encode_frame(ControlFrame.PING, {}))["type"] == "ping"

    def test_datetimes_and_enums_are_serialized(self) -> None:
        when = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)
        result = to_jsonable({"at": when, "kind": EventKind.FAQ_CREATED, "n": 1})
        assert result == {"at": "2024-05-01T12:00:00+00:00", "kind": "faq:created", "n": 1}
