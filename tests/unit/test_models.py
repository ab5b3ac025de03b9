from __future__ import annotations

import re

import pytest
from pydantic import ValidationError

from chatwal.domain.dtos import SubmitMessageIn
from chatwal.domain.models import (
    ConversationAggregate, Escrow, MessageRecord, Party, new_id,
)


def test_generated_ids_have_prefix_timestamp_and_suffix():
    ids = {new_id("msg") for _ in range(50)}
    assert len(ids) == 50
    assert all(re.fullmatch(r"msg_\d{13}_[0-9a-f]{9}", i) for i in ids)


def test_submit_payload_requires_a_sender_and_a_room():
    with pytest.raises(ValidationError):
        SubmitMessageIn(room_id="r1", message="hi")
    with pytest.raises(ValidationError):
        SubmitMessageIn(room_id="", message="hi", sender_id="u1")
    with pytest.raises(ValidationError):
        SubmitMessageIn(room_id="r1", message="x" * 2001, sender_id="u1")


def test_product_context_only_when_product_fields_present():
    bare = SubmitMessageIn(room_id="r1", sender_id="u1").to_record()
    assert bare.product is None

    rec = SubmitMessageIn(
        room_id="r1", sender_id="u1", product_title="Lamp", product_price=12.5,
    ).to_record()
    assert rec.product.title == "Lamp" and rec.product.price == 12.5


def test_escrow_id_generated_only_for_positive_amounts():
    assert Escrow(amount=0).escrow_id is None
    assert Escrow(amount=10).escrow_id.startswith("escrow_")
    assert Escrow(amount=10, escrow_id="escrow_given").escrow_id == "escrow_given"
    with pytest.raises(ValidationError):
        Escrow(amount=-1)


def test_conversation_last_message_preview_is_truncated():
    conv = ConversationAggregate(room_id="r1")
    msg = MessageRecord(
        room_id="r1", content={"text": "y" * 500}, sender=Party(email="a@example.com"),
    )
    conv.update_last_message(msg)
    conv.update_last_message(msg)

    assert conv.metadata.message_count == 2
    assert len(conv.metadata.last_message.text) == 200
    assert conv.metadata.last_message.sender == "a@example.com"
    assert conv.metadata.last_message_id == msg.message_id


def test_escrow_totals_pending_then_completed():
    conv = ConversationAggregate(room_id="r1")
    conv.update_escrow_info(Escrow(amount=100, status="pending"))
    conv.update_escrow_info(Escrow(amount=150, status="completed"))
    conv.update_escrow_info(Escrow(amount=0, status="pending"))

    totals = conv.escrow
    assert totals.total_amount == 250
    assert totals.completed_amount == 150
    assert totals.pending_amount == 0  # floored
    assert len(totals.active_escrows) == 2


def test_participants_are_unique_by_user_id():
    conv = ConversationAggregate(room_id="r1")
    conv.add_participant(Party(user_id="u1", email="a@example.com"))
    conv.add_participant(Party(user_id="u1", email="a@example.com"))
    conv.add_participant(Party(email="anon@example.com"))
    assert [p.user_id for p in conv.participants] == ["u1"]
