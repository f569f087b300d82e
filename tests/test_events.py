import json

import pytest

from odali.core import events


def test_build_frame_uses_wire_names():
    frame = events.build_frame(events.IncomingCall(from_="alice", room_name="room-1"))
    assert frame == {"event": "incomingCall", "data": {"from": "alice", "roomName": "room-1"}}


def test_parse_each_client_event():
    reg = events.parse_client_frame('{"event":"register","data":{"username":"Carol"}}')
    assert isinstance(reg, events.RegisterSession) and reg.username == "Carol"

    chat = events.parse_client_frame(
        json.dumps({"event": "chatMessage", "data": {"from": "a", "to": "b", "text": "hi", "time": "12:00"}})
    )
    assert isinstance(chat, events.SendChat) and chat.from_ == "a"

    call = events.parse_client_frame(
        json.dumps({"event": "callUser", "data": {"from": "a", "to": "b", "roomName": "r"}})
    )
    assert isinstance(call, events.CallUser) and call.room_name == "r"

    answer = events.parse_client_frame(
        json.dumps({"event": "answerCall", "data": {"from": "b", "to": "a", "roomName": "r", "accepted": False}})
    )
    assert isinstance(answer, events.AnswerCall) and answer.accepted is False


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[]",
        '{"event":"nope","data":{}}',
        '{"event":"callUser","data":{"from":"a","to":"b"}}',
        '{"event":"callUser","data":{"from":"a","to":"b","roomName":""}}',
        '{"event":"register","data":"carol"}',
    ],
)
def test_parse_rejects_malformed(raw):
    with pytest.raises(ValueError):
        events.parse_client_frame(raw)
