import json

import pytest

from counter_room.messages import (
    ChangeName,
    CounterUpdate,
    IncrementCounter,
    Join,
    Ping,
    ProbeAck,
    ProtocolError,
    UserJoined,
    UserList,
    UserRecord,
    decode,
    encode,
)


class TestDecode:
    def test_increment(self):
        assert isinstance(decode('{"type":"increment_counter"}'), IncrementCounter)

    def test_change_name(self):
        msg = decode('{"type":"change_name","name":"Ada"}')
        assert isinstance(msg, ChangeName)
        assert msg.name == "Ada"

    def test_join_reads_camel_case_user_id(self):
        msg = decode('{"type":"join","userId":"abc_123-X","name":"Ada"}')
        assert isinstance(msg, Join)
        assert msg.user_id == "abc_123-X"
        assert msg.name == "Ada"

    def test_join_without_id(self):
        msg = decode('{"type":"join"}')
        assert isinstance(msg, Join)
        assert msg.user_id is None

    def test_ping_keeps_integer_timestamp(self):
        msg = decode('{"type":"ping","timestamp":1700000000123}')
        assert isinstance(msg, Ping)
        assert msg.timestamp == 1700000000123
        assert isinstance(msg.timestamp, int)

    def test_client_pong_is_a_probe_ack(self):
        assert isinstance(decode('{"type":"pong"}'), ProbeAck)

    def test_extra_fields_are_ignored(self):
        assert isinstance(decode('{"type":"increment_counter","by":5}'), IncrementCounter)

    @pytest.mark.parametrize("msg_type", ["user_list", "counter_update", "dance"])
    def test_unknown_or_server_only_type_is_ignored(self, msg_type):
        assert decode(json.dumps({"type": msg_type})) is None

    @pytest.mark.parametrize(
        "text",
        [
            "not json",
            "[1, 2]",
            '"increment_counter"',
            "{}",
            '{"type": 7}',
            '{"type":"change_name"}',
            '{"type":"change_name","name":""}',
            '{"type":"change_name","name":42}',
            '{"type":"join","userId":"has spaces"}',
            '{"type":"ping","timestamp":"yesterday"}',
        ],
    )
    def test_malformed_frames_raise(self, text):
        with pytest.raises(ProtocolError):
            decode(text)


class TestEncode:
    def test_compact_camel_case(self):
        text = encode(CounterUpdate(user_id="u1", count=3))
        assert text == '{"type":"counter_update","userId":"u1","count":3}'

    def test_none_fields_are_omitted(self):
        assert json.loads(encode(UserJoined(user_id="u1"))) == {"type": "user_joined", "userId": "u1"}

    def test_user_list(self):
        text = encode(UserList(users=[UserRecord(id="u1", name="Zoë", count=2)]))
        # non-ASCII names go out as-is
        assert "Zoë" in text
        assert json.loads(text) == {"type": "user_list", "users": [{"id": "u1", "name": "Zoë", "count": 2}]}


def test_user_record_is_immutable():
    record = UserRecord(id="u1", name="Ada", count=0)
    with pytest.raises(Exception):
        record.count = 5


def test_user_record_rejects_negative_count():
    with pytest.raises(Exception):
        UserRecord(id="u1", name="Ada", count=-1)
