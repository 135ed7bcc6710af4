import pytest

from discord_session import MISSING, Message, parse_snowflake


class TestSnowflake:
    def test_string(self) -> None:
        assert parse_snowflake('175928847299117063') == 175928847299117063

    def test_int(self) -> None:
        assert parse_snowflake(175928847299117063) == 175928847299117063

    @pytest.mark.parametrize('value', [
        None, True, 1.5, 'abc', '-1', '+1', ' 12', '1_0', '', str(1 << 64), [], {},
    ])
    def test_invalid(self, value) -> None:
        with pytest.raises(ValueError):
            parse_snowflake(value)


class TestMissing:
    def test_falsy(self) -> None:
        assert not MISSING

    def test_distinct_from_none(self) -> None:
        assert MISSING is not None
        assert MISSING != None  # noqa: E711

    def test_repr(self) -> None:
        assert repr(MISSING) == 'MISSING'


class TestMessage:
    def test_absent_vs_null(self) -> None:
        absent = Message.from_payload({'id': '1', 'channel_id': '2'})
        null = Message.from_payload({'id': '1', 'channel_id': '2', 'edited_timestamp': None})

        assert absent.edited_timestamp is MISSING
        assert null.edited_timestamp is None
        assert absent != null
