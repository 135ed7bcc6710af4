import pytest

from discord_session import CloseCode, close_reason, should_reconnect


class TestShouldReconnect:
    def test_no_code(self) -> None:
        assert should_reconnect(None)

    @pytest.mark.parametrize('code', [1000, 1006, 1011, 3000, 5000])
    def test_websocket_codes(self, code: int) -> None:
        assert should_reconnect(code)

    def test_unknown_discord_code(self) -> None:
        assert should_reconnect(4999)

    @pytest.mark.parametrize('code', [
        CloseCode.AUTHENTICATION_FAILED, CloseCode.INVALID_SHARD,
        CloseCode.SHARDING_REQUIRED, CloseCode.INVALID_API_VERSION,
        CloseCode.INVALID_INTENTS, CloseCode.DISALLOWED_INTENTS,
    ])
    def test_fatal(self, code: CloseCode) -> None:
        assert not should_reconnect(code)
        assert not should_reconnect(int(code))

    @pytest.mark.parametrize('code', [
        CloseCode.GENERIC_ERROR, CloseCode.INVALID_SEQ,
        CloseCode.RATE_LIMITED, CloseCode.SESSION_TIMED_OUT,
    ])
    def test_recoverable(self, code: CloseCode) -> None:
        assert should_reconnect(code)


class TestCloseReason:
    def test_known(self) -> None:
        assert close_reason(4004) == 'AUTHENTICATION_FAILED'

    def test_unknown(self) -> None:
        assert close_reason(1006) == 'UNKNOWN'

    def test_none(self) -> None:
        assert close_reason(None) == 'NO_STATUS'
