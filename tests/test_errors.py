"""Tests for the error taxonomy."""

from managed_http import HttpServerError, HttpServerStartError, HttpServerStopError, ListenOptions


def test_wrap_keeps_source_and_context():
    source = OSError(98, "Address already in use")
    opts = ListenOptions(port=3334)
    err = HttpServerStartError.wrap(source, "error starting http server", {"opts": opts})

    assert isinstance(err, HttpServerStartError)
    assert isinstance(err, HttpServerError)
    assert str(err) == "error starting http server"
    assert err.source is source
    assert err.__cause__ is source
    assert err.context == {"opts": opts}
    assert repr(err) == "HttpServerStartError('error starting http server')"


def test_start_and_stop_errors_are_distinct():
    stop = HttpServerStopError.wrap(OSError("nope"), "error stopping http server")
    assert not isinstance(stop, HttpServerStartError)
    assert stop.context == {}
