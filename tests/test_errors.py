from pklbridge.errors import EvalError, InternalError, PklError


def _kind(exc):
    try:
        raise exc
    except InternalError:
        return "internal"
    except EvalError:
        return "eval"
    except PklError:
        return "pkl"


def test_eval_error_message_is_output():
    err = EvalError("boom output")
    assert str(err) == "boom output"
    assert err.error_output == "boom output"


def test_eval_error_is_pkl_error():
    err = EvalError("x")
    assert isinstance(err, PklError)
    assert err.error_output == "x"
    assert str(err) == "x"


def test_internal_error_message_wraps_cause():
    cause = ValueError("bad thing")
    err = InternalError(cause)
    assert str(err) == "an internal error occurred: bad thing"
    assert err.err is cause
    assert err.__cause__ is cause


def test_internal_error_from_string():
    err = InternalError("unable to find field `First` on pkl.Pair")
    assert str(err) == "an internal error occurred: unable to find field `First` on pkl.Pair"
    assert str(err.__cause__) == "unable to find field `First` on pkl.Pair"


def test_error_kinds_are_distinct():
    assert _kind(EvalError("a")) == "eval"
    assert _kind(InternalError("a")) == "internal"


def test_internal_error_caught_as_pkl_error():
    err = InternalError("a")
    assert isinstance(err, PklError)
    assert str(err) == "an internal error occurred: a"