import pytest

from ucan_inspector.decoder.envelope import (
    EnvelopeKind,
    UcanFields,
    classify,
    is_invocation,
    is_ucan,
)

from ucan_fixtures import DID_WEB_BYTES, ED25519_DID_BYTES, make_cid, make_ucan


def test_minimal_ucan_is_detected():
    assert is_ucan(make_ucan())


def test_empty_capability_list_still_counts():
    assert is_ucan(make_ucan(att=[]))


@pytest.mark.parametrize(
    "value",
    [
        make_ucan(iss="did:web:up.storacha.network"),
        make_ucan(aud=None),
        make_ucan(att={"can": "store/add"}),
        {"iss": DID_WEB_BYTES, "aud": ED25519_DID_BYTES},
        [make_ucan()],
        b"\x9d\x1a",
        None,
    ],
)
def test_values_without_the_ucan_shape_are_rejected(value):
    assert not is_ucan(value)


@pytest.mark.parametrize("key", ["invocation", "task", "capabilities"])
def test_invocation_markers(key):
    assert is_invocation({key: {"run": "store/add"}})


def test_invocation_needs_a_mapping():
    assert not is_invocation(["task"])
    assert not is_invocation("task")
    assert not is_invocation({"tasks": []})


def test_ucan_wins_over_invocation_markers():
    value = make_ucan(task={"run": "store/add"})

    envelope = classify(value)

    assert envelope.kind is EnvelopeKind.UCAN
    assert envelope.is_ucan
    assert not envelope.is_invocation
    assert envelope.value is value


def test_classify_invocation_and_neither():
    assert classify({"task": "upload"}).kind is EnvelopeKind.INVOCATION
    assert classify({"task": "upload"}).ucan is None
    assert classify({"note": "hello"}).kind is EnvelopeKind.NEITHER
    assert classify(42).kind is EnvelopeKind.NEITHER


def test_ucan_fields_view():
    proof = make_cid(b"proof")
    value = make_ucan(prf=[proof], s=b"\x01\x02", exp=1700000000)

    fields = classify(value).ucan

    assert isinstance(fields, UcanFields)
    assert fields.iss == DID_WEB_BYTES
    assert fields.aud == ED25519_DID_BYTES
    assert fields.prf == (proof,)
    assert fields.s == b"\x01\x02"
    assert fields.v == "0.9.1"
    assert not fields.inherits_expiration


def test_missing_expiration_is_inherited():
    fields = UcanFields.from_mapping(make_ucan())

    assert fields.inherits_expiration
    assert fields.prf == ()
