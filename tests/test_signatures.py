# tests/test_signatures.py
import hashlib

import pytest

from clubgate_app.services.signatures import (
    PARAMS_PREFIXED,
    RobokassaSignature,
    event_signature,
    filter_custom_params,
    md5_signature,
    verify_event_signature,
)


def test_md5_signature_sorts_custom_params():
    sig = md5_signature(["100.00", "inv-1", "pass2"], {"b": "2", "a": "1"})
    assert sig == hashlib.md5(b"100.00:inv-1:pass2:a=1:b=2").hexdigest()


def test_md5_signature_without_params():
    assert md5_signature(["x", "y"]) == hashlib.md5(b"x:y").hexdigest()


def test_result_signature_is_case_insensitive():
    signer = RobokassaSignature("shop", "pass1", "pass2")
    sig = signer.result("100.00", "inv-1", {"Shp_user_id": "42"})
    assert signer.verify_result("100.00", "inv-1", sig.upper(), {"Shp_user_id": "42"})
    assert signer.verify_result("100.00", "inv-1", sig, {"Shp_user_id": "42"})


def test_tampered_values_fail():
    signer = RobokassaSignature("shop", "pass1", "pass2")
    sig = signer.result("100.00", "inv-1", {"Shp_user_id": "42"})
    assert not signer.verify_result("1.00", "inv-1", sig, {"Shp_user_id": "42"})
    assert not signer.verify_result("100.00", "inv-1", sig, {"Shp_user_id": "43"})
    flipped = sig[:-1] + ("0" if sig[-1] != "0" else "1")
    assert not signer.verify_result("100.00", "inv-1", flipped, {"Shp_user_id": "42"})


def test_missing_parts_never_verify():
    signer = RobokassaSignature("shop", "pass1", "pass2")
    assert not signer.verify_result("", "inv-1", "abc")
    assert not signer.verify_result("100.00", None, "abc")
    assert not signer.verify_result("100.00", "inv-1", "")


def test_prefixed_mode_ignores_foreign_params():
    prefixed = RobokassaSignature("shop", "pass1", "pass2", params_mode=PARAMS_PREFIXED)
    sig = md5_signature(["100.00", "inv-1", "pass2"], {"Shp_user_id": "42"})
    params = {"Shp_user_id": "42", "IsTest": "1", "Culture": "ru"}
    assert prefixed.verify_result("100.00", "inv-1", sig, params)

    every = RobokassaSignature("shop", "pass1", "pass2")
    assert not every.verify_result("100.00", "inv-1", sig, params)


def test_signature_fields_never_signed():
    params = {"SignatureValue": "x", "crc": "y", "Shp_a": "1"}
    assert filter_custom_params(params) == {"Shp_a": "1"}


def test_unknown_param_mode_rejected():
    with pytest.raises(ValueError):
        filter_custom_params({}, mode="some")
    with pytest.raises(ValueError):
        RobokassaSignature("a", "b", "c", params_mode="nope")


def test_payment_signature_includes_receipt():
    signer = RobokassaSignature("shop", "pass1", "pass2")
    with_receipt = signer.payment("100.00", "inv-1", {}, receipt="%7B%7D")
    assert with_receipt == hashlib.md5(b"shop:100.00:inv-1:%7B%7D:pass1").hexdigest()
    assert signer.payment("100.00", "inv-1") == hashlib.md5(b"shop:100.00:inv-1:pass1").hexdigest()


def test_event_signature_exact_compare():
    sig = event_signature("success", "ABC", "secret")
    assert verify_event_signature("success", "ABC", sig, "secret")
    assert not verify_event_signature("success", "ABC", sig.upper(), "secret")
    assert not verify_event_signature("success", "ABD", sig, "secret")


def test_event_signature_needs_secret_and_signature():
    sig = event_signature("success", "ABC", "secret")
    assert not verify_event_signature("success", "ABC", sig, "")
    assert not verify_event_signature("success", "ABC", None, "secret")
