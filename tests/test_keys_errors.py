"""Object key helpers and error classification."""

from datetime import datetime

import pytest

from storeledger.common.errors import (
    ErrorKind,
    LedgerConflict,
    LedgerEntryNotFound,
    ObjectNotFound,
    ObjectStoreError,
    UploadPolicyViolation,
    classify,
    public_message,
)
from storeledger.common.keys import (
    attachment_keys,
    build_thumbnail_key,
    build_user_object_key,
    key_belongs_to,
    owner_of,
    sanitize_filename,
)

# ── Keys ──────────────────────────────────────────────────────


def test_sanitize_filename():
    assert sanitize_filename("Lecture 3 (final).mp3") == "Lecture_3__final_.mp3"
    assert sanitize_filename("résumé.pdf") == "r_sum_.pdf"
    assert sanitize_filename("ok-name_1.txt") == "ok-name_1.txt"
    assert sanitize_filename("   ") == "file"


def test_build_user_object_key_layout():
    key = build_user_object_key(
        "u1", "chat_attachments", "my photo.png", object_id="1234", now=datetime(2026, 3, 9)
    )
    assert key == "users/u1/chat_attachments/2026/03/1234-my_photo.png"


def test_build_user_object_key_unique_ids():
    assert build_user_object_key("u1", "avatars", "a.png") != build_user_object_key("u1", "avatars", "a.png")


def test_build_user_object_key_unknown_category():
    with pytest.raises(ValueError):
        build_user_object_key("u1", "secrets", "a.png")


def test_thumbnail_key():
    assert build_thumbnail_key("users/u1/x.png") == "users/u1/x.png.thumb.webp"
    assert build_thumbnail_key("users/u1/x.png", "jpg") == "users/u1/x.png.thumb.jpg"


def test_ownership():
    key = "users/u1/rubrics/2026/10/abc-r.pdf"
    assert key_belongs_to("u1", key)
    assert not key_belongs_to("u", key)
    assert not key_belongs_to("u2", key)
    assert owner_of(key) == "u1"
    assert owner_of("tmp/u1/x") is None
    assert owner_of("users//x") is None


def test_attachment_keys_skips_missing_thumbnails():
    pairs = [("a", "a.thumb.webp"), ("b", None), ("", None)]
    assert attachment_keys(pairs) == ["a", "a.thumb.webp", "b"]


# ── Errors ────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "exc, kind, status",
    [
        (UploadPolicyViolation("over quota"), ErrorKind.POLICY_VIOLATION, 402),
        (ObjectNotFound("persistent", "k"), ErrorKind.NOT_FOUND, 404),
        (LedgerEntryNotFound("k"), ErrorKind.NOT_FOUND, 404),
        (LedgerConflict("k", 5), ErrorKind.CONFLICT, 409),
        (ObjectStoreError("boom"), ErrorKind.INTERNAL, 500),
        (RuntimeError("boom"), ErrorKind.INTERNAL, 500),
    ],
)
def test_classify(exc, kind, status):
    assert classify(exc) is kind
    assert classify(exc).http_status == status


def test_public_message_hides_internal_details():
    assert public_message(ObjectStoreError("secret endpoint down")) == "Internal server error"
    assert public_message(KeyError("x")) == "Internal server error"
    assert public_message(UploadPolicyViolation("Storage account not found")) == "Storage account not found"
    assert public_message(ObjectNotFound("persistent", "k")) == "Object not found in store: persistent/k"
