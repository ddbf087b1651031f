import pytest

from chatty.errors import IdentityError, PermissionDeniedError, SelfChatError
from chatty.utils.identity import chat_id, counterpart_id, participants_from_chat_id


def test_chat_id_is_symmetric():
    assert chat_id("alice", "bob") == chat_id("bob", "alice") == "alice_bob"


def test_chat_id_is_distinct_for_different_pairs():
    ids = {
        chat_id("alice", "bob"),
        chat_id("alice", "carol"),
        chat_id("bob", "carol"),
    }
    assert len(ids) == 3


def test_chat_id_rejects_self_chat():
    with pytest.raises(SelfChatError):
        chat_id("alice", "alice")


@pytest.mark.parametrize("bad", ["", "   ", None, "has_underscore"])
def test_chat_id_rejects_malformed_participants(bad):
    with pytest.raises(IdentityError):
        chat_id(bad, "bob")


def test_participants_round_trip():
    assert participants_from_chat_id(chat_id("zed", "amy")) == ("amy", "zed")


@pytest.mark.parametrize("bad", ["bob_alice", "alice", "a_b_c", "alice_alice", "_bob"])
def test_participants_rejects_non_canonical_ids(bad):
    with pytest.raises(IdentityError):
        participants_from_chat_id(bad)


def test_counterpart_id():
    cid = chat_id("alice", "bob")
    assert counterpart_id(cid, "alice") == "bob"
    assert counterpart_id(cid, "bob") == "alice"


def test_counterpart_id_rejects_outsiders():
    with pytest.raises(PermissionDeniedError):
        counterpart_id(chat_id("alice", "bob"), "mallory")
