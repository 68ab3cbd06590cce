from opskit.tokenset import AtomicTokenSet, constant_time_equal


def test_new_set_is_empty_and_denies():
    s = AtomicTokenSet()
    assert s.is_empty()
    assert not s.contains("token")
    assert not s.contains("")


def test_update_accepts_only_listed_tokens():
    s = AtomicTokenSet()
    s.update(["token", "secret"])
    assert not s.is_empty()
    assert s.contains("token")
    assert s.contains("secret")
    assert not s.contains("placeholder")
    assert "token" in s


def test_update_strips_and_ignores_blank_entries():
    s = AtomicTokenSet()
    s.update([" token ", "", "   "])
    assert s.contains("token")
    assert not s.contains(" token ")
    assert not s.contains("")


def test_update_with_only_blanks_is_empty():
    s = AtomicTokenSet()
    s.update(["", "  "])
    assert s.is_empty()
    assert not s.contains("")


def test_update_none_clears():
    s = AtomicTokenSet()
    s.update(["token"])
    s.update(None)
    assert s.is_empty()
    assert not s.contains("token")


def test_allow_all_then_update_resets():
    s = AtomicTokenSet()
    s.allow_all()
    assert not s.is_empty()
    assert s.contains("anything")
    assert s.contains("")
    s.update(["token"])
    assert not s.contains("anything")
    assert s.contains("token")


def test_constant_time_equal():
    assert constant_time_equal("token", "token")
    assert not constant_time_equal("token", "tokens")
    assert not constant_time_equal("token", "tokeN")
    assert constant_time_equal("", "")
    assert constant_time_equal("é", "é")
    assert not constant_time_equal("é", "e")