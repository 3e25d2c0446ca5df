from __future__ import annotations

import pytest

from core.dedup import message_fingerprint


def test_fingerprint_is_scoped_to_chat() -> None:
    assert message_fingerprint(-100123, 10) == "-100123:10"
    assert message_fingerprint(-100123, 10) != message_fingerprint(-100456, 10)


def test_fingerprint_requires_both_parts() -> None:
    with pytest.raises(ValueError):
        message_fingerprint("", 10)
    with pytest.raises(ValueError):
        message_fingerprint(-100123, " ")
