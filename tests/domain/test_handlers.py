"""Tests for HandlerRegistry registration rules."""

import pytest

from multibot.domain.handlers import HandlerRegistry


class TestRegistration:
    def test_direct_registration(self):
        handlers = HandlerRegistry()
        fn = lambda: "World!"
        assert handlers.on_text("hello", fn) is fn
        assert handlers.exact["hello"] is fn

    def test_decorator_registration(self):
        handlers = HandlerRegistry()

        @handlers.on_command("!echo")
        def echo(req):
            return req.text

        @handlers.on_catchall
        def log_all(req):
            return ""

        assert handlers.commands["!echo"] is echo
        assert handlers.catchall == [log_all]

    def test_later_exact_handler_wins(self):
        handlers = HandlerRegistry()
        handlers.on_text("hi", lambda: "first")
        handlers.on_text("hi", lambda: "second")
        assert handlers.exact["hi"]() == "second"
        assert len(handlers) == 1

    def test_catchall_order_preserved(self):
        handlers = HandlerRegistry()
        a, b = (lambda r: "a"), (lambda r: "b")
        handlers.on_catchall(a)
        handlers.on_catchall(b)
        assert handlers.catchall == [a, b]

    def test_len_counts_every_table(self):
        handlers = HandlerRegistry()
        handlers.on_text("x", lambda: "")
        handlers.on_catchall(lambda r: "")
        handlers.on_extended(lambda m: "")
        handlers.on_command("!x", lambda r: "")
        handlers.on_image(lambda p, r: "")
        assert len(handlers) == 5

    @pytest.mark.parametrize("word", ["", "!two words"])
    def test_invalid_command_word(self, word):
        with pytest.raises(ValueError):
            HandlerRegistry().on_command(word, lambda r: "")


class TestFreeze:
    def test_register_after_freeze_fails(self):
        handlers = HandlerRegistry()
        handlers.freeze()
        assert handlers.frozen is True
        with pytest.raises(RuntimeError, match="frozen"):
            handlers.on_text("late", lambda: "")
        with pytest.raises(RuntimeError):
            handlers.on_image(lambda p, r: "")
