"""Tests for Scope.watch and the digest loop."""

import logging

import pytest

from digestx import DigestLimitError, PhaseConflictError, Scope


def _collecting_scope():
    errors = []
    scope = Scope(exception_handler=lambda exc, cause: errors.append((exc, cause)))
    return scope, errors


class TestWatch:
    def test_listener_called_on_first_digest(self):
        scope = Scope()
        scope.value = "a"
        calls = []
        scope.watch(lambda s: s.value, lambda new, old, s: calls.append((new, old)))
        scope.digest()
        assert calls == [("a", "a")]

    def test_watch_fn_receives_scope(self):
        scope = Scope()
        seen = []
        scope.watch(lambda s: seen.append(s))
        scope.digest()
        assert seen[0] is scope

    def test_listener_called_when_value_changes(self):
        scope = Scope()
        scope.counter = 0
        scope.value = "a"

        def _count(new, old, s):
            s.counter += 1

        scope.watch(lambda s: s.value, _count)
        scope.digest()
        assert scope.counter == 1
        scope.digest()
        assert scope.counter == 1
        scope.value = "b"
        scope.digest()
        assert scope.counter == 2

    def test_first_value_none_still_fires(self):
        scope = Scope()
        calls = []
        scope.watch(lambda s: getattr(s, "missing", None), lambda new, old, s: calls.append((new, old)))
        scope.digest()
        assert calls == [(None, None)]

    def test_unchanged_value_fires_only_once(self):
        scope = Scope()
        scope.value = 42
        calls = []
        scope.watch(lambda s: s.value, lambda new, old, s: calls.append((new, old)))
        for _ in range(3):
            scope.digest()
        assert calls == [(42, 42)]

    def test_listener_is_optional(self):
        scope = Scope()
        seen = []
        scope.watch(lambda s: seen.append("ran"))
        scope.digest()
        assert seen

    def test_rebuilt_strings_are_unchanged(self):
        """Fresh but equal immutable values do not count as a change."""
        scope = Scope()
        scope.name = "jane"
        calls = []
        scope.watch(lambda s: s.name.upper(), lambda new, old, s: calls.append(new))
        scope.digest()
        scope.digest()
        assert calls == ["JANE"]

    def test_chained_watches_in_one_digest(self):
        scope = Scope()
        scope.name = "Jane"

        def _initial(new, old, s):
            if new:
                s.initial = new[0] + "."

        def _upper(new, old, s):
            if new:
                s.upper = new.upper()

        scope.watch(lambda s: getattr(s, "upper", None), _initial)
        scope.watch(lambda s: s.name, _upper)

        scope.digest()
        assert scope.initial == "J."

        scope.name = "Bob"
        scope.digest()
        assert scope.initial == "B."

    def test_nan_is_stable(self):
        scope = Scope()
        calls = []
        scope.watch(lambda s: float("nan"), lambda new, old, s: calls.append(new))
        scope.digest()
        scope.digest()
        assert len(calls) == 1

    def test_value_eq_detects_nested_mutation(self):
        scope = Scope()
        scope.items = [1, 2, 3]
        calls = []
        scope.watch(lambda s: s.items, lambda new, old, s: calls.append(list(new)), value_eq=True)
        scope.digest()
        assert len(calls) == 1
        scope.items.append(4)
        scope.digest()
        assert calls == [[1, 2, 3], [1, 2, 3, 4]]
        scope.digest()
        assert len(calls) == 2

    def test_identity_mode_ignores_nested_mutation(self):
        scope = Scope()
        scope.items = [1, 2, 3]
        calls = []
        scope.watch(lambda s: s.items, lambda new, old, s: calls.append(new))
        scope.digest()
        scope.items.append(4)
        scope.digest()
        assert len(calls) == 1


class TestDigestLimit:
    def test_gives_up_after_ten_iterations(self):
        scope = Scope()
        scope.a = 0
        scope.b = 0
        sweeps = []

        def _bump_b(new, old, s):
            s.b += 1

        def _bump_a(new, old, s):
            s.a += 1

        scope.watch(lambda s: sweeps.append(1) or s.a, _bump_b)
        scope.watch(lambda s: s.b, _bump_a)

        with pytest.raises(DigestLimitError) as info:
            scope.digest()
        assert info.value.ttl == 10
        assert len(sweeps) == 10
        assert scope.phase is None

    def test_custom_ttl(self):
        scope = Scope(ttl=3)
        scope.a = 0
        scope.watch(lambda s: s.a, lambda new, old, s: setattr(s, "a", s.a + 1))
        with pytest.raises(DigestLimitError, match="3 digest iterations"):
            scope.digest()

    def test_logs_warning(self, caplog):
        scope = Scope()
        scope.a = 0
        scope.watch(lambda s: s.a, lambda new, old, s: setattr(s, "a", s.a + 1))
        with caplog.at_level(logging.WARNING, logger="digestx.scope"):
            with pytest.raises(DigestLimitError):
                scope.digest()
        assert "did not stabilize" in caplog.text


class TestShortCircuit:
    def test_ends_when_last_dirty_watch_is_clean(self):
        scope = Scope()
        scope.values = list(range(100))
        executions = []

        for i in range(100):
            scope.watch(lambda s, i=i: executions.append(i) or s.values[i])

        scope.digest()
        assert len(executions) == 200

        # Watches run newest first, so index 99 is the first one visited.
        scope.values[99] = 420
        scope.digest()
        assert len(executions) == 301

    def test_watch_added_in_listener_still_runs(self):
        scope = Scope()
        scope.value = "abc"
        calls = []

        def _add_inner(new, old, s):
            s.watch(lambda s: s.value, lambda new, old, s: calls.append(new))

        scope.watch(lambda s: s.value, _add_inner)
        scope.digest()
        assert calls == ["abc"]


class TestExceptions:
    def test_watch_fn_exception_is_reported_and_skipped(self):
        scope, errors = _collecting_scope()
        scope.value = "a"
        calls = []

        def _boom(s):
            raise ValueError("boom")

        scope.watch(_boom)
        scope.watch(lambda s: s.value, lambda new, old, s: calls.append(new))
        scope.digest()
        assert calls == ["a"]
        assert isinstance(errors[0][0], ValueError)
        assert errors[0][1] == "watch function"

    def test_throwing_watch_is_retried_every_sweep(self):
        scope, errors = _collecting_scope()
        scope.broken = True
        calls = []

        def _maybe_boom(s):
            if s.broken:
                raise ValueError("still broken")
            return "fixed"

        scope.watch(_maybe_boom, lambda new, old, s: calls.append((new, old)))
        scope.digest()
        assert calls == []
        scope.broken = False
        scope.digest()
        assert calls == [("fixed", "fixed")]

    def test_listener_exception_is_reported_and_skipped(self):
        scope, errors = _collecting_scope()
        scope.value = "a"
        calls = []

        def _boom(new, old, s):
            raise RuntimeError("listener")

        scope.watch(lambda s: s.value, _boom)
        scope.watch(lambda s: s.value, lambda new, old, s: calls.append(new))
        scope.digest()
        assert calls == ["a"]
        assert [cause for _, cause in errors] == ["watch listener"]

    def test_default_handler_logs(self, caplog):
        scope = Scope()

        def _boom(s):
            raise ValueError("logged")

        scope.watch(_boom)
        with caplog.at_level(logging.ERROR, logger="digestx.scope"):
            scope.digest()
        assert "Exception in watch function" in caplog.text
        assert "logged" in caplog.text


class TestDeregistration:
    def test_deregister_stops_watch(self):
        scope = Scope()
        scope.value = "a"
        calls = []
        deregister = scope.watch(lambda s: s.value, lambda new, old, s: calls.append(new))
        scope.digest()
        deregister()
        scope.value = "b"
        scope.digest()
        assert calls == ["a"]

    def test_deregister_is_idempotent(self):
        scope = Scope()
        deregister = scope.watch(lambda s: 1)
        deregister()
        deregister()

    def test_self_deregistration_during_digest(self):
        scope = Scope()
        scope.value = "abc"
        order = []

        scope.watch(lambda s: order.append("first") or s.value)
        deregister = None

        def _second(s):
            order.append("second")
            deregister()

        deregister = scope.watch(_second)
        scope.watch(lambda s: order.append("third") or s.value)

        scope.digest()
        assert order[:3] == ["third", "second", "first"]
        assert "second" not in order[3:]

    def test_watch_removes_another_during_digest(self):
        scope = Scope()
        scope.value = "abc"
        scope.counter = 0

        def _increment(new, old, s):
            s.counter += 1

        # Registered oldest first, so run newest first: remover, victim, counter.
        scope.watch(lambda s: s.value, _increment)
        remove_victim = scope.watch(lambda s: None)
        scope.watch(lambda s: s.value, lambda new, old, s: remove_victim())

        scope.digest()
        assert scope.counter == 1

    def test_removing_several_during_digest(self):
        scope = Scope()
        scope.value = "abc"
        scope.counter = 0

        def _increment(new, old, s):
            s.counter += 1

        remove_older = scope.watch(lambda s: s.value, _increment)
        remove_newer = None

        def _remove_both(new, old, s):
            remove_newer()
            remove_older()

        remove_newer = scope.watch(lambda s: s.value, _remove_both)

        scope.digest()
        assert scope.counter == 0


class TestPhase:
    def test_phase_during_digest_and_apply(self):
        scope = Scope()
        scope.value = [1, 2, 3]
        seen = {}

        def _in_watch(s):
            seen["watch"] = s.phase
            return s.value

        def _in_listener(new, old, s):
            seen["listener"] = s.phase

        scope.watch(_in_watch, _in_listener)
        scope.apply(lambda s: seen.setdefault("apply", s.phase))

        assert seen == {"apply": "$apply", "watch": "$digest", "listener": "$digest"}
        assert scope.phase is None

    def test_reentrant_digest_fails(self):
        scope, errors = _collecting_scope()
        scope.value = 1
        scope.watch(lambda s: s.value, lambda new, old, s: s.digest())
        scope.digest()
        assert isinstance(errors[0][0], PhaseConflictError)
        assert errors[0][0].phase == "$digest"

    def test_reentrant_apply_fails_fast(self):
        scope = Scope()

        def _nested(s):
            s.apply(lambda inner: None)

        with pytest.raises(PhaseConflictError, match=r"\$apply already in progress"):
            scope.apply(_nested)
        assert scope.phase is None


class _Point:
    def __init__(self, x):
        self.x = x


class TestValueEqObjects:
    def test_plain_object_settles_and_detects_mutation(self):
        scope = Scope()
        scope.point = _Point(1)
        calls = []
        scope.watch(lambda s: s.point, lambda new, old, s: calls.append(new.x), value_eq=True)
        scope.digest()
        assert calls == [1]

        scope.point.x = 2
        scope.digest()
        assert calls == [1, 2]

        scope.digest()
        assert calls == [1, 2]

    def test_list_of_objects(self):
        scope = Scope()
        scope.points = [_Point(1)]
        calls = []
        scope.watch(
            lambda s: s.points,
            lambda new, old, s: calls.append([point.x for point in new]),
            value_eq=True,
        )
        scope.digest()
        scope.points[0].x = 5
        scope.digest()
        scope.digest()
        assert calls == [[1], [5]]
