import os

import numpy as np
import pytest

import bounded_runner
import simulator_config
from bounded_runner import (
    MODES, make_engine, run_machine, run_to_end, simulate_random_inputs,
)
from example_machines import load_machine
from nondeterministic_machine import NonDeterministicEngine
from transition_index import ErrorKind, Outcome
from turing_machine import DeterministicEngine, MultiTapeEngine


def test_make_engine_follows_tape_count(palindrome, is_equal):
    assert isinstance(make_engine(palindrome), DeterministicEngine)
    assert isinstance(make_engine(is_equal), MultiTapeEngine)
    assert isinstance(make_engine(palindrome, mode="nondeterministic"), NonDeterministicEngine)
    with pytest.raises(ValueError):
        make_engine(palindrome, mode="quantum")
    assert MODES == ("deterministic", "multi", "nondeterministic")


@pytest.mark.parametrize("word", ["abba", "abc", "abcba", "ab"])
def test_stepwise_matches_bulk(palindrome, word):
    engine = make_engine(palindrome, word)
    while not engine.halted:
        engine.step()
    stepped = engine.result()

    bulk = run_machine(palindrome, word)
    assert bulk.outcome is stepped.outcome
    assert bulk.tape == stepped.tape
    assert bulk.head == stepped.head
    assert bulk.step_count == stepped.step_count
    assert bulk.history == stepped.history


@pytest.mark.parametrize("name, word, mode", [
    ("anbn", "aabb", "multi"),
    ("anbn", "aab", "multi"),
    ("equal_count", "abba", "multi"),
    ("equal_count", "aab", "multi"),
    ("contains_bb", "abba", "nondeterministic"),
    ("contains_bb", "abab", "nondeterministic"),
])
def test_stepwise_matches_bulk_other_engines(request, name, word, mode):
    machine = request.getfixturevalue(name)
    engine = make_engine(machine, word, mode)
    while not engine.halted:
        engine.step()
    stepped = engine.result()

    bulk = run_machine(machine, word, mode=mode)
    assert bulk.outcome is stepped.outcome
    assert bulk.tapes == stepped.tapes
    assert bulk.step_count == stepped.step_count


def test_palindrome_scenarios(palindrome):
    accepted = run_machine(palindrome, "abba")
    assert accepted.outcome is Outcome.ACCEPTED
    assert accepted.step_count < 200

    rejected = run_machine(palindrome, "abc")
    assert rejected.outcome is Outcome.REJECTED
    assert rejected.error is ErrorKind.NO_TRANSITION


def test_timeout_at_step_ceiling(loop):
    result = run_machine(loop, "ab")
    assert result.outcome is Outcome.TIMEOUT
    assert result.error is ErrorKind.TIMEOUT
    assert result.step_count == 200
    assert result.message == "step ceiling of 200 reached"


def test_explicit_step_ceiling(loop):
    assert run_machine(loop, "a", max_steps=7).step_count == 7
    assert run_machine(loop, "a", max_steps=0).outcome is Outcome.TIMEOUT


def test_step_ceiling_from_environment(loop, monkeypatch):
    monkeypatch.setenv("TM_MAX_STEPS", "12")
    assert run_machine(loop, "a").step_count == 12


def test_run_to_end_does_not_read_settings(loop, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("run_to_end loaded settings")

    monkeypatch.setattr(bounded_runner, "load_settings", fail)
    result = run_to_end(make_engine(loop, "a"))
    assert result.outcome is Outcome.TIMEOUT
    assert result.step_count == 200
    assert "TM_MAX_STEPS" not in os.environ


def test_run_to_end_ignores_env_file(loop, tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("TM_MAX_STEPS=5\n")
    monkeypatch.chdir(tmp_path)
    assert run_to_end(make_engine(loop, "a")).step_count == 200
    assert "TM_MAX_STEPS" not in os.environ


def test_random_inputs_load_settings_once(palindrome, monkeypatch):
    calls = []

    def counting(*args, **kwargs):
        calls.append(args)
        return simulator_config.load_settings(*args, **kwargs)

    monkeypatch.setattr(bounded_runner, "load_settings", counting)
    simulate_random_inputs(palindrome, 6, max_length=3, seed=1)
    assert len(calls) == 1


def test_halting_on_last_allowed_step_is_not_timeout(palindrome):
    steps = run_machine(palindrome, "aba").step_count
    result = run_machine(palindrome, "aba", max_steps=steps)
    assert result.outcome is Outcome.ACCEPTED


def test_invalid_input_symbol(palindrome):
    result = run_machine(palindrome, "abz")
    assert result.outcome is Outcome.REJECTED
    assert result.error is ErrorKind.INVALID_INPUT_SYMBOL
    assert result.step_count == 0
    assert "z" in result.message


def test_run_machine_accepts_description_dict(palindrome):
    assert run_machine(palindrome.to_dict(), "aa").accepted


def test_multi_tape_run(anbn):
    assert run_machine(anbn, "aabb").accepted
    assert not run_machine(anbn, "aab").accepted


def test_nondeterministic_mode_agrees_on_deterministic_machine(palindrome):
    for word in ("abba", "abc", ""):
        assert (run_machine(palindrome, word, mode="nondeterministic").outcome
                is run_machine(palindrome, word).outcome)


def test_strict_from_environment(monkeypatch):
    machine = {
        "nodes": [{"id": "q0", "kind": "start"}, {"id": "q1", "kind": "accept"}],
        "edges": [{"id": "e0", "source": "q0", "target": "q1", "rules": [
            {"read": "a", "write": "a", "direction": "R"},
            {"read": "a", "write": "b", "direction": "R"},
        ]}],
    }
    assert run_machine(machine, "a").accepted
    monkeypatch.setenv("TM_STRICT", "1")
    with pytest.raises(ValueError):
        run_machine(machine, "a")


def test_verbose_trace(palindrome, capsys):
    run_to_end(make_engine(palindrome, "a"), max_steps=50, verbose=True)
    out = capsys.readouterr().out
    assert "Step 1: State=start, Read=a" in out
    assert "Outcome: accepted" in out


def test_busy_beaver_through_runner():
    result = run_machine(load_machine("busy-beaver-4"))
    assert result.accepted
    assert result.step_count == 107


def test_random_inputs_are_reproducible(palindrome):
    first = simulate_random_inputs(palindrome, 12, max_length=5, seed=7)
    second = simulate_random_inputs(palindrome, 12, max_length=5, seed=7)
    assert first["inputs"] == second["inputs"]
    assert first["outcomes"] == second["outcomes"]
    assert len(first["runs"]) == 12
    assert all(len(word) <= 5 and set(word) <= {"a", "b", "c"} for word in first["inputs"])


def test_random_input_histories(palindrome):
    battery = simulate_random_inputs(palindrome, 10, max_length=4, seed=3)
    for result, arr in zip(battery["results"], battery["runs"]):
        assert arr.shape[1] == 5
        if result.history:
            assert arr.shape[0] == result.step_count + 1
            assert np.all(arr[-1, :4] == -1)
            assert arr[-1, 4] == battery["state_encoding"][result.state]
