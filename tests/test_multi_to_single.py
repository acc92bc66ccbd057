from collections import deque

import pytest

from bounded_runner import run_compiled, run_machine
from multi_to_single import (
    DELIMITER, INSERT_MARK, Phase, compile_multi_to_single, decode_tracks, encode_tracks,
    is_marked, marked, unmarked,
)
from transition_index import (
    Edge, ErrorKind, Machine, MachineDefinitionError, MultiRule, Node, Outcome, Rule,
    build_index,
)
from turing_machine import DeterministicEngine
from turing_tape import BLANK


@pytest.fixture
def compiled_is_equal(is_equal):
    return compile_multi_to_single(is_equal)


def reachable_from_start(machine):
    index = build_index(machine)
    seen = {index.start}
    queue = deque([index.start])
    while queue:
        for transition in index.transitions_from(queue.popleft()):
            if transition.target not in seen:
                seen.add(transition.target)
                queue.append(transition.target)
    return seen


def test_head_mark_helpers():
    assert marked("a") == "^a"
    assert unmarked("^a") == "a"
    assert unmarked("a") == "a"
    assert is_marked(marked(BLANK))
    assert not is_marked("^")


def test_encode_tracks():
    assert encode_tracks("ab", 2) == ["|", "^a", "b", "|", "^" + BLANK, "|"]
    assert encode_tracks("", 1) == ["|", "^" + BLANK, "|"]


def test_decode_tracks():
    tracks = decode_tracks(encode_tracks("ab", 3))
    assert tracks == [(["a", "b"], 0), ([BLANK], 0), ([BLANK], 0)]


def test_compiled_machine_is_single_tape_and_deterministic(compiled_is_equal):
    machine = compiled_is_equal.machine
    assert machine.num_tapes == 1
    assert compiled_is_equal.num_tapes == 2
    assert len(machine.start_nodes) == 1
    assert build_index(machine).ambiguities() == []


def test_compiled_machine_has_no_unreachable_states(compiled_is_equal):
    machine = compiled_is_equal.machine
    assert reachable_from_start(machine) == {n.id for n in machine.nodes}


def test_accept_states_are_terminal(compiled_is_equal):
    machine = compiled_is_equal.machine
    accept = {n.id for n in machine.nodes if n.kind == "accept"}
    assert accept
    assert not [e for e in machine.edges if e.source in accept]


def test_parallel_edges_are_merged(compiled_is_equal):
    pairs = [(e.source, e.target) for e in compiled_is_equal.edges]
    assert len(pairs) == len(set(pairs))


def test_provenance(compiled_is_equal):
    provenance = compiled_is_equal.provenance
    assert set(provenance) == {n.id for n in compiled_is_equal.nodes}
    start = compiled_is_equal.machine.start_nodes[0]
    assert provenance[start.id].phase is Phase.INIT
    assert compiled_is_equal.states_for("copy", Phase.SCAN)
    assert compiled_is_equal.states_for("rewind", Phase.UPDATE)
    accept = [n for n in compiled_is_equal.nodes if n.kind == "accept"]
    assert [provenance[n.id].state for n in accept] == ["equal"]

    data = compiled_is_equal.to_dict()
    assert data["nodes"][0]["provenance"]["phase"] == "init"


def test_every_phase_is_generated(compiled_is_equal):
    phases = {key.phase for key in compiled_is_equal.provenance.values()}
    assert phases == set(Phase)


@pytest.mark.parametrize("word", ["", "1", "101", "0110"])
def test_is_equal_equivalence(is_equal, compiled_is_equal, word):
    source = run_machine(is_equal, word)
    compiled = run_compiled(compiled_is_equal, word)
    assert compiled.outcome is source.outcome is Outcome.ACCEPTED
    assert compiled.step_count > source.step_count


@pytest.mark.parametrize("word", ["101", "0110"])
def test_decoded_tracks_match_tapes(is_equal, compiled_is_equal, word):
    source = run_machine(is_equal, word)
    compiled = run_compiled(compiled_is_equal, word)

    tracks = decode_tracks(compiled.tape)
    assert len(tracks) == 2
    for (cells, head), tape, tape_head in zip(tracks, source.tapes, source.heads):
        assert "".join(cells).strip(BLANK) == "".join(tape).strip(BLANK)
        assert cells[head] == tape[tape_head]
    assert INSERT_MARK not in compiled.tape


@pytest.mark.parametrize("word", [
    "", "ab", "aabb", "aaabbb", "a", "b", "aab", "abb", "ba", "abab",
])
def test_anbn_equivalence(anbn, word):
    compiled = compile_multi_to_single(anbn)
    source = run_machine(anbn, word)
    result = run_compiled(compiled, word)
    assert result.outcome is source.outcome
    assert result.outcome is not Outcome.TIMEOUT


@pytest.mark.parametrize("word", ["", "ab", "ba", "abba", "a", "aab", "bba"])
def test_three_tape_equivalence(equal_count, word):
    compiled = compile_multi_to_single(equal_count)
    assert compiled.num_tapes == 3
    source = run_machine(equal_count, word)
    result = run_compiled(compiled, word)
    assert result.outcome is source.outcome
    assert result.outcome is not Outcome.TIMEOUT


def test_three_tape_tracks(equal_count):
    compiled = compile_multi_to_single(equal_count)
    source = run_machine(equal_count, "abab")
    result = run_compiled(compiled, "abab")
    assert result.accepted
    contents = ["".join(cells).strip(BLANK) for cells, _ in decode_tracks(result.tape)]
    assert contents == ["".join(t).strip(BLANK) for t in source.tapes]
    assert contents == ["abab", "aa", "bb"]


@pytest.mark.parametrize("word", ["abba", "abc", "a", ""])
def test_single_tape_source(palindrome, word):
    compiled = compile_multi_to_single(palindrome)
    assert run_compiled(compiled, word).outcome is run_machine(palindrome, word).outcome


def test_no_start_state_compiles_to_empty_machine():
    machine = Machine((Node("q0"), Node("q1", "accept")), (), num_tapes=2)
    compiled = compile_multi_to_single(machine)
    assert compiled.nodes == ()
    assert compiled.edges == ()
    result = run_compiled(compiled, "")
    assert result.outcome is Outcome.REJECTED
    assert result.error is ErrorKind.NO_START_STATE


def test_invalid_input_rejected_before_running(compiled_is_equal):
    result = run_compiled(compiled_is_equal, "102")
    assert result.error is ErrorKind.INVALID_INPUT_SYMBOL
    assert result.step_count == 0


def test_reserved_symbols_rejected():
    nodes = (Node("q0", "start"), Node("q1", "accept"))
    rule = MultiRule((Rule(DELIMITER, "a", "R"), Rule("a", "a", "N")))
    machine = Machine(nodes, (Edge("e0", "q0", "q1", (rule,)),), num_tapes=2)
    with pytest.raises(MachineDefinitionError):
        compile_multi_to_single(machine)


def test_compiled_machine_runs_on_step_engine(compiled_is_equal):
    # the compiled description is an ordinary single-tape machine
    engine = DeterministicEngine(compiled_is_equal.machine, encode_tracks("1", 2))
    while not engine.halted:
        engine.step()
    assert engine.result().accepted
