"""
Machine descriptions and the transition index built from them.

A machine is a labeled state graph:

    Node = (id, kind)                       kind: 'start' | 'normal' | 'accept'
    Edge = (id, source, target, rules)      an edge carries several rules
    Rule = (read, write, direction)         direction: 'L' | 'R' | 'N'

Multi-tape machines use MultiRule, a fixed-length vector with one Rule per
tape. A missing entry (None) is an implicit no-op on that tape: it matches
any symbol, writes back what was read and does not move.

Descriptions can be built directly, loaded from the plain dict structure used
by the diagram editor (Machine.from_dict), or parsed from a YAML table
(parse_yaml_machine).
"""

import logging
import re
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

import yaml

from turing_tape import BLANK, DIRECTIONS, normalize_symbol

logger = logging.getLogger(__name__)

NODE_KINDS = ('start', 'normal', 'accept')


class MachineDefinitionError(ValueError):
    """Structurally invalid machine description."""


class AmbiguousMachineError(MachineDefinitionError):
    """A deterministic machine has several rules matching the same read."""


class Outcome(str, Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    TIMEOUT = 'timeout'


class ErrorKind(str, Enum):
    NO_START_STATE = 'no_start_state'
    NO_TRANSITION = 'no_transition'
    TIMEOUT = 'timeout'
    INVALID_INPUT_SYMBOL = 'invalid_input_symbol'


@dataclass(frozen=True)
class RunError:
    """A recoverable run outcome reported as data."""
    kind: ErrorKind
    message: str
    symbols: Tuple[str, ...] = ()


@dataclass(frozen=True)
class RunResult:
    """Terminal snapshot of a run."""
    outcome: Outcome
    state: Optional[str]
    tapes: Tuple[Tuple[str, ...], ...]
    heads: Tuple[int, ...]
    step_count: int
    error: Optional[ErrorKind] = None
    message: str = ''
    history: Tuple[tuple, ...] = ()
    accepting_thread: Optional[str] = None
    thread_count: int = 0

    @property
    def accepted(self):
        return self.outcome is Outcome.ACCEPTED

    @property
    def tape(self):
        return self.tapes[0] if self.tapes else ()

    @property
    def head(self):
        return self.heads[0] if self.heads else 0

    @property
    def output(self):
        """Contents of the first tape without surrounding blanks."""
        return ''.join(self.tape).strip(BLANK)


# ---------------------------------------------------------------------------
# Description types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Node:
    id: str
    kind: str = 'normal'
    label: Optional[str] = None

    def __post_init__(self):
        if self.kind not in NODE_KINDS:
            raise MachineDefinitionError(f"Node {self.id!r} has unknown kind {self.kind!r}")


@dataclass(frozen=True)
class Rule:
    read: str
    write: str
    direction: str = 'N'

    def __post_init__(self):
        object.__setattr__(self, 'read', normalize_symbol(self.read))
        object.__setattr__(self, 'write', normalize_symbol(self.write))
        if self.direction not in DIRECTIONS:
            raise MachineDefinitionError(
                f"Invalid direction {self.direction!r} in rule {self.read}/{self.write}. Expected L/R/N")

    def to_dict(self):
        return {'read': self.read, 'write': self.write, 'direction': self.direction}


@dataclass(frozen=True)
class MultiRule:
    """One rule slot per tape; None is a no-op entry."""
    tapes: Tuple[Optional[Rule], ...]

    @property
    def num_tapes(self):
        return len(self.tapes)

    def matches(self, reads):
        return all(entry is None or entry.read == symbol
                   for entry, symbol in zip(self.tapes, reads))

    def actions(self, reads):
        """(write, direction) per tape, resolving no-op entries against `reads`."""
        return tuple((symbol, 'N') if entry is None else (entry.write, entry.direction)
                     for entry, symbol in zip(self.tapes, reads))

    def to_dict(self):
        return {f"tape{i + 1}": entry.to_dict()
                for i, entry in enumerate(self.tapes) if entry is not None}


AnyRule = Union[Rule, MultiRule]


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    rules: Tuple[AnyRule, ...] = ()

    def to_dict(self):
        return {'id': self.id, 'source': self.source, 'target': self.target,
                'rules': [r.to_dict() for r in self.rules]}


@dataclass(frozen=True)
class Machine:
    nodes: Tuple[Node, ...]
    edges: Tuple[Edge, ...]
    num_tapes: int = 1
    name: str = ''

    def __post_init__(self):
        object.__setattr__(self, 'nodes', tuple(self.nodes))
        object.__setattr__(self, 'edges', tuple(self.edges))
        if self.num_tapes < 1:
            raise MachineDefinitionError(f"num_tapes must be at least 1, got {self.num_tapes}")

        seen = set()
        for node in self.nodes:
            if node.id in seen:
                raise MachineDefinitionError(f"Duplicate node id {node.id!r}")
            seen.add(node.id)

        for edge in self.edges:
            for end in (edge.source, edge.target):
                if end not in seen:
                    raise MachineDefinitionError(
                        f"Edge {edge.id!r} references unknown node {end!r}")
            for rule in edge.rules:
                self._check_rule_shape(edge, rule)

    def _check_rule_shape(self, edge, rule):
        if self.num_tapes == 1:
            if not isinstance(rule, Rule):
                raise MachineDefinitionError(
                    f"Edge {edge.id!r}: single-tape machine needs Rule, got {type(rule).__name__}")
        elif not isinstance(rule, MultiRule) or rule.num_tapes != self.num_tapes:
            raise MachineDefinitionError(
                f"Edge {edge.id!r}: expected a MultiRule with {self.num_tapes} tape slots")

    @property
    def start_nodes(self):
        return [n for n in self.nodes if n.kind == 'start']

    @classmethod
    def from_dict(cls, data):
        """
        Build a Machine from the plain description structure:

            {'tapes': k,
             'nodes': [{'id': ..., 'kind': 'start'|'normal'|'accept'}, ...],
             'edges': [{'id': ..., 'source': ..., 'target': ...,
                        'rules': [{'read', 'write', 'direction'}]
                              or [{'tape1': {...}, ..., 'tapeK': {...}}]}]}

        The node kind may also be given as 'type', and rules as
        edge['data']['labels'], matching diagram exports.
        """
        num_tapes = int(data.get('tapes', 1))
        nodes = []
        for raw in data.get('nodes', []):
            label = raw.get('label') or (raw.get('data') or {}).get('label')
            nodes.append(Node(str(raw['id']), raw.get('kind', raw.get('type', 'normal')), label))

        edges = []
        for i, raw in enumerate(data.get('edges', [])):
            raw_rules = raw.get('rules')
            if raw_rules is None:
                raw_rules = (raw.get('data') or {}).get('labels', [])
            rules = tuple(_rule_from_dict(r, num_tapes) for r in raw_rules)
            edges.append(Edge(str(raw.get('id', f"e{i}")), str(raw['source']),
                              str(raw['target']), rules))

        return cls(tuple(nodes), tuple(edges), num_tapes, data.get('name', ''))

    def to_dict(self):
        return {
            'name': self.name,
            'tapes': self.num_tapes,
            'nodes': [{'id': n.id, 'kind': n.kind, 'label': n.label or n.id} for n in self.nodes],
            'edges': [e.to_dict() for e in self.edges],
        }


def _single_rule_from_dict(raw):
    try:
        return Rule(raw['read'], raw.get('write', raw['read']), raw.get('direction', 'N'))
    except KeyError:
        raise MachineDefinitionError(f"Rule {raw!r} has no 'read' symbol")


def _rule_from_dict(raw, num_tapes):
    if num_tapes == 1:
        return _single_rule_from_dict(raw)

    entries = [None] * num_tapes
    for key, value in raw.items():
        match = re.fullmatch(r'tape(\d+)', key)
        if not match:
            raise MachineDefinitionError(f"Unexpected key {key!r} in multi-tape rule")
        index = int(match.group(1))
        if not 1 <= index <= num_tapes:
            raise MachineDefinitionError(
                f"Rule entry {key!r} outside tape range 1..{num_tapes}")
        entries[index - 1] = _single_rule_from_dict(value) if value else None
    return MultiRule(tuple(entries))


# ---------------------------------------------------------------------------
# Transition index
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Transition:
    edge_id: str
    source: str
    target: str
    rule: AnyRule


class TransitionIndex:
    """
    Source state -> ordered rule list, in edge order then rule order.

    Built once per run and treated as read-only for the run's duration.
    """

    def __init__(self, machine: Machine):
        self.machine = machine
        self.num_tapes = machine.num_tapes
        self.nodes: Dict[str, Node] = {n.id: n for n in machine.nodes}
        starts = machine.start_nodes
        self.start: Optional[str] = starts[0].id if starts else None
        if len(starts) > 1:
            logger.warning("Machine %r has %d start nodes; using %r",
                           machine.name, len(starts), self.start)
        self.accept = frozenset(n.id for n in machine.nodes if n.kind == 'accept')

        table: Dict[str, List[Transition]] = {n.id: [] for n in machine.nodes}
        for edge in machine.edges:
            for rule in edge.rules:
                table[edge.source].append(Transition(edge.id, edge.source, edge.target, rule))
        self._table = {state: tuple(rules) for state, rules in table.items()}

    def transitions_from(self, state):
        return self._table.get(state, ())

    def is_accept(self, state):
        return state in self.accept

    def matches(self, state, read):
        """
        All transitions out of `state` matching `read`.

        `read` is a symbol for single-tape machines and a tuple of symbols
        (one per tape) for multi-tape machines.
        """
        if self.num_tapes == 1:
            symbol = normalize_symbol(read)
            return [t for t in self.transitions_from(state) if t.rule.read == symbol]
        reads = tuple(normalize_symbol(s) for s in read)
        return [t for t in self.transitions_from(state) if t.rule.matches(reads)]

    def first_match(self, state, read):
        for transition in self.transitions_from(state):
            if self.num_tapes == 1:
                if transition.rule.read == normalize_symbol(read):
                    return transition
            elif transition.rule.matches(tuple(normalize_symbol(s) for s in read)):
                return transition
        return None

    def ambiguities(self):
        """
        (state, read) pairs that more than one rule can match.

        For multi-tape machines the read is a pattern with None where a
        no-op entry accepts any symbol.
        """
        found = []
        for state, transitions in self._table.items():
            for i, first in enumerate(transitions):
                for second in transitions[i + 1:]:
                    overlap = _overlap(first.rule, second.rule)
                    if overlap is not None and (state, overlap) not in found:
                        found.append((state, overlap))
        return found


def _overlap(a, b):
    if isinstance(a, Rule):
        return a.read if a.read == b.read else None
    pattern = []
    for x, y in zip(a.tapes, b.tapes):
        if x is not None and y is not None and x.read != y.read:
            return None
        pattern.append(x.read if x is not None else (y.read if y is not None else None))
    return tuple(pattern)


def build_index(machine):
    """Build the TransitionIndex for a Machine (or a plain description dict)."""
    if isinstance(machine, dict):
        machine = Machine.from_dict(machine)
    return TransitionIndex(machine)


def rule_entries(rule):
    """Per-tape entries of a rule; a single-tape Rule is a 1-vector."""
    return (rule,) if isinstance(rule, Rule) else rule.tapes


def machine_alphabet(machine):
    """Every non-blank symbol read or written by the machine's rules."""
    alphabet = set()
    for edge in machine.edges:
        for rule in edge.rules:
            for entry in rule_entries(rule):
                if entry is None:
                    continue
                alphabet.update(s for s in (entry.read, entry.write) if s != BLANK)
    return alphabet


def check_input(machine, input_string, alphabet=None):
    """
    Validate an input string before a run.

    Returns:
        None if every character is in the alphabet, otherwise a RunError of
        kind INVALID_INPUT_SYMBOL listing the offending characters.
    """
    if alphabet is None:
        alphabet = machine_alphabet(machine)
    invalid = sorted({ch for ch in input_string if ch not in alphabet})
    if not invalid:
        return None
    return RunError(ErrorKind.INVALID_INPUT_SYMBOL,
                    f"Invalid input symbols: {', '.join(invalid)}",
                    tuple(invalid))


def machine_from_program(program, initial_state='A', halt_state='H', blank_symbol=0, name=''):
    """
    Build a single-tape Machine from a list of 5-tuples:
        (current_state, read, write, direction, next_state)

    Symbols are converted to strings and `blank_symbol` maps to the blank
    sentinel. `halt_state` becomes the accept state.
    """
    def sym(s):
        return BLANK if s == blank_symbol else str(s)

    states = [initial_state]
    grouped = OrderedDict()
    for current_state, read, write, direction, next_state in program:
        for state in (current_state, next_state):
            if state not in states:
                states.append(state)
        grouped.setdefault((current_state, next_state), []).append(
            Rule(sym(read), sym(write), direction))
    if halt_state not in states:
        states.append(halt_state)

    def kind(state):
        if state == initial_state:
            return 'start'
        return 'accept' if state == halt_state else 'normal'

    nodes = tuple(Node(str(s), kind(s)) for s in states)
    edges = tuple(Edge(f"{source}->{target}", str(source), str(target), tuple(rules))
                  for (source, target), rules in grouped.items())
    return Machine(nodes, edges, 1, name)


# ---------------------------------------------------------------------------
# YAML machine definitions
# ---------------------------------------------------------------------------

def _preprocess_yaml_keys(yaml_string):
    """
    Quote list-style keys so YAML accepts them: '[0,1,+]: R' -> '"[0,1,+]": R'.
    """
    pattern = r'^(\s*)(\[[^\]]+\])(\s*:)'

    processed_lines = []
    for line in yaml_string.split('\n'):
        match = re.match(pattern, line)
        if match:
            indent, key, colon = match.groups()
            processed_lines.append(f'{indent}"{key}"{colon}{line[match.end():]}')
        else:
            processed_lines.append(line)

    return '\n'.join(processed_lines)


def _parse_symbol_key(key):
    """
    Parse a symbol key which may be a single symbol or a list of symbols.

    Examples:
        '0' -> ['0']
        [0, 1, '+'] -> ['0', '1', '+']
        '[0,1,+]' -> ['0', '1', '+']
    """
    if isinstance(key, list):
        return [str(s) for s in key]

    key_str = str(key)
    if key_str.startswith('[') and key_str.endswith(']'):
        return [s.strip().strip("'\"") for s in key_str[1:-1].split(',')]

    return [key_str]


def _parse_transition_value(state_name, value):
    """
    Parse a single-tape transition value into (write, direction, next_state).

        'R' -> (None, 'R', state_name)          move, no write, same state
        {L: next_state} -> (None, 'L', next_state)
        {write: x, R: next_state} -> (x, 'R', next_state)
        {write: x, L} -> (x, 'L', state_name)

    A write of None keeps the symbol that was read.
    """
    if value in DIRECTIONS:
        return None, value, state_name

    if isinstance(value, dict):
        write_symbol = value.get('write', None)
        write_symbol = str(write_symbol) if write_symbol is not None else None

        for direction in DIRECTIONS:
            if direction in value:
                next_state = value[direction] if value[direction] is not None else state_name
                return write_symbol, direction, str(next_state)

        raise MachineDefinitionError(f"No direction (L/R/N) found in transition: {value}")

    raise MachineDefinitionError(f"Cannot parse transition value: {value}")


def _parse_multi_value(state_name, value, reads):
    """
    Parse a multi-tape transition value:

        {write: [x, y], move: [R, L], next: q}

    `write` defaults to the symbols read, `move` to N on every tape and
    `next` to the current state.
    """
    if not isinstance(value, dict):
        raise MachineDefinitionError(f"Cannot parse multi-tape transition value: {value}")
    writes = value.get('write', list(reads))
    moves = value.get('move', ['N'] * len(reads))
    if len(writes) != len(reads) or len(moves) != len(reads):
        raise MachineDefinitionError(
            f"State {state_name!r}: write/move lists must have {len(reads)} entries: {value}")
    next_state = value.get('next', state_name)
    return [str(w) for w in writes], [str(m) for m in moves], str(next_state)


def _parse_state_transitions(state_name, transitions, num_tapes, blank):
    """
    Parse all transitions for a state into (state, rule, next_state) triples.
    """
    result = []

    if not isinstance(transitions, dict):
        return result

    def sym(s):
        return BLANK if s == blank else s

    for key, value in transitions.items():
        alternatives = value if isinstance(value, list) else [value]

        if num_tapes == 1:
            for read_symbol in _parse_symbol_key(key):
                for alternative in alternatives:
                    write, direction, next_state = _parse_transition_value(state_name, alternative)
                    write = read_symbol if write is None else write
                    result.append((state_name,
                                   Rule(sym(read_symbol), sym(write), direction),
                                   next_state))
            continue

        reads = [s.strip() for s in str(key).split(',')]
        if len(reads) != num_tapes:
            raise MachineDefinitionError(
                f"State {state_name!r}: read key {key!r} needs {num_tapes} symbols")
        for alternative in alternatives:
            writes, moves, next_state = _parse_multi_value(state_name, alternative, reads)
            entries = tuple(
                None if r == '*' else Rule(sym(r), sym(w), m)
                for r, w, m in zip(reads, writes, moves))
            result.append((state_name, MultiRule(entries), next_state))

    return result


def parse_yaml_machine(yaml_string):
    """
    Parse a YAML machine definition into a Machine.

    Example (single tape):
        name: flip
        blank: '_'
        start state: scan
        accept states: [done]
        table:
          scan:
            0: {write: 1, R}
            1: {write: 0, R}
            _: {N: done}
          done:

    Multi-tape machines declare `tapes: k` and use comma-separated read
    tuples ('1,_': {write: [1, 1], move: [R, R], next: copy}); '*' in a read
    tuple leaves that tape untouched. A list value gives alternative
    transitions for non-deterministic machines.

    If no accept states are listed, states declared with an empty table
    (and no transitions) are accept states.
    """
    data = yaml.safe_load(_preprocess_yaml_keys(yaml_string))

    blank_symbol = str(data.get('blank', ' '))
    num_tapes = int(data.get('tapes', 1))
    start_state = data.get('start state', data.get('start_state', None))
    table = data.get('table', {}) or {}

    accept_states = data.get('accept states', data.get('accept_states', None))
    if isinstance(accept_states, str):
        accept_states = [accept_states]

    program = []
    states_with_transitions = set()
    for state_name, transitions in table.items():
        state_name = str(state_name)
        if transitions is None:
            continue
        parsed = _parse_state_transitions(state_name, transitions, num_tapes, blank_symbol)
        program.extend(parsed)
        if parsed:
            states_with_transitions.add(state_name)

    if start_state is None and table:
        start_state = str(list(table.keys())[0])
    if accept_states is None:
        accept_states = [str(s) for s in table if str(s) not in states_with_transitions]
    accept_states = {str(s) for s in accept_states}

    state_names = list(OrderedDict.fromkeys(
        [str(s) for s in table] + [nxt for _, _, nxt in program]))
    if start_state is not None and str(start_state) not in state_names:
        state_names.insert(0, str(start_state))

    def kind(name):
        if name == str(start_state):
            return 'start'
        return 'accept' if name in accept_states else 'normal'

    nodes = tuple(Node(name, kind(name)) for name in state_names)

    grouped = OrderedDict()
    for source, rule, target in program:
        grouped.setdefault((source, target), []).append(rule)
    edges = tuple(Edge(f"{source}->{target}", source, target, tuple(rules))
                  for (source, target), rules in grouped.items())

    return Machine(nodes, edges, num_tapes, str(data.get('name', '')))
