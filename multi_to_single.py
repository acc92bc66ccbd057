"""
Multi-tape to single-tape compilation.

A k-tape machine is simulated on one tape divided into k tracks:

    | ^a b c | ^␣ | ... | ^␣ |
    D0       D1    ...  Dk-1  Dk

Each track holds the cells of one original tape between two delimiters.
Exactly one cell per track carries a head mark ('^' prefix), the virtual
head of that tape.

One original step is simulated by a fixed cycle of generated states:

    SCAN         sweep right from D0, collecting the marked symbol of each
                 track in order. Only symbols that extend a read prefix of
                 some rule of the original state are followed.
    DECIDE       with all k symbols collected, the matching original rule is
                 chosen at compile time and baked into the states below.
    REWIND       sweep left across k delimiters back to D0.
    UPDATE       per track in order: find the mark, write, move the mark.
                 A mark pushed onto a delimiter triggers SHIFT, which inserts
                 a fresh marked blank cell by carrying every later symbol one
                 cell to the right.
    FINAL REWIND sweep right to Dk, then left back to D0, entering SCAN for
                 the rule's target state (or a terminal accept state).

Generated states are interned by StateKey(original state, phase, context), so
re-deriving a context yields the same state. Parallel edges are merged and
states unreachable from the initial state are pruned at the end.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

from transition_index import (
    Edge, Machine, MachineDefinitionError, Node, Rule, build_index, machine_alphabet,
    rule_entries,
)
from turing_tape import BLANK

logger = logging.getLogger(__name__)

DELIMITER = '|'
INSERT_MARK = '☒'
HEAD_PREFIX = '^'


def marked(symbol):
    return HEAD_PREFIX + symbol


def unmarked(symbol):
    return symbol[len(HEAD_PREFIX):] if is_marked(symbol) else symbol


def is_marked(symbol):
    return len(symbol) > len(HEAD_PREFIX) and symbol.startswith(HEAD_PREFIX)


class Phase(str, Enum):
    INIT = 'init'
    SCAN = 'scan'
    REWIND = 'rewind'
    UPDATE = 'update'
    PLACE = 'place'
    SHIFT_START = 'shift_start'
    CARRY = 'carry'
    RETURN = 'return'
    FINAL_RIGHT = 'final_right'
    FINAL_LEFT = 'final_left'
    ACCEPT = 'accept'


@dataclass(frozen=True)
class StateKey:
    """Which original state and phase a compiled state stands for."""
    state: Optional[str]
    phase: Phase
    context: tuple = ()

    def label(self):
        parts = [self.phase.value]
        if self.state is not None:
            parts.append(self.state)
        if self.context:
            parts.append(repr(self.context))
        return ' '.join(parts)


@dataclass(frozen=True)
class CompiledMachine:
    """
    A single-tape Machine simulating a multi-tape one.

    Attributes:
        machine: The compiled single-tape description
        provenance: Compiled state id -> StateKey
        num_tapes: Tape count of the source machine
        input_alphabet: Input alphabet of the source machine
    """
    machine: Machine
    provenance: Dict[str, StateKey] = field(default_factory=dict)
    num_tapes: int = 1
    input_alphabet: FrozenSet[str] = frozenset()

    @property
    def nodes(self):
        return self.machine.nodes

    @property
    def edges(self):
        return self.machine.edges

    def states_for(self, original_state, phase=None):
        """Compiled state ids standing for `original_state` (optionally in one phase)."""
        return [sid for sid, key in self.provenance.items()
                if key.state == original_state and (phase is None or key.phase is phase)]

    def to_dict(self):
        data = self.machine.to_dict()
        for node in data['nodes']:
            key = self.provenance[node['id']]
            node['provenance'] = {'state': key.state, 'phase': key.phase.value,
                                  'context': repr(key.context)}
        return data


class _GraphBuilder:
    """Accumulates interned states and raw edges."""

    def __init__(self):
        self.ids: Dict[StateKey, str] = {}
        self.keys: Dict[str, StateKey] = {}
        self.kinds: Dict[str, str] = {}
        self.edges: List[Tuple[str, str, Rule]] = []

    def state(self, key, kind='normal'):
        state_id = self.ids.get(key)
        if state_id is None:
            state_id = f"q{len(self.ids)}_{key.phase.value}"
            self.ids[key] = state_id
            self.keys[state_id] = key
            self.kinds[state_id] = kind
        return state_id

    def add(self, source, target, read, write, direction):
        self.edges.append((self.state(source), self.state(target), Rule(read, write, direction)))

    def loop(self, key, symbols, direction):
        for symbol in symbols:
            self.add(key, key, symbol, symbol, direction)

    def merged_edges(self):
        """Union the rules of parallel edges, dropping duplicate rules."""
        merged = {}
        for source, target, rule in self.edges:
            rules = merged.setdefault((source, target), [])
            if rule not in rules:
                rules.append(rule)
        return merged

    def reachable(self, root, merged):
        adjacency = {}
        for source, target in merged:
            adjacency.setdefault(source, []).append(target)
        seen = {root}
        queue = deque([root])
        while queue:
            current = queue.popleft()
            if self.kinds[current] == 'accept':
                continue
            for nxt in adjacency.get(current, ()):
                if nxt not in seen:
                    seen.add(nxt)
                    queue.append(nxt)
        return seen


class _Compiler:

    def __init__(self, machine):
        self.machine = machine
        self.index = build_index(machine)
        self.k = machine.num_tapes
        self.alphabet = machine_alphabet(machine)
        _check_reserved(self.alphabet)

        self.plain = sorted(self.alphabet) + [BLANK]
        self.heads = [marked(s) for s in self.plain]
        self.builder = _GraphBuilder()
        self.queue = deque()
        self.visited = set()
        self.rewinds_built = set()

    def scan_key(self, state, collected):
        return StateKey(state, Phase.SCAN, tuple(collected))

    def enqueue(self, state, collected):
        if (state, collected) not in self.visited:
            self.visited.add((state, collected))
            self.queue.append((state, collected))

    def run(self):
        b = self.builder
        start = self.index.start
        init = StateKey(None, Phase.INIT)
        b.state(init, 'start')
        b.add(init, self.scan_key(start, ()), DELIMITER, DELIMITER, 'R')
        self.enqueue(start, ())

        while self.queue:
            state, collected = self.queue.popleft()
            if len(collected) < self.k:
                self.build_scan(state, collected)
            else:
                self.build_cycle(state, collected)

        return b.state(init)

    # -- SCAN ---------------------------------------------------------------

    def build_scan(self, state, collected):
        b = self.builder
        here = self.scan_key(state, collected)
        b.loop(here, self.plain + [DELIMITER], 'R')

        transitions = self.index.transitions_from(state)
        for symbol in self.plain:
            extended = collected + (symbol,)
            if not any(_prefix_matches(t.rule, extended) for t in transitions):
                continue
            b.add(here, self.scan_key(state, extended), marked(symbol), marked(symbol), 'R')
            self.enqueue(state, extended)

    # -- DECIDE, REWIND, UPDATE ---------------------------------------------

    def build_cycle(self, state, reads):
        b = self.builder
        k = self.k
        transition = self.index.first_match(state, reads if k > 1 else reads[0])
        if transition is None:
            return

        # The last scan state stands just right of track k's mark
        full = self.scan_key(state, reads)
        rewind = lambda n: StateKey(state, Phase.REWIND, (reads, n))
        for symbol in self.plain + self.heads + [DELIMITER]:
            b.add(full, rewind(k), symbol, symbol, 'L')
        for n in range(k, 0, -1):
            b.loop(rewind(n), self.plain + self.heads, 'L')
            if n > 1:
                b.add(rewind(n), rewind(n - 1), DELIMITER, DELIMITER, 'L')
            else:
                b.add(rewind(n), self.update_key(state, reads, 0), DELIMITER, DELIMITER, 'R')

        target = transition.target
        if self.index.is_accept(target):
            finish = StateKey(target, Phase.ACCEPT)
            b.state(finish, 'accept')
        else:
            finish = StateKey(target, Phase.FINAL_RIGHT)
            self.build_final_rewind(target)
            self.enqueue(target, ())

        for t, entry in enumerate(rule_entries(transition.rule)):
            if entry is None:
                write, direction = reads[t], 'N'
            else:
                write, direction = entry.write, entry.direction
            nxt = self.update_key(state, reads, t + 1) if t < k - 1 else finish
            self.build_update(state, reads, t, write, direction, nxt)

    def update_key(self, state, reads, track):
        return StateKey(state, Phase.UPDATE, (reads, track))

    def build_update(self, state, reads, track, write, direction, nxt):
        b = self.builder
        here = self.update_key(state, reads, track)
        b.loop(here, self.plain + [DELIMITER], 'R')
        current = marked(reads[track])

        if direction == 'N':
            b.add(here, nxt, current, marked(write), 'R')
            return

        place = StateKey(state, Phase.PLACE, (reads, track, direction))
        b.add(here, place, current, write, direction)
        for symbol in self.plain:
            b.add(place, nxt, symbol, marked(symbol), 'R')
        self.build_shift(state, reads, track, direction, place, nxt)

    # -- SHIFT ----------------------------------------------------------------

    def build_shift(self, state, reads, track, direction, place, nxt):
        """
        Insert a marked blank where the moving mark hit a delimiter.

        The insertion point gets INSERT_MARK and every later symbol is carried
        one cell right, up to and including the final delimiter, which is
        pushed into the blank beyond the tape. Carry states count the
        delimiters still ahead so that blank track cells are not mistaken for
        the end of the tape.
        """
        b = self.builder
        k = self.k
        ctx = (reads, track, direction)

        def carry(symbol, remaining):
            return StateKey(state, Phase.CARRY, ctx + (symbol, remaining))

        back = StateKey(state, Phase.RETURN, ctx)

        if direction == 'R':
            # The delimiter right of the track is the insertion point
            b.add(place, carry(DELIMITER, k - track - 1), DELIMITER, INSERT_MARK, 'R')
            remaining_max = k - track - 1
        else:
            # Keep the delimiter left of the track, insert before the track's first cell
            start = StateKey(state, Phase.SHIFT_START, ctx)
            b.add(place, start, DELIMITER, DELIMITER, 'R')
            for symbol in self.plain:
                b.add(start, carry(symbol, k - track), symbol, INSERT_MARK, 'R')
            remaining_max = k - track

        tape_symbols = self.plain + self.heads
        for remaining in range(remaining_max, -1, -1):
            for carried in tape_symbols + [DELIMITER]:
                here = carry(carried, remaining)
                if remaining == 0:
                    if carried == DELIMITER:
                        b.add(here, back, BLANK, DELIMITER, 'L')
                    continue
                for symbol in tape_symbols:
                    b.add(here, carry(symbol, remaining), symbol, carried, 'R')
                b.add(here, carry(DELIMITER, remaining - 1), DELIMITER, carried, 'R')

        b.loop(back, tape_symbols + [DELIMITER], 'L')
        b.add(back, nxt, INSERT_MARK, marked(BLANK), 'R')

    # -- FINAL REWIND -----------------------------------------------------------

    def build_final_rewind(self, target):
        if target in self.rewinds_built:
            return
        self.rewinds_built.add(target)
        b = self.builder
        k = self.k

        right = StateKey(target, Phase.FINAL_RIGHT)
        left = lambda n: StateKey(target, Phase.FINAL_LEFT, (n,))
        b.loop(right, self.plain + self.heads, 'R')
        b.add(right, left(k), DELIMITER, DELIMITER, 'L')
        for n in range(k, 0, -1):
            b.loop(left(n), self.plain + self.heads, 'L')
            if n > 1:
                b.add(left(n), left(n - 1), DELIMITER, DELIMITER, 'L')
            else:
                b.add(left(n), self.scan_key(target, ()), DELIMITER, DELIMITER, 'R')


def _prefix_matches(rule, prefix):
    return all(entry is None or entry.read == symbol
               for entry, symbol in zip(rule_entries(rule), prefix))


def _check_reserved(alphabet):
    clashes = sorted(s for s in alphabet
                     if s in (DELIMITER, INSERT_MARK) or s.startswith(HEAD_PREFIX))
    if clashes:
        raise MachineDefinitionError(
            f"Symbols reserved for track encoding used by the machine: {clashes}")


def compile_multi_to_single(machine):
    """
    Compile a k-tape Machine into an equivalent single-tape Machine.

    Args:
        machine: Machine (or plain description dict) with num_tapes >= 1

    Returns:
        CompiledMachine. A machine without a start state compiles to an empty
        description, which reports no_start_state when run.
    """
    if isinstance(machine, dict):
        machine = Machine.from_dict(machine)
    name = f"{machine.name or 'machine'} (single tape)"

    compiler = _Compiler(machine)
    alphabet = frozenset(compiler.alphabet)
    if compiler.index.start is None:
        return CompiledMachine(Machine((), (), 1, name), {}, machine.num_tapes, alphabet)

    root = compiler.run()
    b = compiler.builder
    merged = b.merged_edges()
    keep = b.reachable(root, merged)

    nodes = tuple(Node(sid, b.kinds[sid], b.keys[sid].label())
                  for sid in b.ids.values() if sid in keep)
    edges = []
    for (source, target), rules in merged.items():
        if source in keep and target in keep and b.kinds[source] != 'accept':
            edges.append(Edge(f"e{len(edges)}", source, target, tuple(rules)))

    logger.debug("Compiled %r: %d states generated, %d kept, %d edges",
                 machine.name, len(b.ids), len(nodes), len(edges))

    provenance = {sid: b.keys[sid] for sid in b.ids.values() if sid in keep}
    return CompiledMachine(Machine(nodes, tuple(edges), 1, name), provenance,
                           machine.num_tapes, alphabet)


def encode_tracks(input_string, num_tapes):
    """
    Initial compiled tape for `input_string` on tape 1 and blank other tapes.

    Example:
        encode_tracks('ab', 2) -> ['|', '^a', 'b', '|', '^␣', '|']
    """
    symbols = list(input_string)
    first = [marked(symbols[0])] + symbols[1:] if symbols else [marked(BLANK)]
    cells = [DELIMITER] + first
    for _ in range(1, num_tapes):
        cells += [DELIMITER, marked(BLANK)]
    cells.append(DELIMITER)
    return cells


def decode_tracks(cells):
    """
    Split a compiled tape back into tracks.

    Returns:
        List of (contents, head_offset) per track, where contents are the
        track's symbols with the head mark removed and outer blanks kept.
    """
    cells = list(cells)
    positions = [i for i, s in enumerate(cells) if s == DELIMITER]
    tracks = []
    for left, right in zip(positions, positions[1:]):
        segment = cells[left + 1:right]
        head = next((i for i, s in enumerate(segment) if is_marked(s)), None)
        tracks.append(([unmarked(s) for s in segment], head))
    return tracks
