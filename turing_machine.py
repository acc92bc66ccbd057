"""
Turing Machine Simulator

Deterministic single-tape and multi-tape stepping engines over a machine
description (see transition_index.py).

Every taken transition is recorded as a 5-tuple:
    (current_state, read, write, direction, next_state)

For multi-tape machines `read`, `write` and `direction` are tuples with one
entry per tape.

Engine lifecycle:
    Idle -> Running -> Halted-Accept | Halted-Reject

The first step() from Idle enters the start state without counting a step.
Each later step() reads the symbol(s) under the head(s), picks the first
matching rule in edge order then rule order, writes, moves and follows the
rule's edge. step_back() restores the snapshot taken before the last step.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from simulator_config import DEFAULT_TAPE_SIZE, MULTI_TAPE_GROWTH, SINGLE_TAPE_GROWTH
from transition_index import (
    AmbiguousMachineError, ErrorKind, Outcome, RunResult, TransitionIndex, build_index,
)
from turing_tape import BLANK, init_tape

logger = logging.getLogger(__name__)


class Status(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


@dataclass(frozen=True)
class Snapshot:
    """Complete engine configuration, used for undo and inspection."""
    state: Optional[str]
    tapes: Tuple[Tuple[str, ...], ...]
    heads: Tuple[int, ...]
    step_count: int
    status: Status
    error: Optional[ErrorKind] = None
    message: str = ''
    last_read: object = None
    last_edge: Optional[str] = None
    record_count: int = 0

    @property
    def tape(self):
        return self.tapes[0]

    @property
    def head(self):
        return self.heads[0]


def format_read(read):
    if isinstance(read, tuple):
        return ','.join(read)
    return read


class _SteppingEngine:
    """Shared control flow for the deterministic and multi-tape engines."""

    growth = SINGLE_TAPE_GROWTH

    def __init__(self, machine, input_symbols='', tape_size=DEFAULT_TAPE_SIZE,
                 strict=False, keep_undo=True):
        self.index = machine if isinstance(machine, TransitionIndex) else build_index(machine)
        self.tape_size = tape_size
        self.keep_undo = keep_undo

        ambiguous = self.index.ambiguities()
        if ambiguous:
            if strict:
                raise AmbiguousMachineError(
                    f"Several rules match the same read: {ambiguous}")
            logger.warning("Machine %r has ambiguous rules, first match wins: %s",
                           self.index.machine.name, ambiguous)

        self.reset(input_symbols)

    # -- subclass hooks -------------------------------------------------

    def _new_tapes(self, input_symbols):
        raise NotImplementedError

    def _read(self):
        raise NotImplementedError

    def _apply(self, rule, read):
        raise NotImplementedError

    # -- lifecycle --------------------------------------------------------

    def reset(self, input_symbols=None):
        """Discard the run and start over (Idle) on `input_symbols`."""
        if input_symbols is not None:
            self.input_symbols = input_symbols
        self.tapes = self._new_tapes(self.input_symbols)
        self.state = None
        self.status = Status.IDLE
        self.step_count = 0
        self.error = None
        self.message = ''
        self.last_read = None
        self.last_edge = None
        self.records: List[tuple] = []
        self._undo: List[Snapshot] = []

    @property
    def halted(self):
        return self.status in (Status.ACCEPTED, Status.REJECTED)

    @property
    def can_undo(self):
        return bool(self._undo)

    def snapshot(self):
        return Snapshot(
            state=self.state,
            tapes=tuple(tuple(t.cells) for t in self.tapes),
            heads=tuple(t.head for t in self.tapes),
            step_count=self.step_count,
            status=self.status,
            error=self.error,
            message=self.message,
            last_read=self.last_read,
            last_edge=self.last_edge,
            record_count=len(self.records),
        )

    def _restore(self, snap):
        for tape, cells, head in zip(self.tapes, snap.tapes, snap.heads):
            tape.restore(cells, head)
        self.state = snap.state
        self.status = snap.status
        self.step_count = snap.step_count
        self.error = snap.error
        self.message = snap.message
        self.last_read = snap.last_read
        self.last_edge = snap.last_edge
        del self.records[snap.record_count:]

    def _halt(self, status, error=None, message=''):
        self.status = status
        self.error = error
        self.message = message

    def step(self):
        """
        Advance one step.

        Returns:
            Snapshot after the step. A halted engine is left unchanged.
        """
        if self.halted:
            return self.snapshot()
        if self.keep_undo:
            self._undo.append(self.snapshot())

        if self.status is Status.IDLE:
            self._activate()
            return self.snapshot()

        read = self._read()
        transition = self.index.first_match(self.state, read)
        if transition is None:
            self._halt(Status.REJECTED, ErrorKind.NO_TRANSITION,
                       f"no transition defined for symbol {format_read(read)} in state {self.state}")
            self.last_edge = None
            return self.snapshot()

        write, direction = self._apply(transition.rule, read)
        self.records.append((self.state, read, write, direction, transition.target))
        self.state = transition.target
        self.last_read = read
        self.last_edge = transition.edge_id
        self.step_count += 1

        if self.index.is_accept(self.state):
            self._halt(Status.ACCEPTED)
        return self.snapshot()

    def _activate(self):
        start = self.index.start
        if start is None:
            self._halt(Status.REJECTED, ErrorKind.NO_START_STATE, "no start state")
            return
        self.state = start
        self.status = Status.RUNNING

    def step_back(self):
        """Restore the configuration from before the last step. False if nothing to undo."""
        if not self._undo:
            return False
        self._restore(self._undo.pop())
        return True

    def result(self, timeout=False, message=''):
        """
        RunResult for the current configuration.

        Args:
            timeout: Report a still-running engine as timed out
            message: Message used for the timeout outcome
        """
        if self.status is Status.ACCEPTED:
            outcome, error = Outcome.ACCEPTED, None
        elif self.status is Status.REJECTED:
            outcome, error = Outcome.REJECTED, self.error
        elif timeout:
            outcome, error = Outcome.TIMEOUT, ErrorKind.TIMEOUT
        else:
            raise RuntimeError("result() called on an engine that has not halted")

        return RunResult(
            outcome=outcome,
            state=self.state,
            tapes=tuple(tuple(t.cells) for t in self.tapes),
            heads=tuple(t.head for t in self.tapes),
            step_count=self.step_count,
            error=error,
            message=message if outcome is Outcome.TIMEOUT else self.message,
            history=tuple(self.records),
        )


class DeterministicEngine(_SteppingEngine):
    """Single-tape, first-match deterministic machine."""

    def __init__(self, machine, input_symbols='', tape_size=DEFAULT_TAPE_SIZE,
                 strict=False, keep_undo=True):
        index = machine if isinstance(machine, TransitionIndex) else build_index(machine)
        if index.num_tapes != 1:
            raise ValueError(f"DeterministicEngine needs a single-tape machine, got {index.num_tapes} tapes")
        super().__init__(index, input_symbols, tape_size, strict, keep_undo)

    def _new_tapes(self, input_symbols):
        return [init_tape(input_symbols, size=self.tape_size, growth=self.growth)]

    @property
    def tape(self):
        return self.tapes[0]

    def _read(self):
        return self.tape.read()

    def _apply(self, rule, read):
        tape = self.tape
        tape.write(tape.head, rule.write)
        tape.shift(rule.direction)
        return rule.write, rule.direction


class MultiTapeEngine(_SteppingEngine):
    """
    k synchronized tapes. A rule matches when every tape's entry matches.

    The input is placed on tape 1; the other tapes start blank with their
    heads aligned to tape 1's head.
    """

    growth = MULTI_TAPE_GROWTH

    def __init__(self, machine, input_symbols='', tape_size=DEFAULT_TAPE_SIZE,
                 strict=False, keep_undo=True):
        index = machine if isinstance(machine, TransitionIndex) else build_index(machine)
        if index.num_tapes < 2:
            raise ValueError("MultiTapeEngine needs at least 2 tapes; use DeterministicEngine")
        super().__init__(index, input_symbols, tape_size, strict, keep_undo)

    @property
    def num_tapes(self):
        return len(self.tapes)

    def _new_tapes(self, input_symbols):
        tapes = [init_tape(input_symbols, size=self.tape_size, growth=self.growth)]
        for _ in range(1, self.index.num_tapes):
            tapes.append(init_tape('', size=self.tape_size, growth=self.growth))
        return tapes

    def _read(self):
        return tuple(t.read() for t in self.tapes)

    def _apply(self, rule, read):
        actions = rule.actions(read)
        for tape, (write, direction) in zip(self.tapes, actions):
            tape.write(tape.head, write)
            tape.shift(direction)
        writes = tuple(w for w, _ in actions)
        directions = tuple(d for _, d in actions)
        return writes, directions


def history_to_numpy(history, state_encoding=None, symbol_encoding=None, include_halt_row=True):
    """
    Convert execution history to a numpy array of shape (n_steps, 5).

    Args:
        history: List of 5-tuples (RunResult.history or engine.records)
        state_encoding: Optional dict mapping state names to integers.
                        If None, states are auto-encoded alphabetically.
        symbol_encoding: Optional dict mapping tape symbols to integers.
                         Multi-tape reads/writes are encoded as whole tuples.
        include_halt_row: If True, adds a final row [-1, -1, -1, -1, final_state].

    Returns:
        Tuple of (array, state_encoding, symbol_encoding)

    Encoding:
        - Direction: L=0, R=1, N=2 (multi-tape: encoded per tuple in
          base 3, first tape most significant)
        - Halt row uses -1 for current_state, read, write, direction
    """
    if not history:
        return np.array([]).reshape(0, 5), {}, {}

    if state_encoding is None:
        all_states = set()
        for curr, _, _, _, nxt in history:
            all_states.add(curr)
            all_states.add(nxt)
        state_encoding = {state: i for i, state in enumerate(sorted(all_states, key=str))}

    if symbol_encoding is None:
        all_symbols = set()
        for _, read, write, _, _ in history:
            all_symbols.add(read)
            all_symbols.add(write)
        symbol_encoding = {sym: i for i, sym in enumerate(sorted(all_symbols, key=str))}

    dir_encoding = {'L': 0, 'R': 1, 'N': 2}

    def encode_direction(direction):
        if isinstance(direction, tuple):
            code = 0
            for d in direction:
                code = code * 3 + dir_encoding[d]
            return code
        return dir_encoding[direction]

    n_steps = len(history)
    total_rows = n_steps + 1 if include_halt_row else n_steps
    arr = np.zeros((total_rows, 5), dtype=np.int32)

    for i, (curr_state, read, write, direction, next_state) in enumerate(history):
        arr[i, 0] = state_encoding[curr_state]
        arr[i, 1] = symbol_encoding[read]
        arr[i, 2] = symbol_encoding[write]
        arr[i, 3] = encode_direction(direction)
        arr[i, 4] = state_encoding[next_state]

    if include_halt_row:
        arr[n_steps, :4] = -1
        arr[n_steps, 4] = state_encoding[history[-1][4]]

    return arr, state_encoding, symbol_encoding


def visualize_tape(cells, head=None, width=40):
    """
    Print the non-blank part of a tape, bracketing the head cell.

    Args:
        cells: Sequence of symbols
        head: Optional head index to highlight
        width: Maximum number of cells shown around the head
    """
    used = [i for i, s in enumerate(cells) if s != BLANK]
    if head is not None:
        used.append(head)
    if not used:
        print("Empty tape")
        return

    lo, hi = min(used), max(used)
    if head is not None and hi - lo + 1 > width:
        lo = max(lo, head - width // 2)
        hi = min(hi, lo + width - 1)

    print("   Value:", end=" ")
    for pos in range(lo, hi + 1):
        symbol = cells[pos]
        if head is not None and pos == head:
            print(f"[{symbol}]", end="")
        else:
            print(f" {symbol} ", end="")
    print()
