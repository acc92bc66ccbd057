"""
Non-deterministic Turing machine simulation.

All computation paths are explored breadth-first in synchronized
generations. Each generation steps every active thread once:

    0 matching rules  -> thread is rejected
    1 matching rule   -> thread applies it in place and keeps its id
    n > 1 rules       -> thread is frozen and spawns n children,
                         ids parent.1 .. parent.n

Threads live in an arena (a list) and point at their parent by index, so
the full branching tree is kept for inspection while depth and lineage
are structural queries.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from simulator_config import DEFAULT_TAPE_SIZE, SINGLE_TAPE_GROWTH
from transition_index import ErrorKind, Outcome, RunResult, TransitionIndex, build_index
from turing_tape import TapeModel, init_tape

logger = logging.getLogger(__name__)


class ThreadStatus(str, Enum):
    ACTIVE = 'active'
    FROZEN = 'frozen'
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'


@dataclass
class Thread:
    """One branch of execution."""
    index: int
    id: str
    parent: Optional[int]
    depth: int
    tape: TapeModel
    state: Optional[str]
    status: ThreadStatus = ThreadStatus.ACTIVE
    step_count: int = 0
    error: Optional[ErrorKind] = None
    message: str = ''
    last_read: Optional[str] = None
    last_edge: Optional[str] = None
    halted_at: Optional[int] = None
    children: List[int] = field(default_factory=list)
    records: List[tuple] = field(default_factory=list)

    @property
    def head(self):
        return self.tape.head


class NonDeterministicEngine:
    """
    Generation-synchronized branching simulation of a single-tape machine.

    Attributes:
        threads: Arena of every thread created in this run, in creation order
        generation: Number of generations stepped so far
        global_accept: True once any thread has entered an accept state
    """

    growth = SINGLE_TAPE_GROWTH

    def __init__(self, machine, input_symbols='', tape_size=DEFAULT_TAPE_SIZE):
        self.index = machine if isinstance(machine, TransitionIndex) else build_index(machine)
        if self.index.num_tapes != 1:
            raise ValueError("NonDeterministicEngine simulates single-tape machines only")
        self.tape_size = tape_size
        self.reset(input_symbols)

    def reset(self, input_symbols=None):
        if input_symbols is not None:
            self.input_symbols = input_symbols
        self.threads: List[Thread] = []
        self.generation = 0
        self.global_accept = False
        self._by_id = {}

        root = self._add_thread('1', None, init_tape(self.input_symbols, size=self.tape_size,
                                                     growth=self.growth), self.index.start)
        if self.index.start is None:
            self._terminate(root, ThreadStatus.REJECTED, ErrorKind.NO_START_STATE, "no start state")

    def _add_thread(self, thread_id, parent, tape, state):
        depth = 0 if parent is None else parent.depth + 1
        thread = Thread(index=len(self.threads), id=thread_id,
                        parent=None if parent is None else parent.index,
                        depth=depth, tape=tape, state=state)
        if parent is not None:
            thread.step_count = parent.step_count
            thread.records = list(parent.records)
            parent.children.append(thread.index)
        self.threads.append(thread)
        self._by_id[thread_id] = thread
        return thread

    def _terminate(self, thread, status, error=None, message=''):
        thread.status = status
        thread.error = error
        thread.message = message
        thread.halted_at = self.generation

    @property
    def step_count(self):
        return self.generation

    @property
    def active_threads(self):
        return [t for t in self.threads if t.status is ThreadStatus.ACTIVE]

    @property
    def halted(self):
        return self.global_accept or not self.active_threads

    def step(self):
        """
        Advance every active thread by one generation.

        Returns:
            The currently relevant threads (see relevant_threads()).
        """
        if self.halted:
            return self.relevant_threads()

        self.generation += 1
        for thread in self.active_threads:
            read = thread.tape.read()
            transitions = self.index.matches(thread.state, read)

            if not transitions:
                self._terminate(thread, ThreadStatus.REJECTED, ErrorKind.NO_TRANSITION,
                                f"no transition defined for symbol {read} in state {thread.state}")
            elif len(transitions) == 1:
                self._apply(thread, transitions[0], read)
            else:
                thread.status = ThreadStatus.FROZEN
                thread.halted_at = self.generation
                logger.debug("Thread %s branches into %d at generation %d",
                             thread.id, len(transitions), self.generation)
                for i, transition in enumerate(transitions):
                    child = self._add_thread(f"{thread.id}.{i + 1}", thread,
                                             thread.tape.copy(), thread.state)
                    self._apply(child, transition, read)

        return self.relevant_threads()

    def _apply(self, thread, transition, read):
        rule = transition.rule
        tape = thread.tape
        tape.write(tape.head, rule.write)
        tape.shift(rule.direction)
        thread.records.append((thread.state, read, rule.write, rule.direction, transition.target))
        thread.state = transition.target
        thread.last_read = read
        thread.last_edge = transition.edge_id
        thread.step_count += 1
        if self.index.is_accept(thread.state):
            self._terminate(thread, ThreadStatus.ACCEPTED)
            self.global_accept = True

    # -- queries ----------------------------------------------------------

    def thread(self, thread_id):
        return self._by_id[thread_id]

    def relevant_threads(self, include_history=False):
        """
        Threads worth showing for the current generation.

        By default: active and accepted threads, plus threads rejected in the
        latest generation. With include_history, the whole tree.
        """
        if include_history:
            return list(self.threads)
        return [t for t in self.threads
                if t.status in (ThreadStatus.ACTIVE, ThreadStatus.ACCEPTED)
                or (t.status is ThreadStatus.REJECTED and t.halted_at == self.generation)]

    def all_threads(self):
        return list(self.threads)

    def accepting_threads(self):
        return [t for t in self.threads if t.status is ThreadStatus.ACCEPTED]

    def depth(self, index):
        return self.threads[index].depth

    def children(self, index):
        return [self.threads[i] for i in self.threads[index].children]

    def lineage(self, index):
        """Thread ids from the root down to `index`."""
        path = []
        current = self.threads[index]
        while current is not None:
            path.append(current.id)
            current = None if current.parent is None else self.threads[current.parent]
        return path[::-1]

    def result(self, timeout=False, message=''):
        if self.global_accept:
            winner = self.accepting_threads()[0]
            return self._result_from(winner, Outcome.ACCEPTED, None, '', winner.id)

        active = self.active_threads
        if active:
            if not timeout:
                raise RuntimeError("result() called on an engine that has not halted")
            return self._result_from(active[0], Outcome.TIMEOUT, ErrorKind.TIMEOUT, message)

        leaves = [t for t in self.threads if t.status is ThreadStatus.REJECTED]
        last = max(leaves, key=lambda t: t.step_count)
        if last.error is ErrorKind.NO_START_STATE:
            return self._result_from(last, Outcome.REJECTED, last.error, last.message)
        return self._result_from(last, Outcome.REJECTED, ErrorKind.NO_TRANSITION,
                                 f"all {len(leaves)} threads rejected; last: {last.message}")

    def _result_from(self, thread, outcome, error, message, accepting=None):
        return RunResult(
            outcome=outcome,
            state=thread.state,
            tapes=(tuple(thread.tape.cells),),
            heads=(thread.tape.head,),
            step_count=self.generation,
            error=error,
            message=message,
            history=tuple(thread.records),
            accepting_thread=accepting,
            thread_count=len(self.threads),
        )
