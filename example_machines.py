"""
Built-in example machines.

Each definition is a YAML table (see transition_index.parse_yaml_machine)
or, for the busy beaver, a list of 5-tuples. Use load_machine(name) to get
a Machine.
"""

from transition_index import machine_from_program, parse_yaml_machine


# Single tape: accepts strings over {a,b,c} that read the same backwards.
# Erases the first symbol, remembers it in the state, checks the last one.
PALINDROME_YAML = """
name: palindrome
blank: '_'
start state: start
accept states: [accept]
table:
  start:
    a: {write: _, R: have_a}
    b: {write: _, R: have_b}
    c: {write: _, R: have_c}
    _: {N: accept}
  have_a:
    [a,b,c]: R
    _: {L: match_a}
  have_b:
    [a,b,c]: R
    _: {L: match_b}
  have_c:
    [a,b,c]: R
    _: {L: match_c}
  match_a:
    a: {write: _, L: back}
    _: {N: accept}
  match_b:
    b: {write: _, L: back}
    _: {N: accept}
  match_c:
    c: {write: _, L: back}
    _: {N: accept}
  back:
    [a,b,c]: L
    _: {R: start}
  accept:
"""


# Two tapes: copy tape 1 onto tape 2, rewind both, compare cell by cell.
IS_EQUAL_YAML = """
name: is-equal
tapes: 2
blank: '_'
start state: copy
accept states: [equal]
table:
  copy:
    '0,_': {write: [0, 0], move: [R, R]}
    '1,_': {write: [1, 1], move: [R, R]}
    '_,_': {move: [L, L], next: rewind}
  rewind:
    '0,0': {move: [L, L]}
    '1,1': {move: [L, L]}
    '_,_': {move: [R, R], next: compare}
  compare:
    '0,0': {move: [R, R]}
    '1,1': {move: [R, R]}
    '_,_': {next: equal}
  equal:
"""


# Two tapes: a^n b^n (n >= 0). Pushes the a's onto tape 2, pops one per b.
ANBN_YAML = """
name: anbn
tapes: 2
blank: '_'
start state: start
accept states: [accept]
table:
  start:
    '_,_': {next: accept}
    'a,_': {write: [a, a], move: [R, R], next: push}
  push:
    'a,_': {write: [a, a], move: [R, R]}
    'b,_': {move: [N, L], next: match}
  match:
    'b,a': {move: [R, L]}
    '_,_': {next: accept}
  accept:
"""


# Three tapes: equal number of a's and b's. Sorts a's onto tape 2 and b's
# onto tape 3, then walks both back together. Tape 1 is left alone while
# counting ('*').
EQUAL_COUNT_YAML = """
name: equal-count
tapes: 3
blank: '_'
start state: sort
accept states: [accept]
table:
  sort:
    'a,_,_': {write: [a, a, _], move: [R, R, N]}
    'b,_,_': {write: [b, _, b], move: [R, N, R]}
    '_,_,_': {move: [N, L, L], next: count}
  count:
    '*,a,b': {write: [_, a, b], move: [N, L, L]}
    '*,_,_': {next: accept}
  accept:
"""


# Non-deterministic: accepts strings over {a,b} containing 'bb' by guessing
# where the pair starts.
CONTAINS_BB_YAML = """
name: contains-bb
blank: '_'
start state: guess
accept states: [found]
table:
  guess:
    a: R
    b: [R, {R: second}]
  second:
    b: {R: found}
  found:
"""


# Never halts: moves right over every symbol forever.
LOOP_YAML = """
name: loop
blank: '_'
start state: spin
accept states: [never]
table:
  spin:
    [a,b,_]: R
  never:
"""


# 4-State Busy Beaver
# This machine writes 13 ones on the tape before halting
# It runs for 107 steps
BUSY_BEAVER_4 = [
    # (current_state, read, write, direction, next_state)
    ('A', 0, 1, 'R', 'B'),
    ('A', 1, 1, 'L', 'B'),
    ('B', 0, 1, 'L', 'A'),
    ('B', 1, 0, 'L', 'C'),
    ('C', 0, 1, 'R', 'H'),  # Halt when in state C reading 0
    ('C', 1, 1, 'L', 'D'),
    ('D', 0, 1, 'R', 'D'),
    ('D', 1, 0, 'R', 'A'),
]


MACHINES = {
    'palindrome': PALINDROME_YAML,
    'is-equal': IS_EQUAL_YAML,
    'anbn': ANBN_YAML,
    'equal-count': EQUAL_COUNT_YAML,
    'contains-bb': CONTAINS_BB_YAML,
    'loop': LOOP_YAML,
}


def load_machine(name):
    """Machine for a built-in name ('busy-beaver-4' or a key of MACHINES)."""
    if name == 'busy-beaver-4':
        return machine_from_program(BUSY_BEAVER_4, name=name)
    try:
        return parse_yaml_machine(MACHINES[name])
    except KeyError:
        raise KeyError(f"Unknown machine {name!r}. Available: "
                       f"{sorted(MACHINES) + ['busy-beaver-4']}")
