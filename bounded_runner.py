"""
Bounded runs.

run_to_end drives any engine (deterministic, multi-tape, non-deterministic)
until it halts or reaches a step ceiling, so every run ends with an outcome:
accepted, rejected or timeout. It only calls the engine's step(); running
step() by hand until halt gives the same outcome and final tape.
"""

import logging

import numpy as np

from multi_to_single import encode_tracks
from nondeterministic_machine import NonDeterministicEngine
from simulator_config import DEFAULT_TAPE_SIZE, MAX_STEPS, load_settings
from transition_index import (
    Machine, Outcome, RunResult, build_index, check_input, machine_alphabet,
)
from turing_machine import (
    DeterministicEngine, MultiTapeEngine, format_read, history_to_numpy, visualize_tape,
)
from turing_tape import BLANK

logger = logging.getLogger(__name__)

MODES = ('deterministic', 'multi', 'nondeterministic')


def run_to_end(engine, max_steps=MAX_STEPS, verbose=False):
    """
    Step `engine` until it halts or `max_steps` steps have been taken.

    Args:
        engine: DeterministicEngine, MultiTapeEngine or NonDeterministicEngine
        max_steps: Step ceiling (default 200)
        verbose: If True, print each step

    Returns:
        RunResult with outcome TIMEOUT when the ceiling is reached first
    """
    if verbose:
        print(f"Running {engine.index.machine.name or 'machine'} (max {max_steps} steps)")
        print("-" * 60)

    while not engine.halted and engine.step_count < max_steps:
        before = engine.step_count
        engine.step()
        if verbose and engine.step_count > before:
            _print_step(engine)

    result = engine.result(timeout=not engine.halted,
                           message=f"step ceiling of {max_steps} reached")

    logger.info("Run finished: %s after %d steps%s", result.outcome.value, result.step_count,
                f" ({result.message})" if result.message else "")
    if verbose:
        print(f"\nOutcome: {result.outcome.value} after {result.step_count} steps")
        if result.message:
            print(f"Reason: {result.message}")
        for cells, head in zip(result.tapes, result.heads):
            visualize_tape(cells, head)

    return result


def _print_step(engine):
    if isinstance(engine, NonDeterministicEngine):
        active = len(engine.active_threads)
        print(f"Generation {engine.generation}: {active} active, "
              f"{len(engine.threads)} threads total")
        return
    state, read, write, direction, next_state = engine.records[-1]
    print(f"Step {engine.step_count}: State={state}, Read={format_read(read)} -> "
          f"Write={format_read(write)}, Move={format_read(direction)}, Next={next_state}")


def make_engine(machine, input_symbols='', mode=None, strict=False, keep_undo=True,
                tape_size=DEFAULT_TAPE_SIZE):
    """
    Build the engine for `mode`: 'deterministic', 'multi' or 'nondeterministic'.

    The default mode follows the tape count of the machine.
    """
    index = build_index(machine)
    if mode is None:
        mode = 'deterministic' if index.num_tapes == 1 else 'multi'
    if mode == 'deterministic':
        return DeterministicEngine(index, input_symbols, tape_size, strict, keep_undo)
    if mode == 'multi':
        return MultiTapeEngine(index, input_symbols, tape_size, strict, keep_undo)
    if mode == 'nondeterministic':
        return NonDeterministicEngine(index, input_symbols, tape_size)
    raise ValueError(f"Unknown mode {mode!r}. Expected one of {MODES}")


def _invalid_input_result(error):
    return RunResult(outcome=Outcome.REJECTED, state=None, tapes=(), heads=(), step_count=0,
                     error=error.kind, message=error.message)


def run_machine(machine, input_string='', mode=None, max_steps=None, strict=None, verbose=False,
                settings=None):
    """
    Validate the input, then run `machine` to completion or the step ceiling.

    Unset `max_steps` and `strict` come from `settings`, loaded with
    load_settings() when not given.

    Returns:
        RunResult. Input symbols outside the machine alphabet give a
        REJECTED result with error INVALID_INPUT_SYMBOL and no steps taken.
    """
    if isinstance(machine, dict):
        machine = Machine.from_dict(machine)
    if settings is None:
        settings = load_settings()
    max_steps = settings.max_steps if max_steps is None else max_steps
    strict = settings.strict if strict is None else strict

    error = check_input(machine, input_string)
    if error is not None:
        logger.info("Run not started: %s", error.message)
        return _invalid_input_result(error)

    engine = make_engine(machine, input_string, mode, strict=strict,
                         keep_undo=False, tape_size=settings.tape_size)
    return run_to_end(engine, max_steps, verbose)


def run_compiled(compiled, input_string='', max_steps=None, verbose=False):
    """
    Run a CompiledMachine on `input_string` given as the source machine's tape 1.

    The input is checked against the source alphabet, encoded into tracks and
    run on the deterministic engine. The default ceiling is the
    TM_COMPILED_MAX_STEPS setting, since one source step costs many
    compiled steps.
    """
    if max_steps is None:
        max_steps = load_settings().compiled_max_steps

    error = check_input(compiled.machine, input_string, alphabet=compiled.input_alphabet)
    if error is not None:
        return _invalid_input_result(error)

    engine = DeterministicEngine(compiled.machine, encode_tracks(input_string, compiled.num_tapes),
                                 keep_undo=False)
    return run_to_end(engine, max_steps, verbose)


def simulate_random_inputs(machine, n_runs, max_length=8, mode=None, max_steps=None,
                           include_halt_row=True, seed=None):
    """
    Run a machine on random input strings drawn from its alphabet.

    Args:
        machine: Machine to run
        n_runs: Number of inputs to generate
        max_length: Inputs have lengths 0..max_length
        mode: Engine mode (see make_engine)
        max_steps: Step ceiling per run
        include_halt_row: Add a halt row to the encoded history of halted runs
        seed: Optional random seed for reproducibility

    Returns:
        Dict with keys:
            - 'inputs': List of input strings
            - 'results': List of RunResult
            - 'outcomes': List of Outcome
            - 'runs': List of numpy arrays (encoded histories)
            - 'state_encoding': Dict mapping state names to integers
            - 'symbol_encoding': Dict mapping symbols to integers
    """
    settings = load_settings()
    rng = np.random.default_rng(seed)
    alphabet = sorted(machine_alphabet(machine))

    state_encoding = {node.id: i for i, node in enumerate(sorted(machine.nodes, key=lambda n: n.id))}
    symbol_encoding = {}

    inputs, results, runs = [], [], []
    for _ in range(n_runs):
        length = int(rng.integers(0, max_length + 1))
        if alphabet and length:
            input_string = ''.join(rng.choice(alphabet, size=length))
        else:
            input_string = ''
        result = run_machine(machine, input_string, mode=mode, max_steps=max_steps,
                             settings=settings)

        for _, read, write, _, _ in result.history:
            for symbol in (read, write):
                if symbol not in symbol_encoding:
                    symbol_encoding[symbol] = len(symbol_encoding)

        halted = result.outcome is not Outcome.TIMEOUT
        arr, _, _ = history_to_numpy(list(result.history), state_encoding, symbol_encoding,
                                     include_halt_row=include_halt_row and halted)
        inputs.append(input_string)
        results.append(result)
        runs.append(arr)

    return {
        'inputs': inputs,
        'results': results,
        'outcomes': [r.outcome for r in results],
        'runs': runs,
        'state_encoding': state_encoding,
        'symbol_encoding': symbol_encoding,
    }


if __name__ == "__main__":
    from example_machines import load_machine
    from multi_to_single import compile_multi_to_single, decode_tracks

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("TURING MACHINE SIMULATOR")
    print("=" * 60)
    print("\nRunning 4-State Busy Beaver")
    print("Expected: 13 ones written, 107 steps to halt\n")

    bb4 = run_machine(load_machine('busy-beaver-4'), '')
    print(f"  Outcome: {bb4.outcome.value}")
    print(f"  Total steps: {bb4.step_count}")
    print(f"  Ones on tape: {sum(1 for s in bb4.tape if s == '1')}")
    visualize_tape(bb4.tape, bb4.head)

    print(f"\n{'=' * 60}")
    print("PALINDROME (single tape)")
    print("=" * 60)
    palindrome = load_machine('palindrome')
    run_machine(palindrome, 'abba', verbose=True)
    run_machine(palindrome, 'abc', verbose=True)

    print(f"\n{'=' * 60}")
    print("CONTAINS 'bb' (non-deterministic)")
    print("=" * 60)
    found = run_machine(load_machine('contains-bb'), 'abbab', mode='nondeterministic', verbose=True)
    print(f"Accepting thread: {found.accepting_thread} of {found.thread_count}")

    print(f"\n{'=' * 60}")
    print("IS-EQUAL: 2 tapes vs compiled single tape")
    print("=" * 60)
    is_equal = load_machine('is-equal')
    compiled = compile_multi_to_single(is_equal)
    print(f"Compiled: {len(compiled.nodes)} states, {len(compiled.edges)} edges")
    for word in ('', '1', '101'):
        source = run_machine(is_equal, word)
        single = run_compiled(compiled, word)
        print(f"  {word!r:<6} 2-tape: {source.outcome.value} in {source.step_count:<4} "
              f"compiled: {single.outcome.value} in {single.step_count}")
    print("Tracks after '101':")
    for i, (cells, head) in enumerate(decode_tracks(single.tape)):
        print(f"  tape {i + 1}: {''.join(cells).strip(BLANK)!r} head at {head}")

    print(f"\n{'=' * 60}")
    print("RANDOM INPUT SIMULATION")
    print("=" * 60)
    battery = simulate_random_inputs(palindrome, n_runs=10, max_length=6, seed=20)
    print(f"{'Input':<10} {'Steps':<8} {'Outcome':<10} {'Shape'}")
    print("-" * 40)
    for word, result, arr in zip(battery['inputs'], battery['results'], battery['runs']):
        print(f"{word!r:<10} {result.step_count:<8} {result.outcome.value:<10} {arr.shape}")
