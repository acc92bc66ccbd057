"""
Tape model shared by every engine.

A tape is a Python list of symbols plus a head index. The tape is logically
infinite in both directions: when the head comes within `threshold` cells of
either physical end, the buffer grows by `chunk` blank cells on that side and
the head index is shifted so it stays on the same logical cell.
"""

from simulator_config import DEFAULT_TAPE_SIZE, SINGLE_TAPE_GROWTH

BLANK = '␣'

DIRECTIONS = ('L', 'R', 'N')
MOVE = {'L': -1, 'R': 1, 'N': 0}


class TapeModel:
    """Growable symbol buffer with a head cursor."""

    def __init__(self, cells=None, head=0, growth=SINGLE_TAPE_GROWTH):
        self.cells = [normalize_symbol(s) for s in cells] if cells else [BLANK]
        if not 0 <= head < len(self.cells):
            raise IndexError(f"head {head} outside tape of length {len(self.cells)}")
        self.head = head
        self.threshold = growth.threshold
        self.chunk = growth.chunk
        self.extend()

    def __len__(self):
        return len(self.cells)

    def __repr__(self):
        return f"TapeModel({tape_to_string(self.cells)!r}, head={self.head})"

    def read(self, pos=None):
        """Symbol at `pos` (default: under the head). Blank outside the buffer."""
        if pos is None:
            pos = self.head
        if 0 <= pos < len(self.cells):
            return self.cells[pos]
        return BLANK

    def write(self, pos, symbol):
        if not 0 <= pos < len(self.cells):
            raise IndexError(f"write at {pos} outside tape of length {len(self.cells)}")
        self.cells[pos] = normalize_symbol(symbol)

    def move(self, pos, direction):
        """
        Move from `pos` one cell in `direction` and extend the buffer if needed.

        Returns:
            The new position, already adjusted for any left-side growth.
            The head is updated when `pos` is the head.
        """
        if direction not in MOVE:
            raise ValueError(f"Invalid direction {direction!r}. Expected L/R/N")
        is_head = pos == self.head
        new_pos = pos + MOVE[direction]
        if is_head:
            self.head = new_pos
            self.extend()
            return self.head
        return new_pos

    def shift(self, direction):
        """Move the head and return its new index."""
        return self.move(self.head, direction)

    def extend(self):
        """Grow either side until the head is at least `threshold` cells from both ends."""
        while self.head < self.threshold:
            self.cells[:0] = [BLANK] * self.chunk
            self.head += self.chunk
        while self.head >= len(self.cells) - self.threshold:
            self.cells.extend([BLANK] * self.chunk)

    def copy(self):
        clone = TapeModel.__new__(TapeModel)
        clone.cells = list(self.cells)
        clone.head = self.head
        clone.threshold = self.threshold
        clone.chunk = self.chunk
        return clone

    def snapshot(self):
        return tuple(self.cells), self.head

    def restore(self, cells, head):
        self.cells = list(cells)
        self.head = head

    def contents(self):
        """Tape contents between the outermost non-blank cells."""
        return tape_to_string(self.cells).strip(BLANK)


def normalize_symbol(symbol):
    """Unset cells ('' or None) read as the blank sentinel."""
    if symbol is None or symbol == '':
        return BLANK
    return symbol


def init_tape(input_symbols, size=DEFAULT_TAPE_SIZE, growth=SINGLE_TAPE_GROWTH):
    """
    Create a tape holding `input_symbols` with the head on the first symbol.

    Args:
        input_symbols: String or sequence of symbols (multi-character symbols
                       such as compiled head markers are allowed in sequences)
        size: Minimum physical size of the buffer; the input starts at size // 2
        growth: TapeGrowth policy

    Returns:
        TapeModel
    """
    symbols = list(input_symbols)
    start = size // 2
    cells = [BLANK] * max(size, start + len(symbols))
    for i, symbol in enumerate(symbols):
        cells[start + i] = normalize_symbol(symbol)
    return TapeModel(cells, head=start, growth=growth)


def tape_to_string(cells):
    """Join a sequence of tape symbols into a readable string."""
    return ''.join(str(s) for s in cells)
