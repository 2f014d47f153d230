"""Buffered emission of Hack assembly instructions.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

Hack assembly has only a few kinds of line:

   @value           A-instruction: load a number or symbol into A
   dest=comp;jump   C-instruction: compute, store, and/or jump
   (LABEL)          Label declaration (a pseudo-instruction)

An `Emitter` builds these lines into a pending buffer. Code generation for one
VM instruction appends a burst of lines and then flushes the buffer to an
output sink in one go, so anyone reading the sink never sees half of a VM
instruction's translation. Emitter methods return the emitter, so bursts can be
written as chains:

   emitter.address('SP').assign('AM', 'M-1').assign('D', 'M')

The emitter checks every `dest`, `comp`, and `jump` field against the Hack
instruction set. It won't check that symbols and labels are sensible; that's
up to the caller.
"""

from typing import Optional, TextIO


# Destinations, computations, and jump conditions in the Hack instruction set.
DESTS = frozenset(('M', 'D', 'MD', 'A', 'AM', 'AD', 'AMD'))
COMPS = frozenset((
    '0', '1', '-1', 'D', 'A', '!D', '!A', '-D', '-A',
    'D+1', 'A+1', 'D-1', 'A-1', 'D+A', 'D-A', 'A-D', 'D&A', 'D|A',
    'M', '!M', '-M', 'M+1', 'M-1', 'D+M', 'D-M', 'M-D', 'D&M', 'D|M'))
JUMPS = frozenset(('JGT', 'JEQ', 'JGE', 'JLT', 'JNE', 'JLE', 'JMP'))


class EmitterError(ValueError):
  """Raised when asked to emit something that isn't Hack assembly."""


class Emitter:
  """Accumulates Hack assembly lines for flushing to an output sink."""
  _pending: list[str]

  def __init__(self):
    """Initialise an Emitter with an empty buffer."""
    self._pending = []

  def address(self, symbol: str) -> 'Emitter':
    """Emit `@symbol`: load a number or symbol into the A register."""
    if not symbol or symbol.isspace():
      raise EmitterError('Empty A-instruction')
    self._pending.append(f'@{symbol}')
    return self

  def assign(self, dest: str, comp: str) -> 'Emitter':
    """Emit `dest=comp`: store a computation into register(s)/memory."""
    self._check_dest(dest)
    self._check_comp(comp)
    self._pending.append(f'{dest}={comp}')
    return self

  def label(self, name: str) -> 'Emitter':
    """Emit `(name)`: declare a label for the next instruction."""
    if not name or any(c.isspace() for c in name):
      raise EmitterError(f'Illegal label "{name}"')
    self._pending.append(f'({name})')
    return self

  def jump(
      self,
      comp: str,
      condition: str,
      dest: Optional[str] = None,
  ) -> 'Emitter':
    """Emit `[dest=]comp;condition`: jump to the address in A.

    Args:
      comp: Computation whose result is tested against `condition`.
      condition: Jump mnemonic, e.g. 'JEQ'; 'JMP' jumps unconditionally.
      dest: Optional destination to store the computation into as well.

    Returns:
      This Emitter.
    """
    self._check_comp(comp)
    if condition not in JUMPS:
      raise EmitterError(f'Illegal jump condition "{condition}"')
    if dest is None:
      self._pending.append(f'{comp};{condition}')
    else:
      self._check_dest(dest)
      self._pending.append(f'{dest}={comp};{condition}')
    return self

  def comment(self, text: str) -> 'Emitter':
    """Emit a `//` comment line. The Hack assembler ignores these."""
    self._pending.append(f'// {text}'.rstrip())
    return self

  def flush(self, sink: TextIO):
    """Write all pending lines to `sink`, then clear the buffer."""
    if self._pending:
      sink.write('\n'.join(self._pending) + '\n')
    self._pending = []

  def discard(self) -> list[str]:
    """Clear the buffer without writing it anywhere; return what was there."""
    lines, self._pending = self._pending, []
    return lines

  def _check_dest(self, dest: str):
    if dest not in DESTS:
      raise EmitterError(f'Illegal destination "{dest}"')

  def _check_comp(self, comp: str):
    if comp not in COMPS:
      raise EmitterError(f'Illegal computation "{comp}"')
