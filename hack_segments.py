"""Memory segment addressing for the Hack target.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

VM programs refer to storage through named segments and an offset: `push local
2`, `pop static 7`, and so on. On the Hack machine, each segment is reached a
different way. Some segments keep a base pointer in a fixed RAM cell (`LCL`
for `local`, say), `temp` lives at a fixed numeric base, `pointer` picks one of
two fixed cells, `static` variables become assembler symbols named after the
translation unit, and `constant` isn't storage at all. This module holds that
table, plus names for the RAM cells the generated code uses.
"""

import dataclasses
import enum
import types


# Hack RAM cells with predefined assembler symbols.
SP = 'SP'
LCL = 'LCL'
ARG = 'ARG'
THIS = 'THIS'
THAT = 'THAT'
R13 = 'R13'
R14 = 'R14'
R15 = 'R15'

# First RAM cell of the temp segment.
TEMP_BASE = 5


class UnknownSegmentError(ValueError):
  """Raised for segment names that aren't in the segment table."""

  def __init__(self, segment: str):
    super().__init__(f'Unknown memory segment "{segment}"')
    self.segment = segment


class Addressing(enum.Enum):
  """How generated code reaches a segment's cells."""
  INDIRECT = 1  # Base cell holds a pointer; address is *base + offset.
  DIRECT = 2    # Address is base + offset, no pointer involved.
  CONSTANT = 3  # Not storage: the offset is the value.
  POINTER = 4   # Offset 0 is THIS, anything else is THAT.
  STATIC = 5    # Symbol `<unit>.<offset>`, allocated by the assembler.
  REGISTER = 6  # The base names a single register cell. VM code can't name
                # `sp`, so push and pop never see this.


@dataclasses.dataclass(frozen=True)
class SegmentBase:
  """Addressing mode and base token for a memory segment.

  Attributes:
    addressing: How the segment is addressed.
    base: For INDIRECT and REGISTER segments, the symbol of the cell holding
        the base; for DIRECT segments, the numeric base as a string. Empty for
        the others, whose addresses don't derive from a single base.
  """
  addressing: Addressing
  base: str = ''


_SEGMENTS = types.MappingProxyType({
    'sp': SegmentBase(Addressing.REGISTER, SP),
    'local': SegmentBase(Addressing.INDIRECT, LCL),
    'argument': SegmentBase(Addressing.INDIRECT, ARG),
    'this': SegmentBase(Addressing.INDIRECT, THIS),
    'that': SegmentBase(Addressing.INDIRECT, THAT),
    'temp': SegmentBase(Addressing.DIRECT, str(TEMP_BASE)),
    'static': SegmentBase(Addressing.STATIC),
    'pointer': SegmentBase(Addressing.POINTER),
    'constant': SegmentBase(Addressing.CONSTANT),
})


def lookup(segment: str) -> SegmentBase:
  """Retrieve addressing information for a named segment.

  Args:
    segment: Segment name as it appears in VM code, e.g. 'argument'.

  Returns:
    The segment's `SegmentBase`.

  Raises:
    UnknownSegmentError: `segment` is not in the table.
  """
  try:
    return _SEGMENTS[segment]
  except KeyError:
    raise UnknownSegmentError(segment) from None


def static_symbol(unit_name: str, offset: str) -> str:
  """Symbol for a static variable, unique to its translation unit."""
  return f'{unit_name}.{offset}'


def pointer_register(offset: str) -> str:
  """Cell selected by a `pointer` offset: only the literal '0' means THIS."""
  return THIS if offset == '0' else THAT
