"""Stack VM instruction parser and validator.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

VM source code is simple: one instruction per line, tokens separated by
whitespace, `//` comments running to the end of the line, and blank lines
wherever you like. A Lark grammar (`_GRAMMAR` below) splits the source into
lines of tokens; the rest of this module turns each non-empty line into an
`Instruction` and checks it against the instruction set:

   push <segment> <offset>      pop <segment> <offset>
   add  sub  neg  eq  gt  lt  and  or  not
   label <name>  goto <name>  if-goto <name>
   function <name> <nVars>  call <name> <nArgs>  return

Checking comes in two strengths. `check_shape` confirms only what code
generation can't do without: a known opcode, the right number of operands, a
known segment, and decimal numbers where numbers belong. `check` adds the
remaining rules of the language (no `pop constant`, offsets in range for fixed
segments, names usable as assembler symbols). The translator runs `check` on
everything before generating any code; the code generator runs `check_shape`
again on each instruction it receives.
"""

import dataclasses
import enum
import functools
import re

import lark

from typing import Optional


# Segments addressable from VM code.
VM_SEGMENTS = ('local', 'argument', 'this', 'that',
               'temp', 'static', 'pointer', 'constant')

# Largest value a `push constant` can load: Hack A-instructions are 15 bits.
MAX_CONSTANT = 32767

# Offsets past these would run off the end of fixed-size segments.
_MAX_OFFSET = {'temp': 7, 'pointer': 1}

# Names for labels and functions must be legal Hack assembler symbols.
_SYMBOL_REGEX = re.compile(r'[A-Za-z_.$:][\w.$:]*', re.ASCII)
_COUNT_REGEX = re.compile(r'\d+', re.ASCII)


class Opcode(enum.Enum):
  """VM instruction opcodes."""
  PUSH = 'push'
  POP = 'pop'
  ADD = 'add'
  SUB = 'sub'
  NEG = 'neg'
  EQ = 'eq'
  GT = 'gt'
  LT = 'lt'
  AND = 'and'
  OR = 'or'
  NOT = 'not'
  LABEL = 'label'
  GOTO = 'goto'
  IF_GOTO = 'if-goto'
  FUNCTION = 'function'
  CALL = 'call'
  RETURN = 'return'


# Expected syntax for each opcode, for error messages. Operand counts derive
# from these too.
_SHAPES = {
    Opcode.PUSH: 'push <segment> <offset>',
    Opcode.POP: 'pop <segment> <offset>',
    Opcode.ADD: 'add',
    Opcode.SUB: 'sub',
    Opcode.NEG: 'neg',
    Opcode.EQ: 'eq',
    Opcode.GT: 'gt',
    Opcode.LT: 'lt',
    Opcode.AND: 'and',
    Opcode.OR: 'or',
    Opcode.NOT: 'not',
    Opcode.LABEL: 'label <name>',
    Opcode.GOTO: 'goto <name>',
    Opcode.IF_GOTO: 'if-goto <name>',
    Opcode.FUNCTION: 'function <name> <nVars>',
    Opcode.CALL: 'call <name> <nArgs>',
    Opcode.RETURN: 'return',
}


class VmSyntaxError(ValueError):
  """Raised for VM code that isn't a valid instruction.

  Attributes:
    token: The offending text.
    expected: Description of what ought to have been there instead.
    line_number: 1-based source line of the offending text, if known.
    filename: Name of the source file, if known.
  """

  def __init__(
      self,
      token: str,
      expected: str,
      line_number: Optional[int] = None,
      filename: Optional[str] = None,
  ):
    self.token = token
    self.expected = expected
    self.line_number = line_number
    self.filename = filename
    super().__init__(str(self))

  def __str__(self) -> str:
    where = [w for w in (self.filename, self.line_number and
                         f'line {self.line_number}') if w]
    prefix = f'{", ".join(where)}: ' if where else ''
    return f'{prefix}found "{self.token}", expected {self.expected}'


@dataclasses.dataclass(frozen=True)
class Instruction:
  """One VM instruction.

  Attributes:
    opcode: The instruction's opcode.
    operands: Zero, one, or two operand tokens, verbatim from the source.
    line_number: 1-based line in the source where the instruction appeared,
        or None for instructions that weren't parsed from source.
  """
  opcode: Opcode
  operands: tuple[str, ...] = ()
  line_number: Optional[int] = dataclasses.field(default=None, compare=False)

  def __str__(self) -> str:
    opcode = (self.opcode.value if isinstance(self.opcode, Opcode) else
              str(self.opcode))
    return ' '.join((opcode,) + tuple(self.operands))


def parse(text: str, filename: Optional[str] = None) -> tuple[Instruction, ...]:
  """Parse and validate VM source code.

  Args:
    text: Complete VM source code.
    filename: Name of the file that `text` came from, or None if the text
        originated elsewhere. Used for error messages.

  Returns:
    Validated instructions, in source order.

  Raises:
    VmSyntaxError: the source contains something that isn't a valid
        instruction. Parsing stops at the first problem.
  """
  if not text.endswith('\n'): text += '\n'
  try:
    lines = _Transformer().transform(_parser().parse(text))
  except lark.exceptions.UnexpectedCharacters as e:
    raise VmSyntaxError(e.char, 'an instruction token or a // comment',
                        e.line, filename) from None

  instructions = []
  for tokens in lines:
    instruction = Instruction(_opcode(tokens[0], filename),
                              tuple(str(t) for t in tokens[1:]),
                              tokens[0].line)
    try:
      check(instruction)
    except VmSyntaxError as e:
      e.filename = filename
      raise
    instructions.append(instruction)
  return tuple(instructions)


def check_shape(instruction: Instruction) -> Opcode:
  """Check that an instruction is well-formed enough to translate.

  Args:
    instruction: Instruction to check.

  Returns:
    The instruction's opcode.

  Raises:
    VmSyntaxError: unknown opcode, wrong number of operands, unknown segment,
        or something other than a decimal number for an offset or count.
  """
  line_number = instruction.line_number
  opcode = _opcode(instruction.opcode, line_number=line_number)
  operands = instruction.operands

  expected_arity = len(_SHAPES[opcode].split()) - 1
  if len(operands) != expected_arity:
    raise VmSyntaxError(str(instruction), _SHAPES[opcode], line_number)

  if opcode in (Opcode.PUSH, Opcode.POP):
    segment, offset = operands
    if segment not in VM_SEGMENTS: raise VmSyntaxError(
        segment, f'a segment: one of {", ".join(VM_SEGMENTS)}', line_number)
    if not _COUNT_REGEX.fullmatch(offset): raise VmSyntaxError(
        offset, 'a non-negative decimal offset', line_number)

  elif opcode in (Opcode.FUNCTION, Opcode.CALL):
    count = operands[1]
    what = 'nVars' if opcode == Opcode.FUNCTION else 'nArgs'
    if not _COUNT_REGEX.fullmatch(count): raise VmSyntaxError(
        count, f'a non-negative decimal {what} in {_SHAPES[opcode]}',
        line_number)

  return opcode


def check(instruction: Instruction) -> Opcode:
  """Check that an instruction is valid VM code.

  Args:
    instruction: Instruction to check.

  Returns:
    The instruction's opcode.

  Raises:
    VmSyntaxError: the instruction fails `check_shape`, or it breaks one of
        the language's other rules.
  """
  opcode = check_shape(instruction)
  line_number = instruction.line_number

  if opcode in (Opcode.PUSH, Opcode.POP):
    segment, offset = instruction.operands
    if opcode == Opcode.POP and segment == 'constant':
      raise VmSyntaxError(str(instruction),
                          'push constant <i> instead of pop constant <i>',
                          line_number)
    if segment == 'constant' and int(offset) > MAX_CONSTANT:
      raise VmSyntaxError(offset, f'a constant no larger than {MAX_CONSTANT}',
                          line_number)
    if segment == 'pointer' and offset not in ('0', '1'):
      raise VmSyntaxError(offset, 'pointer offset 0 or 1', line_number)
    if segment in _MAX_OFFSET and int(offset) > _MAX_OFFSET[segment]:
      raise VmSyntaxError(
          offset, f'{segment} offset 0 to {_MAX_OFFSET[segment]}', line_number)

  elif opcode in (Opcode.LABEL, Opcode.GOTO, Opcode.IF_GOTO,
                  Opcode.FUNCTION, Opcode.CALL):
    name = instruction.operands[0]
    if not is_symbol(name): raise VmSyntaxError(
        name, 'a name made of letters, digits, and _.$: not starting with a '
        'digit', line_number)

  return opcode


def is_symbol(name: str) -> bool:
  """Whether `name` can be used as a Hack assembler symbol."""
  return _SYMBOL_REGEX.fullmatch(name) is not None


def _opcode(
    token,
    filename: Optional[str] = None,
    line_number: Optional[int] = None,
) -> Opcode:
  """Convert an opcode token to an `Opcode`, or raise a `VmSyntaxError`."""
  if isinstance(token, Opcode): return token
  try:
    return Opcode(str(token))
  except ValueError:
    raise VmSyntaxError(
        str(token), f'an opcode: one of {", ".join(o.value for o in Opcode)}',
        getattr(token, 'line', line_number), filename) from None


class _Transformer(lark.Transformer):
  """A Lark Transformer that collects the tokens on each non-empty line."""

  start = lambda self, items: [i for i in items if i is not None]

  def line(self, tokens):
    return tuple(tokens) or None


# One line per instruction. Any run of non-space, non-slash characters is a
# token; whether it's a sensible one is decided after parsing.
_GRAMMAR = r"""
start: line*
line: TOKEN* _NEWLINE

TOKEN: /[^\s\/]+/
COMMENT: /\/\/[^\n]*/
_NEWLINE: "\n"
_SPACE: /[ \t\f\r\v]+/

%ignore _SPACE
%ignore COMMENT
"""


@functools.cache
def _parser() -> lark.Lark:
  """Create/retrieve a singleton Lark parser for VM source code."""
  return lark.Lark(_GRAMMAR, parser='lalr')
