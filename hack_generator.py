"""Hack assembly code generation for stack VM instructions.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

The code generator turns VM instructions into Hack assembly one instruction at
a time. Every VM instruction expands to a fixed template of Hack instructions;
the only things that vary between expansions are operands and the labels that
the generator mints along the way. The generated code keeps the VM stack in
RAM, with the `SP` cell pointing one past the top element, and represents VM
booleans as -1 (true) and 0 (false).

The calling convention works like this. A `call f n` pushes a return address
and the caller's `ARG`, `LCL`, `THIS`, and `THAT` (the "frame"), points `ARG`
at the first of the `n` arguments already on the stack, and jumps to `f`. The
`function f k` instruction that begins `f` points `LCL` at the top of the stack
and pushes `k` zeros for `f`'s local variables. A `return` copies the top of
the stack (the return value) over the first argument, moves `SP` just past it,
restores the caller's pointers from the frame, and jumps to the return address.
So the net effect of a call is to replace the arguments with one return value.

`R13`, `R14`, and `R15` are scratch cells: `pop` keeps a destination address in
`R13`, `return` keeps the frame base in `R13` and the return address in `R14`,
and `function` counts down local variable initialisation in `R15`.

All translation state (label serial numbers, the current function, call site
counters) belongs to a `CodeGenerator` object, and one of those should be used
for exactly one translation unit.
"""

import collections
import dataclasses
import warnings

import hack_emitter
import hack_segments
import vm_parser

from hack_segments import ARG, LCL, R13, R14, R15, SP, THAT, THIS
from vm_parser import Instruction, Opcode

from typing import Optional, Sequence, TextIO


# Hack computations for arithmetic and logical VM instructions.
_UNARY_OPS = {
    Opcode.NEG: '-M',
    Opcode.NOT: '!M',
}
_BINARY_OPS = {  # D holds the top of the stack, M the element below it.
    Opcode.ADD: 'D+M',
    Opcode.SUB: 'M-D',
    Opcode.AND: 'D&M',
    Opcode.OR: 'D|M',
}
_COMPARISON_JUMPS = {  # Jumps on (second from top) - (top).
    Opcode.EQ: 'JEQ',
    Opcode.GT: 'JGT',
    Opcode.LT: 'JLT',
}

# A call pushes this many cells besides the arguments: the return address
# and four saved pointers.
_FRAME_SIZE = 5

# Where `return` finds the caller's saved pointers, counting down from the
# callee's LCL, in the order they are restored.
_SAVED_POINTERS = ((THAT, 1), (THIS, 2), (ARG, 4), (LCL, 3))

# Initial stack pointer value for bootstrap code.
_STACK_BASE = 256


class InternalError(RuntimeError):
  """Raised when the generator is asked to do something it never should."""


class UnitNameError(ValueError):
  """Raised for translation unit names that can't be used in Hack symbols."""


@dataclasses.dataclass
class TranslationOptions:
  """Special options for code generation.

  Attributes:
    scoped_labels: If True, names in `label`, `goto`, and `if-goto`
        instructions inside a function are qualified with the function name,
        as `<function>$label$<label>`. Otherwise names are used verbatim.
    annotate: If True, precede the code for each VM instruction with a Hack
        comment showing the instruction.
    bootstrap: If True, translation should begin with bootstrap code that
        initialises the stack and calls `Sys.init`.
  """
  scoped_labels: bool = False
  annotate: bool = False
  bootstrap: bool = False


class Labels:
  """Generator for unique branch labels.

  Labels combine the translation unit's name with a serial number shared by
  all labels this object makes, so labels are unique within one translation
  and don't clash with labels from other translation units either.
  """
  _serial: int

  def __init__(self, unit_name: str):
    self.unit_name = unit_name
    self._serial = 0

  def generate(self, kind: str) -> str:
    """Create a unique label like 'Foo$COMPARE.12' for `kind` 'COMPARE'."""
    label = f'{self.unit_name}${kind}.{self._serial}'
    self._serial += 1
    return label


@dataclasses.dataclass
class FunctionContext:
  """Bookkeeping for the function whose body is being translated.

  Return address labels take the form `<function>$ret.<n>`. Every function
  name has its own counter for `n`, kept for the entire translation and never
  reset, so even a function whose body is interrupted by other functions gets
  a fresh label for every call site. (A function declared twice still gets
  fresh return labels, but its own labels are declared twice;
  `CodeGenerator.finish` warns about that.)

  Attributes:
    name: Name of the current function, or None before the first `function`
        instruction.
    call_sites: Number of return address labels made so far, per function.
  """
  name: Optional[str] = None
  call_sites: collections.Counter = dataclasses.field(
      default_factory=collections.Counter)

  def enter(self, name: str):
    """Note the start of a function's body."""
    self.name = name

  def return_label(self, default_name: str) -> str:
    """Mint a return address label for a call in the current function.

    Args:
      default_name: Used in place of the function name for calls made before
          any function has begun.

    Returns:
      A label unique across all calls made through this FunctionContext.
    """
    name = default_name if self.name is None else self.name
    label = f'{name}$ret.{self.call_sites[name]}'
    self.call_sites[name] += 1
    return label


class CodeGenerator:
  """Translates VM instructions for one translation unit into Hack assembly.

  Typical use is to call `write` for each instruction in order, then `finish`.
  `translate` returns the generated code instead of writing it.

  Public read-only properties:
    unit_name: Name of the translation unit, normally the source file's name
        without its extension. Static variables and branch labels are named
        after it.
    options: Code generation options.
  """
  unit_name: str
  options: TranslationOptions
  _emitter: hack_emitter.Emitter
  _labels: Labels
  _context: FunctionContext
  _declared_labels: collections.Counter
  _jump_targets: set[str]

  def __init__(
      self,
      unit_name: str,
      options: Optional[TranslationOptions] = None,
  ):
    """Initialise a CodeGenerator.

    Args:
      unit_name: Name of the translation unit; see class docstring.
      options: Code generation options. Defaults apply if None.

    Raises:
      UnitNameError: `unit_name` isn't usable in Hack assembler symbols.
    """
    if not vm_parser.is_symbol(unit_name): raise UnitNameError(
        f'Translation unit name "{unit_name}" is not a valid Hack symbol')
    self.unit_name = unit_name
    self.options = TranslationOptions() if options is None else options
    self._emitter = hack_emitter.Emitter()
    self._labels = Labels(unit_name)
    self._context = FunctionContext()
    self._declared_labels = collections.Counter()
    self._jump_targets = set()

  def translate(self, instruction: Instruction) -> list[str]:
    """Generate code for one VM instruction.

    Args:
      instruction: Instruction to translate.

    Returns:
      Hack assembly lines for the instruction.

    Raises:
      VmSyntaxError: the instruction is malformed (see
          `vm_parser.check_shape`).
      InternalError: the instruction asks for something impossible, like
          `pop constant 0`.
    """
    self._emit(instruction)
    return self._emitter.discard()

  def write(self, instruction: Instruction, sink: TextIO):
    """Generate code for one VM instruction and write it to `sink`.

    Code for an instruction is written all at once or not at all.
    """
    self._emit(instruction)
    self._emitter.flush(sink)

  def bootstrap(self) -> list[str]:
    """Generate bootstrap code: set up the stack and call `Sys.init`."""
    self._emit_bootstrap()
    return self._emitter.discard()

  def write_bootstrap(self, sink: TextIO):
    """Generate bootstrap code and write it to `sink`."""
    self._emit_bootstrap()
    self._emitter.flush(sink)

  def finish(self):
    """Wrap up a translation unit by checking for suspicious label usage."""
    for label in sorted(self._jump_targets - self._declared_labels.keys()):
      warnings.warn(
          f'Label {label} is a jump target but is not declared in '
          f'{self.unit_name}')
    for label, count in sorted(self._declared_labels.items()):
      if count > 1: warnings.warn(
          f'Label {label} is declared {count} times in {self.unit_name}')

  ### Dispatch ###

  def _emit(self, instruction: Instruction):
    """Place code for `instruction` in the emitter's buffer."""
    opcode = vm_parser.check_shape(instruction)
    operands = instruction.operands
    try:
      if self.options.annotate: self._emitter.comment(str(instruction))

      match opcode:
        case Opcode.PUSH:
          self._push(*operands)
        case Opcode.POP:
          self._pop(*operands)
        case _ if opcode in _UNARY_OPS:
          self._unary(_UNARY_OPS[opcode])
        case _ if opcode in _BINARY_OPS:
          self._binary(_BINARY_OPS[opcode])
        case _ if opcode in _COMPARISON_JUMPS:
          self._comparison(_COMPARISON_JUMPS[opcode])
        case Opcode.LABEL:
          self._label(*operands)
        case Opcode.GOTO:
          self._goto(*operands)
        case Opcode.IF_GOTO:
          self._if_goto(*operands)
        case Opcode.CALL:
          self._call(*operands)
        case Opcode.FUNCTION:
          self._function(*operands)
        case Opcode.RETURN:
          self._return()
        case _:
          raise InternalError(f'No code generator for opcode {opcode}')

    # Leave nothing behind for the next instruction.
    except Exception:
      self._emitter.discard()
      raise

  def _emit_bootstrap(self):
    self._emitter.address(str(_STACK_BASE)).assign('D', 'A')
    self._emitter.address(SP).assign('M', 'D')
    self._call('Sys.init', '0')

  ### Stack helpers ###

  def _push_d(self):
    """Push the D register onto the stack."""
    (self._emitter.address(SP).assign('A', 'M').assign('M', 'D')
                  .address(SP).assign('M', 'M+1'))

  def _pop_d(self):
    """Pop the top of the stack into the D register."""
    self._emitter.address(SP).assign('AM', 'M-1').assign('D', 'M')

  ### Arithmetic, logic, and comparison ###

  def _unary(self, comp: str):
    self._emitter.address(SP).assign('A', 'M-1').assign('M', comp)

  def _binary(self, comp: str):
    self._pop_d()
    self._emitter.assign('A', 'A-1').assign('M', comp)

  def _comparison(self, condition: str):
    # Optimistically store true, then overwrite with false unless the
    # comparison holds.
    label = self._labels.generate('COMPARE')
    self._pop_d()
    (self._emitter.assign('A', 'A-1').assign('D', 'M-D').assign('M', '-1')
                  .address(label).jump('D', condition)
                  .address(SP).assign('A', 'M-1').assign('M', '0'))
    self._declare(label)

  ### Memory access ###

  def _push(self, segment: str, offset: str):
    emitter = self._emitter
    base = hack_segments.lookup(segment)
    match base.addressing:
      case hack_segments.Addressing.INDIRECT:
        (emitter.address(offset).assign('D', 'A')
                .address(base.base).assign('A', 'D+M').assign('D', 'M'))
      case hack_segments.Addressing.DIRECT:
        (emitter.address(offset).assign('D', 'A')
                .address(base.base).assign('A', 'D+A').assign('D', 'M'))
      case hack_segments.Addressing.CONSTANT:
        emitter.address(offset).assign('D', 'A')
      case hack_segments.Addressing.POINTER:
        emitter.address(hack_segments.pointer_register(offset))
        emitter.assign('D', 'M')
      case hack_segments.Addressing.STATIC:
        emitter.address(hack_segments.static_symbol(self.unit_name, offset))
        emitter.assign('D', 'M')
      case _:
        raise InternalError(f'Cannot push from the {segment} segment')
    self._push_d()

  def _pop(self, segment: str, offset: str):
    emitter = self._emitter
    base = hack_segments.lookup(segment)
    match base.addressing:
      # For segments needing address arithmetic, work out the destination
      # address before popping, since popping needs D.
      case hack_segments.Addressing.INDIRECT | hack_segments.Addressing.DIRECT:
        base_comp = ('M' if base.addressing == hack_segments.Addressing.INDIRECT
                     else 'A')
        (emitter.address(base.base).assign('D', base_comp)
                .address(offset).assign('D', 'D+A')
                .address(R13).assign('M', 'D'))
        self._pop_d()
        emitter.address(R13).assign('A', 'M').assign('M', 'D')
      case hack_segments.Addressing.POINTER:
        self._pop_d()
        emitter.address(hack_segments.pointer_register(offset))
        emitter.assign('M', 'D')
      case hack_segments.Addressing.STATIC:
        self._pop_d()
        emitter.address(hack_segments.static_symbol(self.unit_name, offset))
        emitter.assign('M', 'D')
      case _:
        raise InternalError(f'Cannot pop to the {segment} segment')

  ### Control flow ###

  def _qualify(self, name: str) -> str:
    """Apply label scoping (if enabled) to a label name."""
    if self.options.scoped_labels and self._context.name is not None:
      return f'{self._context.name}$label${name}'
    return name

  def _declare(self, label: str):
    """Declare a label, keeping count for the duplicate check in `finish`."""
    self._declared_labels[label] += 1
    self._emitter.label(label)

  def _label(self, name: str):
    self._declare(self._qualify(name))

  def _goto(self, name: str):
    label = self._qualify(name)
    self._jump_targets.add(label)
    self._emitter.address(label).jump('0', 'JMP')

  def _if_goto(self, name: str):
    label = self._qualify(name)
    self._jump_targets.add(label)
    self._pop_d()
    self._emitter.address(label).jump('D', 'JNE')

  ### Function linkage ###

  def _call(self, name: str, n_args: str):
    emitter = self._emitter
    return_label = self._context.return_label(self.unit_name)

    # Push the frame: return address, then the caller's pointers.
    emitter.address(return_label).assign('D', 'A')
    self._push_d()
    for pointer in (ARG, LCL, THIS, THAT):
      emitter.address(pointer).assign('D', 'M')
      self._push_d()

    # ARG = SP - (n_args + frame size), then off we go.
    (emitter.address(SP).assign('D', 'M')
            .address(str(int(n_args) + _FRAME_SIZE)).assign('D', 'D-A')
            .address(ARG).assign('M', 'D')
            .address(name).jump('0', 'JMP'))
    self._declare(return_label)

  def _function(self, name: str, n_vars: str):
    emitter = self._emitter
    self._context.enter(name)
    loop_label = f'{name}$LOCALS'
    end_label = f'{loop_label}.end'

    self._declare(name)
    (emitter.address(SP).assign('D', 'M')
            .address(LCL).assign('M', 'D'))
    # Push n_vars zeros, counting down in R15.
    (emitter.address(str(int(n_vars))).assign('D', 'A')
            .address(end_label).jump('D', 'JEQ')
            .address(R15).assign('M', 'D'))
    self._declare(loop_label)
    (emitter.address(SP).assign('A', 'M').assign('M', '0')
            .address(SP).assign('M', 'M+1')
            .address(R15).assign('MD', 'M-1')
            .address(loop_label).jump('D', 'JGT'))
    self._declare(end_label)

  def _return(self):
    emitter = self._emitter
    # R13 = frame base (our LCL); R14 = return address. The return address
    # must be saved now: with no arguments, it sits where the return value is
    # about to go.
    (emitter.address(LCL).assign('D', 'M')
            .address(R13).assign('M', 'D')
            .address(str(_FRAME_SIZE)).assign('A', 'D-A').assign('D', 'M')
            .address(R14).assign('M', 'D'))

    # Return value replaces the first argument; SP goes just above it.
    self._pop_d()
    (emitter.address(ARG).assign('A', 'M').assign('M', 'D')
            .address(ARG).assign('D', 'M+1')
            .address(SP).assign('M', 'D'))

    # Restore the caller's pointers from the frame.
    for pointer, distance in _SAVED_POINTERS:
      (emitter.address(R13).assign('D', 'M')
              .address(str(distance)).assign('A', 'D-A').assign('D', 'M')
              .address(pointer).assign('M', 'D'))

    emitter.address(R14).assign('A', 'M').jump('0', 'JMP')


def generate(
    instructions: Sequence[Instruction],
    unit_name: str,
    options: Optional[TranslationOptions] = None,
) -> list[str]:
  """Translate a whole sequence of instructions into Hack assembly.

  A convenience for callers that want a list of lines instead of writing to
  a file. Includes bootstrap code if `options` asks for it.
  """
  generator = CodeGenerator(unit_name, options)
  code = generator.bootstrap() if generator.options.bootstrap else []
  for instruction in instructions:
    code.extend(generator.translate(instruction))
  generator.finish()
  return code
