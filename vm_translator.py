#!/usr/bin/python3
"""The stack VM to Hack assembly translator.

Forfeited into the public domain with NO WARRANTY. Read LICENSE for details.

This program translates one file of stack virtual machine code (`Foo.vm`) into
assembly language for the Hack computer (`Foo.asm`, written alongside the
source file). Translation happens in two stages. First the entire source file
is parsed and validated by the `vm_parser` module; nothing is written if the
source has any errors. Then the code generator in `hack_generator` translates
the instructions one by one, writing each instruction's code to the output
file before moving on to the next.

Static variables in the output are named after the source file (`Foo.0`,
`Foo.1`, ...), so several translated files can share one Hack program without
their statics colliding. Linking those files together is beyond this program,
however.

If all you want to know is how to run the translator, just execute this
program with the -h flag.
"""

import argparse
import os
import sys

import hack_generator
import hack_segments
import vm_parser

from typing import Optional


__version__ = 'VM to Hack translator 0.1 circa October 2026'

# Extension for generated Hack assembly files.
_OUTPUT_EXTENSION = '.asm'


def _define_flags():
  """Defines an `ArgumentParser` for command-line flags used by this program."""
  flags = argparse.ArgumentParser(
      description=(__version__),
      formatter_class=argparse.ArgumentDefaultsHelpFormatter)

  flags.add_argument('source', nargs='?',
                     help=('VM source code file to translate; the Hack '
                           f'assembly goes in a {_OUTPUT_EXTENSION} file with '
                           'the same name in the same directory'),
                     type=str)

  flags.add_argument('--bootstrap',
                     default=False, action=argparse.BooleanOptionalAction,
                     help=('Begin the output with code that initialises the '
                           'stack and calls Sys.init'),
                     type=bool)

  flags.add_argument('--scoped-labels',
                     default=False, action=argparse.BooleanOptionalAction,
                     help=('Qualify label names inside functions with the '
                           'function name (function$label$name)'),
                     type=bool)

  flags.add_argument('--annotate',
                     default=False, action=argparse.BooleanOptionalAction,
                     help=('Precede the code for each VM instruction with a '
                           'comment showing the instruction'),
                     type=bool)

  flags.add_argument('-v', '--version',
                     default=False, action=argparse.BooleanOptionalAction,
                     help='Print version, then exit',
                     type=bool)

  return flags


def output_path(source_path: str) -> str:
  """Path of the assembly file that translating `source_path` will write."""
  return os.path.splitext(source_path)[0] + _OUTPUT_EXTENSION


def unit_name(source_path: str) -> str:
  """Translation unit name for a source file: its name sans extension."""
  return os.path.splitext(os.path.basename(source_path))[0]


def translate_file(
    source_path: str,
    options: Optional[hack_generator.TranslationOptions] = None,
) -> str:
  """Translate a VM source file into a Hack assembly file.

  Args:
    source_path: VM source file to translate.
    options: Code generation options. Defaults apply if None.

  Returns:
    Path to the Hack assembly file written by the translator.

  Raises:
    OSError: the source couldn't be read, or the output couldn't be written.
    UnicodeDecodeError: the source isn't UTF-8 text.
    VmSyntaxError: the source code has an error. No output is written.
    UnitNameError: the source file's name can't be used for static variables.
  """
  with open(source_path, 'r', encoding='utf-8') as f:
    source_text = f.read()
  instructions = vm_parser.parse(source_text, source_path)
  generator = hack_generator.CodeGenerator(unit_name(source_path), options)

  # If anything goes wrong from here on, the output file is incomplete and
  # shouldn't be used, but we don't delete it.
  destination_path = output_path(source_path)
  with open(destination_path, 'w', encoding='utf-8') as sink:
    if generator.options.bootstrap: generator.write_bootstrap(sink)
    for instruction in instructions:
      generator.write(instruction, sink)
  generator.finish()

  return destination_path


######################
#### MAIN PROGRAM ####
######################


def main(FLAGS: argparse.Namespace) -> int:
  """For when the translator is run as a standalone executable."""
  if FLAGS.version:
    print(__version__)
    return 0

  options = hack_generator.TranslationOptions(
      scoped_labels=FLAGS.scoped_labels,
      annotate=FLAGS.annotate,
      bootstrap=FLAGS.bootstrap)

  try:
    translate_file(FLAGS.source, options)
  except UnicodeDecodeError as e:
    print(f'error: {FLAGS.source} is not UTF-8 text: {e}', file=sys.stderr)
    return 1
  except (OSError, vm_parser.VmSyntaxError, hack_segments.UnknownSegmentError,
          hack_generator.UnitNameError) as e:
    print(f'error: {e}', file=sys.stderr)
    return 1
  return 0


def cli():
  """Parse command-line flags and run the translator."""
  flags = _define_flags()
  FLAGS = flags.parse_args()
  if FLAGS.source is None and not FLAGS.version:
    flags.error('the following arguments are required: source')
  sys.exit(main(FLAGS))


if __name__ == '__main__':
  cli()
