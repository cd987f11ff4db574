#!/usr/bin/env python3
"""
WonderSwan VGM to MIDI converter.
Converts WonderSwan sound captures (.vgm/.vgz) to Standard MIDI Files.
"""

import sys
import traceback

from converter import VgmConverter
from vgm_reader import VgmFormatError


def print_usage():
    print("Usage: vgm2mid [options] <input.vgm> <output.mid>")
    print("       vgm2mid [options] -b [directory]")
    print("       vgm2mid [options] -s")
    print()
    print("Modes:")
    print("  <input> <output>        - Convert a single capture")
    print("  -b [directory]          - Batch convert every .vgm/.vgz in a directory (default: current)")
    print("  -s                      - Sort the instrument file, grouping similar waveforms")
    print()
    print("Options:")
    print("  -l <loops>              - Number of times to play the loop section (default: 2)")
    print("  --config <file.yaml>    - Conversion settings file")
    print("  --instruments <file>    - Instrument file (default: instruments.yaml)")
    print("  --output-dir <dir>      - Directory for batch output files")
    print("  --debug-events          - Also write a JSON .events listing")
    print("  --dump                  - Also write a plain-text event listing")
    print()
    print("Examples:")
    print("  vgm2mid song.vgm song.mid")
    print("  vgm2mid -l 1 --dump song.vgz song.mid")
    print("  vgm2mid -b captures/")


def main(argv=None):
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    # Parse command-line arguments
    mode = None
    batch_dir = '.'
    config_file = None
    overrides = {}
    args = []

    i = 0
    while i < len(argv):
        arg = argv[i]
        if arg == '-l' and i + 1 < len(argv):
            try:
                overrides['loops'] = int(argv[i + 1])
            except ValueError:
                print(f"Error: invalid loop count '{argv[i + 1]}'")
                sys.exit(1)
            i += 1
        elif arg == '-b':
            mode = 'batch'
            # Directory is optional
            if i + 1 < len(argv) and not argv[i + 1].startswith('-'):
                batch_dir = argv[i + 1]
                i += 1
        elif arg == '-s':
            mode = 'sort'
        elif arg == '--config' and i + 1 < len(argv):
            config_file = argv[i + 1]
            i += 1
        elif arg == '--instruments' and i + 1 < len(argv):
            overrides['instrument_file'] = argv[i + 1]
            i += 1
        elif arg == '--output-dir' and i + 1 < len(argv):
            overrides['output_dir'] = argv[i + 1]
            i += 1
        elif arg == '--debug-events':
            overrides['debug_events'] = True
        elif arg == '--dump':
            overrides['dump_text'] = True
        elif arg.startswith('-') and arg != '-':
            print(f"Unknown option: {arg}")
            print()
            print_usage()
            sys.exit(1)
        else:
            args.append(arg)
        i += 1

    if mode is None and len(args) < 2:
        print_usage()
        sys.exit(1)

    try:
        converter = VgmConverter(config_file, **overrides)

        if mode == 'batch':
            converter.convert_batch(batch_dir)
        elif mode == 'sort':
            converter.sort_instruments()
        else:
            converter.convert_file(args[0], args[1])
    except (VgmFormatError, OSError) as e:
        print(f"\nError: {e}")
        sys.exit(1)
    except Exception as e:
        print(f"\nError: {e}")
        print("\nFull traceback:")
        traceback.print_exc()
        sys.exit(1)


if __name__ == '__main__':
    main()
