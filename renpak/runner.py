import argparse
import logging
import pathlib
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence

from prompt_toolkit import PromptSession

from renpak.archive import GLOB_ALL, ArchivePath, extract_member
from renpak.errors import RPAError
from renpak.formats import rpa
from renpak.prompt import Option, select_prompt

logger = logging.getLogger(__name__)


@dataclass
class ProgramArgs:
    command: str
    archive: pathlib.Path
    pattern: str = GLOB_ALL
    output: pathlib.Path = pathlib.Path('out')
    interactive: bool = False
    verbose: bool = False


def init_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        style='{',
        format='[{asctime}] {levelname}: {message}',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


def menu(argv: Optional[Sequence[str]] = None) -> ProgramArgs:
    parser = argparse.ArgumentParser(
        prog='renpak',
        description="List and extract files from Ren'Py archives.",
    )
    parser.add_argument(
        '--verbose',
        '-v',
        action='store_true',
        help='log debugging information',
    )
    commands = parser.add_subparsers(dest='command', required=True)

    list_parser = commands.add_parser('list', help='list archive members')
    extract_parser = commands.add_parser('extract', help='extract archive members')
    for sub in (list_parser, extract_parser):
        sub.add_argument('archive', type=pathlib.Path, help='archive to read')
        sub.add_argument(
            'pattern',
            nargs='?',
            default=GLOB_ALL,
            help='pattern of member names to include',
        )

    extract_parser.add_argument(
        '--output',
        '-o',
        type=pathlib.Path,
        default=pathlib.Path('out'),
        help='directory to extract into (default: out)',
    )
    extract_parser.add_argument(
        '--interactive',
        '-i',
        action='store_true',
        help='choose which of the matching members to extract',
    )

    args = parser.parse_args(argv)
    return ProgramArgs(
        command=args.command,
        archive=args.archive,
        pattern=args.pattern,
        output=getattr(args, 'output', pathlib.Path('out')),
        interactive=getattr(args, 'interactive', False),
        verbose=args.verbose,
    )


def ask_pattern(default: str = GLOB_ALL) -> str:
    session: PromptSession[str] = PromptSession()
    pattern = session.prompt(
        f'Enter pattern of files to extract (e.g. images/*.png) [{default}]: '
    )
    return pattern.strip() or default


def choose_members(entries: List[ArchivePath]) -> List[ArchivePath]:
    by_name = {str(entry): entry for entry in entries}
    chosen = select_prompt(
        'Select files to extract: (space to toggle, A to toggle all)',
        [Option(name) for name in sorted(by_name)],
    )
    return [by_name[name] for name in chosen]


def list_members(args: ProgramArgs) -> None:
    with rpa.open(args.archive) as arc:
        for name in sorted(str(entry) for entry in arc.glob(args.pattern)):
            entry = arc.index[name]
            print(f'{entry.offset:>12} {entry.length:>10}  {name}')


def extract_members(args: ProgramArgs) -> None:
    with rpa.open(args.archive) as arc:
        logger.info(
            'opened %s (%s, %d members)',
            args.archive,
            arc.version.value.decode(),
            len(arc),
        )
        pattern = args.pattern
        if args.interactive and pattern == GLOB_ALL:
            pattern = ask_pattern()
        entries = sorted(arc.glob(pattern), key=str)
        if args.interactive and entries:
            entries = choose_members(entries)
        for entry in entries:
            print(f'extracting {entry}')
            extract_member(entry, args.output)
        logger.info('extracted %d files to %s', len(entries), args.output)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = menu(argv)
    init_logging(args.verbose)

    try:
        if args.command == 'list':
            list_members(args)
        elif args.command == 'extract':
            extract_members(args)
        else:
            raise ValueError(repr(args.command))
    except RPAError as exc:
        print(f'error: {exc}', file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
