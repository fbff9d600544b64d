"""
Command Line Interface for Tak Engine Testing
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .engine_manager import EngineConfig, EngineManager, parse_engine_spec
from .opening_book import BOOK_FORMATS, OpeningSuite
from .ptn_writer import PtnWriter
from .schedule import ConfigurationError, TimeControl, TournamentFormat, build_schedule
from .tei_interface import SpawnError
from .tei_protocol import EngineFault
from .tournament import Tournament
from .web_app import create_app, serve_in_background

logger = logging.getLogger("takbench")


def setup_logging(verbose: bool = False, log_file: Optional[str] = None):
    """Console logging plus an optional log file"""
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
        force=True
    )


def load_engines(args) -> List[EngineConfig]:
    """Engines from --engine specs, or from the registry file"""
    if args.engine:
        return [parse_engine_spec(spec, args.all_engines or ()) for spec in args.engine]

    manager = EngineManager(args.engines_file)
    engines = manager.list_engines(enabled_only=True)
    if args.select:
        wanted = args.select.split(',')
        missing = [name for name in wanted if manager.get_engine(name) is None]
        if missing:
            raise ConfigurationError(f"Unknown engines: {', '.join(missing)}")
        engines = [manager.get_engine(name) for name in wanted]
    return engines


def cmd_run(args) -> int:
    """Run a tournament"""
    engines = load_engines(args)
    time_control = TimeControl.parse(args.tc)
    fmt = TournamentFormat.from_name(args.format)
    if args.concurrency < 1:
        raise ConfigurationError(f"Concurrency must be at least 1, got {args.concurrency}")

    suite = OpeningSuite(args.size)
    if args.book:
        suite.load_from_file(args.book, args.book_format)
        if args.shuffle_book:
            suite.shuffle(args.seed)

    schedule = build_schedule(
        len(engines), suite.positions(), fmt, args.size, args.komi,
        time_control, args.games, args.book_start
    )

    print(f"\n{'='*60}")
    print(f"TOURNAMENT: {args.name}")
    print(f"Format: {fmt.value}")
    print(f"Engines: {', '.join(e.name for e in engines)}")
    print(f"Size: {args.size}x{args.size}  Komi: {args.komi:g}  Time Control: {time_control}")
    print(f"Games: {len(schedule)}  Openings: {max(1, len(suite))}  Concurrency: {args.concurrency}")
    print(f"{'='*60}\n")

    writer = PtnWriter(args.ptnout, event=args.name) if args.ptnout else None
    tournament = Tournament(
        name=args.name,
        engines=engines,
        schedule=schedule,
        concurrency=args.concurrency,
        ptn_writer=writer,
        startup_timeout=args.startup_timeout,
        move_overhead_ms=args.overhead
    )

    if args.http:
        serve_in_background(create_app(tournament), port=args.http)

    def handle_interrupt(signum, frame):
        tournament.request_stop()

    previous_handler = signal.signal(signal.SIGINT, handle_interrupt)

    # Callback for progress
    def progress_callback(game_info, standings):
        print(f"Game {game_info['round']}/{len(schedule)}: "
              f"{game_info['white']} vs {game_info['black']}: {game_info['result']} ({game_info['reason']})")

    try:
        results = tournament.run(update_callback=progress_callback)
    finally:
        signal.signal(signal.SIGINT, previous_handler)

    # Print final results
    print(f"\n{'='*60}")
    print(f"FINAL STANDINGS")
    print(f"{'='*60}")
    print(f"{'Rank':<6} {'Engine':<20} {'Points':<8} {'W-D-L':<12} {'Score%':<8}")
    print(f"{'='*60}")

    for i, stats in enumerate(results["standings"], 1):
        wdl = f"{stats['wins']}-{stats['draws']}-{stats['losses']}"
        print(f"{i:<6} {stats['engine']:<20} {stats['points']:<8.1f} {wdl:<12} {stats['score_percentage']:<8.1f}")

    if results["pairs"]:
        print(f"{'='*60}")
        for pair in results["pairs"]:
            print(f"{pair['engine']} vs {pair['opponent']}: "
                  f"+{pair['wins']}-{pair['losses']}={pair['draws']}  "
                  f"Elo {pair['elo']} [{pair['elo_lower']}, {pair['elo_upper']}]")

    print(f"{'='*60}\n")

    filename = tournament.save_results(args.results)
    print(f"Tournament results saved to {filename}\n")
    return 0


def cmd_list_engines(args) -> int:
    """List registered engines"""
    manager = EngineManager(args.engines_file)
    engines = manager.list_engines()

    if not engines:
        print("No engines registered. Use the 'add' command first.")
        return 0

    print(f"\n{'='*60}")
    print(f"{'Engine Name':<30} {'Status':<10} {'Path':<20}")
    print(f"{'='*60}")

    for engine in engines:
        status = "Enabled" if engine.enabled else "Disabled"
        print(f"{engine.name:<30} {status:<10} {engine.path:<20}")

    print(f"{'='*60}")
    print(f"Total: {len(engines)} engines\n")
    return 0


def cmd_add_engine(args) -> int:
    """Register an engine"""
    manager = EngineManager(args.engines_file)
    config = parse_engine_spec(args.spec)
    if not manager.add_engine(config):
        print(f"Error: Engine executable not found: {config.path}")
        return 1
    print(f"Added {config.name}")
    return 0


def cmd_info(args) -> int:
    """Show engine information"""
    manager = EngineManager(args.engines_file)
    try:
        info = manager.get_engine_info(args.engine)
    except (SpawnError, EngineFault) as e:
        print(f"Error: {args.engine} failed to start: {e}")
        return 1

    if not info:
        print(f"Error: Engine not found: {args.engine}")
        return 1

    print(f"\n{'='*60}")
    print(f"ENGINE INFORMATION")
    print(f"{'='*60}")
    print(f"Name: {info['name']}")
    print(f"Author: {info['author']}")
    print(f"Path: {info['path']}")
    print(f"\nTEI Options ({len(info['options'])}):")

    for name, opt_info in info['options'].items():
        print(f"  - {name}")
        print(f"      Type: {opt_info['type']}")
        if opt_info['default'] is not None:
            print(f"      Default: {opt_info['default']}")

    print(f"{'='*60}\n")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="takbench",
        description="Tak Engine Testing Framework",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging, including protocol traffic')
    parser.add_argument('-l', '--log', help='Also write the log to this file')
    parser.add_argument('--engines-file', default='config/engines.json', help='Engine registry (JSON)')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Run command
    parser_run = subparsers.add_parser('run', help='Run a tournament')
    parser_run.add_argument('--engine', nargs='+', action='append', metavar='KEY=VALUE',
                            help='Engine spec: path=... [name=...] [arg=...] [tc=...] [option.<Name>=...]')
    parser_run.add_argument('--all-engines', nargs='+', metavar='KEY=VALUE',
                            help='Settings applied to every --engine')
    parser_run.add_argument('--select', help='Comma-separated registry engines (default: all enabled)')
    parser_run.add_argument('--name', default='takbench', help='Tournament name')
    parser_run.add_argument('--format', default='round-robin',
                            help='round-robin, book-test or gauntlet')
    parser_run.add_argument('-s', '--size', type=int, default=6, help='Board size')
    parser_run.add_argument('--komi', type=float, default=0.0, help='Flat bonus for Black')
    parser_run.add_argument('--tc', default='60+0.6', help='Time control, base[+increment] in seconds')
    parser_run.add_argument('-g', '--games', type=int, help='Number of games (default: full schedule)')
    parser_run.add_argument('--concurrency', type=int, default=1, help='Games played at once')
    parser_run.add_argument('--book', help='Opening book file')
    parser_run.add_argument('--book-format', choices=BOOK_FORMATS, default='auto', help='Opening book line format')
    parser_run.add_argument('--shuffle-book', action='store_true', help='Shuffle the openings')
    parser_run.add_argument('--seed', type=int, help='Seed for --shuffle-book')
    parser_run.add_argument('--book-start', type=int, default=0, help='Index of the first opening')
    parser_run.add_argument('--ptnout', help='Append finished games to this PTN file')
    parser_run.add_argument('--results', help='Results JSON file (default: results/<name>_<timestamp>.json)')
    parser_run.add_argument('--startup-timeout', type=float, default=10.0, help='Seconds allowed for handshakes')
    parser_run.add_argument('--overhead', type=int, default=100, help='Move deadline grace (ms)')
    parser_run.add_argument('--http', type=int, metavar='PORT', help='Serve the live view on this port')

    # List command
    subparsers.add_parser('list', help='List registered engines')

    # Add command
    parser_add = subparsers.add_parser('add', help='Register an engine')
    parser_add.add_argument('spec', nargs='+', metavar='KEY=VALUE', help='Engine spec, as for run --engine')

    # Info command
    parser_info = subparsers.add_parser('info', help='Show engine information')
    parser_info.add_argument('engine', help='Engine name')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    setup_logging(args.verbose, args.log)

    # Route to command handler
    commands = {
        'run': cmd_run,
        'list': cmd_list_engines,
        'add': cmd_add_engine,
        'info': cmd_info
    }

    handler = commands[args.command]
    try:
        return handler(args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        print(f"\nError: {e}")
        return 2


if __name__ == '__main__':
    sys.exit(main())
