"""Command line interface for dbvault."""

import argparse
import getpass
import logging
import sys

from dbvault import __version__, configure_logging
from dbvault.backup.dumper import MySQLDumper, DatabaseListError
from dbvault.backup.executor import BackupAborted, create_orchestrator
from dbvault.backup.runners import create_runner
from dbvault.config import DEFAULT_CONFIG_PATH, ConfigError, load_config
from dbvault.notifier import create_notifier
from dbvault.scheduler import run_scheduled
from dbvault.utils.crypto import CryptoManager, SecretError


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ABORTED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dbvault',
        description="Back up MySQL databases to S3 with local and remote retention.",
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('-c', '--config', default=DEFAULT_CONFIG_PATH,
                        help="Path to the YAML configuration file.")
    parser.add_argument('-s', '--server', help="Server key from the 'servers' mapping to back up.")
    parser.add_argument('-v', '--verbose', action='store_true', help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest='command', required=True)

    parser_run = subparsers.add_parser('run', help="Run one backup of all included databases.")
    parser_run.add_argument(
        '-d', '--database',
        action='append',
        dest='databases',
        help="Only back up this included database (can be given several times).",
    )
    parser_run.add_argument('--skip-retention', action='store_true',
                            help="Do not run the local and S3 retention sweeps.")

    subparsers.add_parser('schedule', help="Run backups on the configured cron schedule.")
    subparsers.add_parser('list-databases', help="Show live databases and whether they are included.")
    subparsers.add_parser('encrypt-secret', help="Encrypt a value for use in the configuration file.")

    return parser


def _load(args):
    config = load_config(args.config)
    if args.server:
        config.select_server(args.server)
    if args.verbose:
        config.logging.level = 'DEBUG'
    configure_logging(config.logging)
    return config


def cmd_run(args) -> int:
    config = _load(args)
    orchestrator = create_orchestrator(
        config,
        create_notifier(config.notification),
        only=args.databases,
        skip_retention=args.skip_retention
    )

    try:
        summary = orchestrator.run()
    except BackupAborted as e:
        logger.critical(f"Backup run aborted: {e}")
        return EXIT_ABORTED

    if summary.failed:
        logger.warning(f"Failed databases: {', '.join(summary.failed)}")
    return EXIT_OK


def cmd_schedule(args) -> int:
    config = _load(args)
    notifier = create_notifier(config.notification)

    def run_backup():
        create_orchestrator(config, notifier).run()

    return run_scheduled(config.schedule, run_backup)


def cmd_list_databases(args) -> int:
    config = _load(args)
    runner = create_runner(config.ssh)
    dumper = MySQLDumper(runner, config.database, config.backup)

    try:
        live = dumper.list_databases()
    except DatabaseListError as e:
        logger.error(str(e))
        return EXIT_ABORTED
    finally:
        dumper.close()

    included = set(config.include_databases)
    for name in live:
        marker = '*' if name in included else ' '
        print(f"{marker} {name}")
    for name in sorted(included - set(live)):
        print(f"! {name} (included, not on server)")
    return EXIT_OK


def cmd_encrypt_secret(args) -> int:
    password = getpass.getpass("Master password: ")
    if password != getpass.getpass("Repeat master password: "):
        print("Passwords do not match", file=sys.stderr)
        return EXIT_CONFIG

    if sys.stdin.isatty():
        value = getpass.getpass("Secret value: ")
    else:
        value = sys.stdin.readline().rstrip('\n')

    try:
        print(CryptoManager(password).encrypt(value))
    except SecretError as e:
        print(str(e), file=sys.stderr)
        return EXIT_CONFIG
    return EXIT_OK


COMMANDS = {
    'run': cmd_run,
    'schedule': cmd_schedule,
    'list-databases': cmd_list_databases,
    'encrypt-secret': cmd_encrypt_secret,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        return COMMANDS[args.command](args)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG


if __name__ == '__main__':
    sys.exit(main())
