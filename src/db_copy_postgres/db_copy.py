"""
PostgreSQL Database Copy Tool
Copy schema and/or data between PostgreSQL servers by piping pg_dump into pg_restore
Uses system commands (psql, pg_dump, pg_restore); the dump never touches local disk
"""

import argparse
import logging
import os
import subprocess
import threading
from typing import Dict, List, Optional

from dotenv import find_dotenv, load_dotenv

from .config import (
    PASSWORD_ENV_NAMES,
    EndpointConfig,
    TransferMode,
    env_names,
    load_config,
    load_transfer_mode,
)
from .errors import (
    ConfigurationError,
    DatabaseConnectionError,
    PipelineSetupError,
    ProcessExecutionError,
    ProcessStartError,
    TransferError,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

PG_TOOLS = ('psql', 'pg_dump', 'pg_restore')

EXIT_OK = 0
EXIT_TRANSFER_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_CONNECTION_ERROR = 3
EXIT_MISSING_TOOLS = 4
EXIT_INTERRUPTED = 130


class StderrForwarder:
    """Relay the stderr of child processes into the log

    Each stream gets its own thread, which ends by itself once the owning
    process closes the stream. Threads are remembered so callers can join
    them before reporting a result.
    """

    def __init__(self):
        self.threads: List[threading.Thread] = []

    def forward(self, stream, prefix: str) -> threading.Thread:
        thread = threading.Thread(
            target=self._relay,
            args=(stream, prefix),
            name=f"{prefix}-stderr",
            daemon=True
        )
        thread.start()
        self.threads.append(thread)
        return thread

    @staticmethod
    def _relay(stream, prefix: str):
        with stream:
            for raw in stream:
                line = raw.decode('utf-8', errors='ignore').rstrip('\r\n')
                if line:
                    logger.info(f"{prefix}: {line}")

    def join(self, timeout: Optional[float] = None):
        for thread in self.threads:
            thread.join(timeout)


class PgDumpTool:
    """Handle PostgreSQL probe, dump and restore commands"""

    @staticmethod
    def check_pg_tools() -> bool:
        """Check if psql, pg_dump and pg_restore commands are available"""
        missing = []

        for tool in PG_TOOLS:
            try:
                subprocess.run([tool, '--version'], capture_output=True,
                               stdin=subprocess.DEVNULL, timeout=5)
            except (FileNotFoundError, subprocess.TimeoutExpired):
                missing.append(tool)

        if missing:
            logger.error(f"Missing required tools: {', '.join(missing)}")
            logger.error("Please install PostgreSQL client tools: apt-get install postgresql-client")
            return False

        return True

    @staticmethod
    def password_env(config: EndpointConfig) -> Dict[str, str]:
        """Process environment for one invocation, with PGPASSWORD set

        SOURCE_DB_PASSWORD / TARGET_DB_PASSWORD are dropped so a tool never
        sees the other endpoint's secret.
        """
        env = {name: value for name, value in os.environ.items()
               if name not in PASSWORD_ENV_NAMES}
        env['PGPASSWORD'] = config.password
        return env

    @staticmethod
    def probe_command(config: EndpointConfig) -> List[str]:
        return [
            'psql',
            '-h', config.host,
            '-p', config.port,
            '-U', config.user,
            '-d', config.dbname,
            '-w',  # Never prompt, the password comes from PGPASSWORD
            '-c', 'SELECT 1'
        ]

    @staticmethod
    def dump_command(config: EndpointConfig, restriction: Optional[str] = None) -> List[str]:
        """Build pg_dump command writing a custom-format archive to stdout

        Args:
            config: Source endpoint
            restriction: '--schema-only', '--data-only' or None for both
        """
        dump_cmd = [
            'pg_dump',
            '-h', config.host,
            '-p', config.port,
            '-U', config.user,
            '-w',
            '-F', 'c',  # Custom (compressed) archive, required by pg_restore
            '-b',  # Include large objects
            '-v'
        ]

        if restriction:
            dump_cmd.append(restriction)

        dump_cmd.append(config.dbname)
        return dump_cmd

    @staticmethod
    def restore_command(config: EndpointConfig) -> List[str]:
        """Build pg_restore command reading an archive from stdin"""
        return [
            'pg_restore',
            '-h', config.host,
            '-p', config.port,
            '-U', config.user,
            '-w',
            '-d', config.dbname,
            '-v'
        ]

    @staticmethod
    def check_connection(config: EndpointConfig, role: str):
        """Run SELECT 1 against one endpoint

        Raises DatabaseConnectionError unless psql exits with status 0.
        """
        probe_cmd = PgDumpTool.probe_command(config)
        logger.debug(f"Executing probe command: {' '.join(probe_cmd)}")

        try:
            result = subprocess.run(
                probe_cmd,
                env=PgDumpTool.password_env(config),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except OSError as err:
            raise DatabaseConnectionError(role, f"could not run psql: {err}") from err

        if result.returncode != 0:
            cause = f"psql exited with status {result.returncode}"
            error_msg = result.stderr.decode('utf-8', errors='ignore').strip()
            if error_msg:
                cause = f"{cause}: {error_msg}"
            raise DatabaseConnectionError(role, cause)

    @staticmethod
    def _spawn(tool: str, role: str, cmd: List[str], config: EndpointConfig,
               stdin, stdout) -> subprocess.Popen:
        logger.debug(f"Executing {tool} command: {' '.join(cmd)}")
        try:
            return subprocess.Popen(
                cmd,
                stdin=stdin,
                stdout=stdout,
                stderr=subprocess.PIPE,
                env=PgDumpTool.password_env(config)
            )
        except OSError as err:
            raise ProcessStartError(tool, role, err) from err

    @staticmethod
    def pipe_dump_to_restore(source: EndpointConfig, target: EndpointConfig,
                             restriction: Optional[str] = None):
        """Stream pg_dump output from source straight into pg_restore on target

        pg_restore is started first and pg_dump second; both exit statuses
        are checked. Nothing is rolled back on failure, so an interrupted
        run can leave the target partially restored.
        """
        scope = {
            '--schema-only': 'schema',
            '--data-only': 'data',
        }.get(restriction, 'schema and data')
        logger.info(f"Starting pg_dump ({scope}) from source database: {source.dbname} on host: {source.host}")

        dump_cmd = PgDumpTool.dump_command(source, restriction)
        restore_cmd = PgDumpTool.restore_command(target)

        try:
            read_fd, write_fd = os.pipe()
        except OSError as err:
            raise PipelineSetupError(f"error creating pipe between pg_dump and pg_restore: {err}") from err

        forwarder = StderrForwarder()
        restore = None
        try:
            restore = PgDumpTool._spawn('pg_restore', 'target', restore_cmd, target,
                                        stdin=read_fd, stdout=None)
            forwarder.forward(restore.stderr, 'pg_restore')

            dump = PgDumpTool._spawn('pg_dump', 'source', dump_cmd, source,
                                     stdin=subprocess.DEVNULL, stdout=write_fd)
            forwarder.forward(dump.stderr, 'pg_dump')
        except ProcessStartError:
            os.close(read_fd)
            os.close(write_fd)
            if restore is not None:
                logger.warning("Stopping pg_restore, pg_dump could not be started")
                restore.terminate()
                restore.wait()
                forwarder.join()
            raise

        # The children hold their own copies; ours would keep pg_restore from seeing EOF
        os.close(read_fd)
        os.close(write_fd)

        dump_rc = dump.wait()
        restore_rc = restore.wait()
        forwarder.join()

        if dump_rc != 0:
            detail = f"pg_restore exited with status {restore_rc}" if restore_rc != 0 else None
            raise ProcessExecutionError('pg_dump', 'source', dump_rc, detail)

        if restore_rc != 0:
            raise ProcessExecutionError('pg_restore', 'target', restore_rc)

        logger.info(f"Finished transferring {scope}")


class DatabaseTransferTool:
    """Main database transfer tool: probe both servers, then pipe dump into restore"""

    def __init__(self, source_config: EndpointConfig, target_config: EndpointConfig,
                 mode: TransferMode = TransferMode.FULL):
        self.source_config = source_config
        self.target_config = target_config
        self.mode = mode

    def check_connections(self):
        """Probe source then target; the target is skipped if the source fails"""
        PgDumpTool.check_connection(self.source_config, 'source')
        logger.info("Successfully connected to source database")

        PgDumpTool.check_connection(self.target_config, 'target')
        logger.info("Successfully connected to target database")

    def transfer(self):
        """Run one dump/restore pipeline per pass of the transfer mode"""
        passes = self.mode.passes
        for index, restriction in enumerate(passes, 1):
            if len(passes) > 1:
                logger.info("=" * 50)
                logger.info(f"PASS {index}/{len(passes)}: {restriction}")
                logger.info("=" * 50)

            PgDumpTool.pipe_dump_to_restore(self.source_config, self.target_config, restriction)

        logger.info("Database successfully transferred")

    def copy_database(self):
        self.check_connections()
        self.transfer()


def create_sample_env():
    """Print sample .env file"""
    sample = {
        'SOURCE': ('source-db.example.com', '5432', 'postgres', 'password', 'source_db'),
        'TARGET': ('target-db.example.com', '5432', 'postgres', 'password', 'target_db'),
    }

    for prefix, values in sample.items():
        for name, value in zip(env_names(prefix), values):
            print(f"{name}={value}")
        print()

    print(f"# One of: {', '.join(mode.value for mode in TransferMode)}")
    print(f"TRANSFER_MODE={TransferMode.FULL.value}")


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='PostgreSQL Database Copy Tool - Stream pg_dump output into pg_restore',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Connection settings are read from the environment (or a .env file):
  SOURCE_DB_HOST SOURCE_DB_PORT SOURCE_DB_USER SOURCE_DB_PASSWORD SOURCE_DB_NAME
  TARGET_DB_HOST TARGET_DB_PORT TARGET_DB_USER TARGET_DB_PASSWORD TARGET_DB_NAME

Examples:
  # Copy schema and data in a single pipeline, settings from ./.env
  db-copy-postgres

  # Copy schema first, then data, as two separate pipelines
  db-copy-postgres --mode schema-then-data

  # Copy data only (target schema must exist)
  db-copy-postgres --env-file prod-to-staging.env --mode data-only

  # Show sample .env
  db-copy-postgres --sample-env

Exit codes:
  0 success, 1 transfer failed, 2 configuration error,
  3 connection check failed, 4 PostgreSQL client tools missing
        """
    )

    parser.add_argument('--env-file', type=str, help='Path to .env file (default: .env found from the current directory)')
    parser.add_argument('--mode', type=str, choices=[mode.value for mode in TransferMode],
                        help='What to transfer (default: $TRANSFER_MODE or full)')
    parser.add_argument('--skip-tool-check', action='store_true', help='Do not check that psql, pg_dump and pg_restore are installed')
    parser.add_argument('--sample-env', action='store_true', help='Print sample .env file')
    parser.add_argument('--verbose', action='store_true', help='Enable verbose logging')

    args = parser.parse_args(argv)

    # Set logging level
    if args.verbose:
        logging.getLogger('db_copy_postgres').setLevel(logging.DEBUG)

    # Show sample env and exit
    if args.sample_env:
        create_sample_env()
        return EXIT_OK

    # Exported variables take precedence over the .env file
    if args.env_file:
        if not os.path.isfile(args.env_file):
            logger.error(f"Env file not found: {args.env_file}")
            return EXIT_CONFIG_ERROR
        load_dotenv(args.env_file)
        logger.info(f"Loaded environment from {args.env_file}")
    else:
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file)
            logger.info(f"Loaded environment from {env_file}")

    logger.info("Starting Database Transfer")

    try:
        source_config, target_config = load_config(os.environ)
        mode = load_transfer_mode(args.mode or os.environ.get('TRANSFER_MODE'))
    except ConfigurationError as err:
        logger.error(f"error loading configuration: {err}")
        return EXIT_CONFIG_ERROR

    try:
        if not args.skip_tool_check and not PgDumpTool.check_pg_tools():
            return EXIT_MISSING_TOOLS

        logger.info(f"Source: {source_config.describe()}")
        logger.info(f"Target: {target_config.describe()}")
        logger.info(f"Transfer mode: {mode.value}")

        tool = DatabaseTransferTool(source_config, target_config, mode)

        try:
            tool.check_connections()
        except DatabaseConnectionError as err:
            logger.error(f"error connecting to {err.endpoint} database: {err.cause}")
            return EXIT_CONNECTION_ERROR

        try:
            tool.transfer()
        except TransferError as err:
            logger.error(f"Failed to transfer database: {err}")
            return EXIT_TRANSFER_ERROR

    except KeyboardInterrupt:
        logger.info("Operation cancelled by user")
        return EXIT_INTERRUPTED
    except Exception as err:
        logger.error(f"Unexpected error: {err}", exc_info=True)
        return EXIT_TRANSFER_ERROR

    logger.info("Database transfer complete")
    return EXIT_OK

