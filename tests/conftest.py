"""
Shared fixtures: connection settings and fake PostgreSQL client tools.

The fake psql / pg_dump / pg_restore are small shell scripts put first on
PATH. They record their arguments and PGPASSWORD, and their exit status is
driven by FAKE_* environment variables.
"""

import os
import sys
from pathlib import Path

import pytest

# Add the src directory to the path so we can import the package
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from db_copy_postgres.config import EndpointConfig, env_names  # noqa: E402


# Optional burst of stderr, larger than a pipe buffer when FAKE_STDERR_LINES is big
STDERR_NOISE = """i=0
while [ "$i" -lt "${FAKE_STDERR_LINES:-0}" ]; do
    echo "notice $i: ................................................................" >&2
    i=$((i + 1))
done
"""

FAKE_PSQL = """#!/bin/sh
if [ "$1" = "--version" ]; then echo "psql (PostgreSQL) 16.4"; exit 0; fi
echo "psql $*" >> "$FAKE_PG_CALLS"
echo "psql $PGPASSWORD" >> "$FAKE_PG_PASSWORDS"
echo "psql ${SOURCE_DB_PASSWORD}|${TARGET_DB_PASSWORD}" >> "$FAKE_PG_INHERITED"
if [ -n "$FAKE_PSQL_FAIL_HOST" ] && [ "$2" = "$FAKE_PSQL_FAIL_HOST" ]; then
    echo "psql: error: connection to server at \\"$2\\" failed: Connection refused" >&2
    exit 2
fi
echo " ?column? "
echo "        1 "
exit 0
"""

FAKE_PG_DUMP = """#!/bin/sh
if [ "$1" = "--version" ]; then echo "pg_dump (PostgreSQL) 16.4"; exit 0; fi
echo "pg_dump $*" >> "$FAKE_PG_CALLS"
echo "pg_dump $PGPASSWORD" >> "$FAKE_PG_PASSWORDS"
echo "pg_dump ${SOURCE_DB_PASSWORD}|${TARGET_DB_PASSWORD}" >> "$FAKE_PG_INHERITED"
""" + STDERR_NOISE + """echo "dumping contents of table public.users" >&2
printf 'PGDMP-ARCHIVE'
exit "${FAKE_DUMP_EXIT:-0}"
"""

# FAKE_RESTORE_FAIL_CALL=N makes only the Nth pg_restore run exit 1
FAKE_PG_RESTORE = """#!/bin/sh
if [ "$1" = "--version" ]; then echo "pg_restore (PostgreSQL) 16.4"; exit 0; fi
echo "pg_restore $*" >> "$FAKE_PG_CALLS"
echo "pg_restore $PGPASSWORD" >> "$FAKE_PG_PASSWORDS"
echo "pg_restore ${SOURCE_DB_PASSWORD}|${TARGET_DB_PASSWORD}" >> "$FAKE_PG_INHERITED"
run=$(grep -c '^pg_restore ' "$FAKE_PG_CALLS")
cat >> "$FAKE_RESTORE_INPUT"
""" + STDERR_NOISE + """echo "processing data for table public.users" >&2
if [ -n "$FAKE_RESTORE_FAIL_CALL" ] && [ "$run" = "$FAKE_RESTORE_FAIL_CALL" ]; then exit 1; fi
exit "${FAKE_RESTORE_EXIT:-0}"
"""


class FakePg:
    """Handle on the fake client tools and what they recorded"""

    def __init__(self, root: Path):
        self.bin_dir = root / "bin"
        self.calls_file = root / "calls.log"
        self.passwords_file = root / "passwords.log"
        self.inherited_file = root / "inherited.log"
        self.restore_input = root / "restore_input.bin"

    @staticmethod
    def _lines(path: Path):
        return path.read_text().splitlines() if path.exists() else []

    def calls(self, tool=None):
        lines = self._lines(self.calls_file)
        if tool:
            lines = [line for line in lines if line.split()[0] == tool]
        return lines

    def passwords(self):
        return self._lines(self.passwords_file)

    def inherited_secrets(self):
        """SOURCE_DB_PASSWORD|TARGET_DB_PASSWORD as seen by each tool run"""
        return self._lines(self.inherited_file)

    def restored_bytes(self) -> bytes:
        return self.restore_input.read_bytes() if self.restore_input.exists() else b""


@pytest.fixture
def fake_pg(tmp_path, monkeypatch):
    fake = FakePg(tmp_path)
    fake.bin_dir.mkdir()

    for name, body in (("psql", FAKE_PSQL), ("pg_dump", FAKE_PG_DUMP),
                       ("pg_restore", FAKE_PG_RESTORE)):
        script = fake.bin_dir / name
        script.write_text(body)
        script.chmod(0o755)

    monkeypatch.setenv("PATH", f"{fake.bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    monkeypatch.setenv("FAKE_PG_CALLS", str(fake.calls_file))
    monkeypatch.setenv("FAKE_PG_PASSWORDS", str(fake.passwords_file))
    monkeypatch.setenv("FAKE_PG_INHERITED", str(fake.inherited_file))
    monkeypatch.setenv("FAKE_RESTORE_INPUT", str(fake.restore_input))
    for name in ("FAKE_DUMP_EXIT", "FAKE_RESTORE_EXIT", "FAKE_RESTORE_FAIL_CALL",
                 "FAKE_PSQL_FAIL_HOST", "FAKE_STDERR_LINES"):
        monkeypatch.delenv(name, raising=False)
    return fake


@pytest.fixture
def source():
    return EndpointConfig(host="source-db", port="5432", user="reader",
                          password="s3cret-src", dbname="shop")


@pytest.fixture
def target():
    return EndpointConfig(host="target-db", port="6543", user="writer",
                          password="s3cret-dst", dbname="shop_copy")


@pytest.fixture
def pg_env(monkeypatch, source, target, tmp_path):
    """Export SOURCE_DB_* / TARGET_DB_* and run from an empty directory"""
    for prefix, config in (("SOURCE", source), ("TARGET", target)):
        values = (config.host, config.port, config.user, config.password, config.dbname)
        for name, value in zip(env_names(prefix), values):
            monkeypatch.setenv(name, value)
    monkeypatch.delenv("TRANSFER_MODE", raising=False)
    monkeypatch.chdir(tmp_path)
    return monkeypatch
