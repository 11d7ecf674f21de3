"""Shared fixtures: an in-memory SQLite database with employees, departments and activities."""

import sqlite3

import pytest

from sqldatamodel import DbApiDriver, Schema

DDL = [
    """CREATE TABLE Employee (
        emp_id INTEGER PRIMARY KEY AUTOINCREMENT,
        firstname TEXT,
        lastname TEXT,
        name TEXT,
        d_birth TEXT
    )""",
    """CREATE TABLE Department (
        dpt_id INTEGER PRIMARY KEY,
        dpt_name TEXT
    )""",
    """CREATE TABLE Activity (
        act_id INTEGER PRIMARY KEY,
        emp_id INTEGER,
        dpt_id INTEGER,
        d_begin TEXT,
        d_end TEXT
    )""",
]


class RecordingDriver(DbApiDriver):
    """Driver that keeps every executed (sql, binds) pair."""

    def __init__(self, connection, **kwargs):
        super().__init__(connection, **kwargs)
        self.log = []

    def execute(self, handle, binds=()):
        self.log.append((handle.sql, list(binds)))
        return super().execute(handle, binds)

    def statements(self, prefix):
        """Return the logged statements starting with ``prefix``."""
        return [(sql, binds) for sql, binds in self.log if sql.startswith(prefix)]


@pytest.fixture
def connection():
    """Create an in-memory database with the test tables."""
    conn = sqlite3.connect(":memory:", isolation_level=None)
    for ddl in DDL:
        conn.execute(ddl)
    yield conn
    conn.close()


@pytest.fixture
def driver(connection):
    return RecordingDriver(connection)


def declare_hr(schema):
    """Declare Employee, Department and Activity with their associations."""
    schema.declare_table("Employee", None, "emp_id")
    schema.declare_table("Department", None, "dpt_id")
    schema.declare_table("Activity", None, "act_id")
    schema.declare_composition(
        ("Employee", "employee", "1", "emp_id"),
        ("Activity", "activities", "*", "emp_id"),
    )
    schema.declare_association(
        ("Department", "department", "1", "dpt_id"),
        ("Activity", "activities", "*", "dpt_id"),
    )


@pytest.fixture
def schema(driver):
    """Create a schema over the test database."""
    schema = Schema(driver=driver)
    declare_hr(schema)
    return schema


@pytest.fixture
def populated(schema, connection, driver):
    """Fill the test tables with a few rows and clear the driver log."""
    connection.executemany(
        "INSERT INTO Employee (emp_id, firstname, lastname, d_birth) VALUES (?, ?, ?, ?)",
        [
            (1, "Johann Sebastian", "Bach", "1685-03-21"),
            (2, "Georg Friedrich", "Handel", "1685-02-23"),
            (3, "Antonio", "Vivaldi", "1678-03-04"),
            (4, "Domenico", "Scarlatti", "1685-10-26"),
            (5, "Georg Philipp", "Telemann", "1681-03-14"),
        ],
    )
    connection.executemany(
        "INSERT INTO Department (dpt_id, dpt_name) VALUES (?, ?)",
        [(10, "Leipzig"), (20, "London"), (30, "Venice")],
    )
    connection.executemany(
        "INSERT INTO Activity (act_id, emp_id, dpt_id, d_begin, d_end) VALUES (?, ?, ?, ?, ?)",
        [
            (100, 1, 10, "1723-05-01", None),
            (101, 2, 20, "1712-01-01", None),
            (102, 3, 30, "1703-09-01", "1740-01-01"),
            (103, 1, 20, "1700-01-01", "1702-01-01"),
        ],
    )
    driver.log.clear()
    return schema


@pytest.fixture
def make_schema():
    """Return a factory for declaration-only schemas with the test tables."""

    def factory(**options):
        schema = Schema(**options)
        declare_hr(schema)
        return schema

    return factory
