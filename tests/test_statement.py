"""Tests for the statement lifecycle, result shapes and pagination."""

import pytest

from sqldatamodel import Record, RowIterator, Schema, Statement, Status
from sqldatamodel.driver import CursorHandle
from sqldatamodel.errors import (
    InvalidStateError,
    KeyMismatchError,
    StatementOptionError,
    TooManyRowsError,
    UnboundPlaceholderError,
)
from sqldatamodel.sql_abstract import RawSql


@pytest.fixture
def employee(populated):
    return populated.table("Employee")


class TestLifecycle:
    """Tests for status transitions."""

    def test_statuses(self, employee):
        """Test the transitions from NEW to EXECUTED."""
        stmt = employee.statement(where={"lastname": "Bach"})
        assert stmt.status is Status.NEW

        stmt.compile()
        assert stmt.status is Status.COMPILED
        stmt.prepare()
        assert stmt.status is Status.PREPARED
        stmt.execute()
        assert stmt.status is Status.EXECUTED

    def test_execute_compiles_and_prepares(self, employee):
        """Test that execute on a new statement goes through every step."""
        stmt = employee.statement()
        stmt.execute()
        assert stmt.status is Status.EXECUTED
        assert len(stmt.all()) == 5

    def test_refine_after_compile(self, employee):
        """Test that refining a compiled statement fails."""
        stmt = employee.statement().compile()
        with pytest.raises(InvalidStateError) as exc_info:
            stmt.refine(where={"emp_id": 1})
        assert exc_info.value.status == "COMPILED"

    def test_compile_twice(self, employee):
        """Test that compiling twice fails."""
        stmt = employee.statement().compile()
        with pytest.raises(InvalidStateError):
            stmt.compile()

    def test_where_conditions_are_combined(self, employee, driver):
        """Test that where options of several refine calls are ANDed."""
        stmt = employee.statement(where={"lastname": "Bach"})
        stmt.refine(where={"firstname": {"like": "Johann%"}})
        rows = stmt.all()

        assert [row["emp_id"] for row in rows] == [1]
        sql, binds = driver.log[-1]
        assert sql == "SELECT * FROM Employee WHERE lastname = ? AND firstname LIKE ?"
        assert binds == ["Bach", "Johann%"]

    def test_unknown_option(self, employee):
        """Test error on an unknown option."""
        with pytest.raises(StatementOptionError):
            employee.statement(wher={"emp_id": 1})

    def test_unknown_result_shape(self, employee):
        """Test error on an unknown result shape."""
        with pytest.raises(StatementOptionError):
            employee.select(result_as="pickle")

    def test_source_where(self, populated):
        """Test that a table's own condition is added to every select."""
        table = populated.declare_table("OldEmployee", "Employee", "emp_id", where={"d_birth": {"<": "1682"}})
        assert sorted(row["emp_id"] for row in table.select()) == [3, 5]

    def test_clone(self, employee):
        """Test that a clone is refined independently."""
        stmt = employee.statement(where={"lastname": "Bach"})
        clone = stmt.clone()
        clone.refine(where={"emp_id": 99})

        assert len(stmt.all()) == 1
        assert clone.all() == []
        with pytest.raises(InvalidStateError):
            stmt.clone()

    def test_repr(self, employee):
        """Test the statement representation."""
        assert repr(employee.statement()) == "<Statement Employee status=NEW>"


class TestBinding:
    """Tests for named placeholders."""

    def test_bind_before_compile(self, employee):
        """Test that values bound on a new statement are applied at compile time."""
        stmt = employee.statement(where={"lastname": "?:name"})
        stmt.bind(name="Vivaldi")
        assert [row["emp_id"] for row in stmt.all()] == [3]

    def test_bind_after_compile(self, employee):
        """Test binding on a prepared statement."""
        stmt = employee.statement(where={"lastname": "?:name"}).prepare()
        stmt.bind("name", "Handel")
        assert [row["emp_id"] for row in stmt.all()] == [2]

    def test_reexecute_with_new_values(self, employee):
        """Test that execute can run again with other bindings."""
        stmt = employee.statement(where={"lastname": "?:name"})
        stmt.execute(name="Bach")
        assert stmt.next()["emp_id"] == 1

        stmt.execute(name="Scarlatti")
        assert stmt.status is Status.EXECUTED
        assert stmt.next()["emp_id"] == 4
        assert stmt.next() is None

    def test_placeholder_used_twice(self, employee):
        """Test that one name fills every position where it appears."""
        stmt = employee.statement(where=[{"firstname": {"like": "?:pattern"}}, {"lastname": {"like": "?:pattern"}}])
        stmt.bind({"pattern": "%ach%"})
        assert [row["emp_id"] for row in stmt.all()] == [1]

    def test_bind_record(self, employee):
        """Test that a mapping binds all of its entries; extra names are ignored."""
        stmt = employee.statement(where={"lastname": "?:lastname"}).compile()
        stmt.bind(Record(employee, lastname="Telemann", unrelated=1))
        assert [row["emp_id"] for row in stmt.all()] == [5]

    def test_unbound_placeholder(self, employee, driver):
        """Test that unbound placeholders fail before the driver is called."""
        stmt = employee.statement(where={"lastname": "?:name", "firstname": "?:first"})
        stmt.bind(first="Antonio")

        with pytest.raises(UnboundPlaceholderError) as exc_info:
            stmt.execute()
        assert exc_info.value.names == ["name"]
        assert "SELECT" in exc_info.value.sql
        assert driver.log == []

    def test_sql_shows_unbound_placeholders(self, employee):
        """Test that sql() returns placeholder names for unbound values."""
        stmt = employee.statement(where={"lastname": "?:name", "emp_id": 3}).compile()
        assert stmt.sql() == ("SELECT * FROM Employee WHERE lastname = ? AND emp_id = ?", ["?:name", 3])

    def test_custom_prefix(self, driver, populated):
        """Test a schema with another placeholder prefix."""
        schema = Schema(driver=driver, placeholder_prefix="$")
        table = schema.declare_table("Employee", None, "emp_id")
        rows = table.statement(where={"lastname": "$name"}).execute(name="Bach").all()
        assert [row["emp_id"] for row in rows] == [1]


class TestResultShapes:
    """Tests for select result shapes."""

    def test_rows(self, employee):
        """Test that rows are Records of the source."""
        rows = employee.select(order_by="emp_id")
        assert len(rows) == 5
        assert isinstance(rows[0], Record)
        assert rows[0].source is employee
        assert rows[0]["lastname"] == "Bach"

    def test_first_row(self, employee):
        """Test fetching one row."""
        row = employee.select(where={"d_birth": {"like": "1685%"}}, order_by="-d_birth", result_as="first_row")
        assert row["lastname"] == "Scarlatti"
        assert employee.select(where={"emp_id": 99}, result_as="firstrow") is None

    def test_sql(self, employee):
        """Test returning the SQL without executing it."""
        sql, binds = employee.select(columns=["emp_id"], where={"emp_id": 1}, result_as="sql")
        assert sql == "SELECT emp_id FROM Employee WHERE emp_id = ?"
        assert binds == [1]

    def test_sql_with_callbacks(self, employee):
        """Test that sql results cannot be combined with execution callbacks."""
        with pytest.raises(StatementOptionError):
            employee.select(result_as="sql", pre_exec=lambda handle: None)

    def test_subquery(self, populated):
        """Test using a statement inside another where clause."""
        employee, activity = populated.table("Employee"), populated.table("Activity")
        subquery = employee.select(columns="emp_id", where={"lastname": "Bach"}, result_as="subquery")
        assert subquery == RawSql("(SELECT emp_id FROM Employee WHERE lastname = ?)", "Bach")

        rows = activity.select(where={"emp_id": {"in": subquery}}, order_by="act_id")
        assert [row["act_id"] for row in rows] == [100, 103]

    def test_cursor(self, employee):
        """Test returning the driver handle."""
        handle = employee.select(columns="emp_id", order_by="emp_id", result_as="cursor")
        assert isinstance(handle, CursorHandle)
        assert handle.cursor.fetchone() == (1,)

    def test_cursor_with_post_materialize(self, employee):
        """Test that cursor results cannot be combined with post_materialize."""
        with pytest.raises(StatementOptionError):
            employee.select(result_as="cursor", post_materialize=lambda row: None)

    def test_keyed_map(self, employee):
        """Test rows keyed by primary key."""
        rows = employee.select(result_as="keyed_map")
        assert sorted(rows) == [1, 2, 3, 4, 5]
        assert rows[3]["lastname"] == "Vivaldi"

    def test_keyed_map_with_columns(self, populated):
        """Test rows nested by several key columns."""
        rows = populated.table("Activity").select(result_as=("keyed_map", "emp_id", "dpt_id"))
        assert rows[1][10]["act_id"] == 100
        assert rows[1][20]["act_id"] == 103
        assert rows[3][30]["act_id"] == 102

    def test_keyed_map_none_key(self, populated):
        """Test that None key values become empty strings."""
        rows = populated.table("Activity").select(result_as=("hashref", "d_end"))
        assert set(rows) == {"", "1740-01-01", "1702-01-01"}

    def test_flat_values(self, employee):
        """Test flattening rows into one list of values."""
        values = employee.select(columns=["emp_id", "lastname"], where={"emp_id": [1, 2]}, order_by="emp_id", result_as="flat")
        assert values == [1, "Bach", 2, "Handel"]

    def test_reusable_row(self, employee):
        """Test that every row is fetched into the same record."""
        stmt = employee.select(order_by="emp_id", result_as="reusable_row")
        first = stmt.next()
        first_name = first["lastname"]
        second = stmt.next()

        assert first is second
        assert first_name == "Bach"
        assert second["lastname"] == "Handel"
        with pytest.raises(StatementOptionError):
            stmt.all()

    def test_statement(self, employee):
        """Test returning the statement itself."""
        stmt = employee.select(where={"emp_id": 1}, result_as="statement")
        assert isinstance(stmt, Statement)
        assert stmt.status is Status.NEW
        assert stmt.next()["lastname"] == "Bach"

    def test_iterator(self, employee):
        """Test the row iterator."""
        iterator = employee.select(order_by="emp_id", result_as="iterator")
        assert isinstance(iterator, RowIterator)
        assert iterator.next()["emp_id"] == 1
        assert [row["emp_id"] for row in iterator] == [2, 3, 4, 5]
        assert iterator.next() is None

    def test_next_several(self, employee):
        """Test fetching several rows at once."""
        stmt = employee.statement(order_by="emp_id")
        assert [row["emp_id"] for row in stmt.next(2)] == [1, 2]
        assert stmt.row_num == 2
        assert [row["emp_id"] for row in stmt] == [3, 4, 5]

    def test_reuse_row_before_execute(self, employee):
        """Test that reuse_row needs an executed statement."""
        with pytest.raises(InvalidStateError):
            employee.statement().reuse_row()


class TestColumns:
    """Tests for column lists, aliases and handlers on select."""

    def test_alias(self, employee, driver):
        """Test column aliases."""
        rows = employee.select(columns="emp_id, lastname|name_alias", where={"emp_id": 1})
        assert rows == [{"emp_id": 1, "name_alias": "Bach"}]
        assert driver.log[-1][0] == "SELECT emp_id, lastname AS name_alias FROM Employee WHERE emp_id = ?"

    def test_alias_dialect(self, driver, populated):
        """Test the column alias template of a dialect."""
        schema = Schema(driver=driver, dialect="BasisJDBC")
        table = schema.declare_table("Employee", None, "emp_id")
        sql, _ = table.select(columns=["lastname|ln"], result_as="sql")
        assert sql == "SELECT lastname ln FROM Employee"

    def test_from_store_handler(self, populated, employee):
        """Test that from_store handlers convert fetched values, also under an alias."""
        populated.register_column_handler("Employee", "lastname", "from_store", str.upper)
        row = employee.fetch(1)
        assert row["lastname"] == "BACH"

        rows = employee.select(columns=["lastname|ln"], where={"emp_id": 2})
        assert rows[0]["ln"] == "HANDEL"

    def test_column_types_option(self, populated, employee):
        """Test column types given for one statement."""
        populated.define_column_type("Upper", from_store=str.upper)
        row = employee.select(where={"emp_id": 3}, column_types={"Upper": ["firstname"]}, result_as="first_row")
        assert row["firstname"] == "ANTONIO"
        assert row["lastname"] == "Vivaldi"

    def test_post_materialize(self, employee):
        """Test the callback run on each materialized record."""

        def add_full_name(record):
            record["full_name"] = f"{record['firstname']} {record['lastname']}"

        row = employee.select(where={"emp_id": 1}, post_materialize=add_full_name, result_as="first_row")
        assert row["full_name"] == "Johann Sebastian Bach"

    def test_exec_callbacks(self, employee):
        """Test that pre_exec and post_exec receive the handle."""
        seen = []
        employee.select(pre_exec=lambda h: seen.append(("pre", h.executed)), post_exec=lambda h: seen.append(("post", h.executed)))
        assert seen == [("pre", False), ("post", True)]

    def test_post_sql(self, employee, driver):
        """Test rewriting the generated SQL."""
        employee.select(where={"emp_id": 1}, post_sql=lambda sql, binds: (sql + " /* hint */", binds))
        assert driver.log[-1][0].endswith("/* hint */")

    def test_distinct_and_group_by(self, populated):
        """Test DISTINCT and GROUP BY options."""
        activity = populated.table("Activity")
        assert len(activity.select(columns="emp_id", distinct=True)) == 3

        rows = activity.select(columns=["emp_id", "COUNT(*) AS n"], group_by="emp_id", having={"COUNT(*)": {">": 1}})
        assert rows == [{"emp_id": 1, "n": 2}]

    def test_select_for(self, make_schema):
        """Test the FOR clause from the schema, overridden per statement."""
        schema = make_schema(select_implicitly_for="UPDATE")
        employee = schema.table("Employee")

        assert employee.select(result_as="sql")[0] == "SELECT * FROM Employee FOR UPDATE"
        assert employee.select(select_for=None, result_as="sql")[0] == "SELECT * FROM Employee"
        assert employee.select(select_for="READ ONLY", result_as="sql")[0] == "SELECT * FROM Employee FOR READ ONLY"
        assert employee.select(result_as="subquery").sql == "(SELECT * FROM Employee)"

    def test_keep_last_handle(self, driver, populated):
        """Test that the schema keeps the last prepared handle on request."""
        schema = Schema(driver=driver, keep_last_handle=True)
        table = schema.declare_table("Employee", None, "emp_id")
        stmt = table.statement()
        stmt.execute()
        assert schema.last_handle is stmt._handle


class TestFetch:
    """Tests for fetching by primary key."""

    def test_fetch(self, employee, driver):
        """Test fetching a record by key."""
        row = employee.fetch(3)
        assert row["lastname"] == "Vivaldi"
        assert driver.log[-1] == ("SELECT * FROM Employee WHERE emp_id = ?", [3])

    def test_fetch_missing(self, employee):
        """Test that a missing key gives None."""
        assert employee.fetch(123) is None

    def test_fetch_key_arity(self, employee):
        """Test error when the key has the wrong number of values."""
        with pytest.raises(KeyMismatchError):
            employee.fetch(1, 2)
        with pytest.raises(KeyMismatchError):
            employee.fetch(None)

    def test_fetch_too_many_rows(self, populated):
        """Test that several matching rows give a warning and the first row."""
        view = populated.declare_view("ActivityByEmployee", "*", "Activity", None, ["Activity"], primary_key=["emp_id"])
        with pytest.warns(TooManyRowsError):
            row = view.fetch(1)
        assert row["emp_id"] == 1

    def test_fetch_cached(self, employee, driver):
        """Test that cached fetches query once per key."""
        first = employee.fetch_cached(2)
        second = employee.fetch_cached(2)

        assert first is second
        assert len(driver.statements("SELECT")) == 1
        assert employee.fetch_cached(3)["lastname"] == "Vivaldi"


class TestPagination:
    """Tests for row counts and pages."""

    def test_row_count(self, employee, driver):
        """Test counting the rows of a statement."""
        stmt = employee.statement(where={"d_birth": {"like": "1685%"}}, order_by="emp_id", page_size=2)
        assert stmt.row_count() == 3
        assert driver.log[-1] == ("SELECT COUNT(*) FROM Employee WHERE d_birth LIKE ?", ["1685%"])

    def test_row_count_closes_cursor(self, employee, driver, monkeypatch):
        """Test that the count query's cursor is closed once read."""
        closed = []
        close = driver.close
        monkeypatch.setattr(driver, "close", lambda handle: closed.append(handle) or close(handle))

        employee.statement().row_count()
        assert [handle.sql for handle in closed] == [driver.log[-1][0]]
        assert driver.log[-1][0].startswith("SELECT COUNT(*)")

    def test_pages(self, employee):
        """Test reading the pages of an ordered statement."""
        stmt = employee.statement(order_by="emp_id", page_size=2)
        assert stmt.page_count() == 3
        assert [row["emp_id"] for row in stmt.page_rows()] == [1, 2]

        stmt.next_page()
        assert stmt.page_index == 2
        assert stmt.offset == 2
        assert [row["emp_id"] for row in stmt.page_rows()] == [3, 4]
        assert stmt.page_boundaries() == (3, 4)

        stmt.goto_page(-1)
        assert stmt.page_index == 3
        assert [row["emp_id"] for row in stmt.page_rows()] == [5]
        assert stmt.page_boundaries() == (5, 5)

        stmt.shift_pages(-2)
        assert [row["emp_id"] for row in stmt.page_rows()] == [1, 2]

    def test_page_index_option(self, employee):
        """Test starting on a given page."""
        rows = employee.select(order_by="emp_id", page_size=2, page_index=2)
        assert [row["emp_id"] for row in rows] == [3, 4]

    def test_goto_page_before_execute(self, employee):
        """Test choosing a page on a new statement."""
        stmt = employee.statement(order_by="emp_id", page_size=3)
        stmt.goto_page(2)
        assert [row["emp_id"] for row in stmt.all()] == [4, 5]

    def test_goto_same_page_does_not_reexecute(self, employee, driver):
        """Test that the statement is not executed again for the current page."""
        stmt = employee.statement(order_by="emp_id", page_size=2)
        stmt.execute()
        count = len(driver.log)
        stmt.goto_page(1)
        assert len(driver.log) == count

    def test_limit_and_offset(self, employee, driver):
        """Test explicit limit and offset options."""
        rows = employee.select(order_by="emp_id", limit=2, offset=1)
        assert [row["emp_id"] for row in rows] == [2, 3]
        assert driver.log[-1][1] == [2, 1]

    def test_offset_only(self, employee):
        """Test an offset without limit."""
        rows = employee.select(order_by="emp_id", offset=3)
        assert [row["emp_id"] for row in rows] == [4, 5]

    def test_illegal_page(self, employee):
        """Test error on page indexes before the first page."""
        stmt = employee.statement(order_by="emp_id", page_size=2)
        with pytest.raises(StatementOptionError):
            stmt.shift_pages(-1)
        with pytest.raises(StatementOptionError):
            employee.statement().goto_page(1)

    def test_row_count_unbound(self, employee):
        """Test that counting needs every placeholder bound."""
        stmt = employee.statement(where={"lastname": "?:name"})
        with pytest.raises(UnboundPlaceholderError):
            stmt.row_count()


class TestJoinStatements:
    """Tests for statements on join views."""

    def test_join_select(self, populated, driver):
        """Test selecting from a chain of roles."""
        rows = populated.join("Department", "activities", "employee").select(
            columns=["Department.dpt_name", "Employee.lastname"],
            order_by=["Department.dpt_id", "Activity.act_id"],
        )
        assert [(row["dpt_name"], row["lastname"]) for row in rows] == [
            ("Leipzig", "Bach"),
            ("London", "Handel"),
            ("London", "Bach"),
            ("Venice", "Vivaldi"),
        ]
        assert "FROM Department LEFT OUTER JOIN Activity ON Department.dpt_id = Activity.dpt_id" in driver.log[-1][0]

    def test_table_join(self, populated):
        """Test joining from a table."""
        stmt = populated.table("Employee").join("activities", "department")
        rows = stmt.select(columns=["Employee.emp_id", "dpt_name"], where={"Employee.emp_id": 5})
        assert rows == [{"emp_id": 5, "dpt_name": None}]

    def test_join_rows_inherit_handlers(self, populated):
        """Test that join rows use the handlers of the joined tables."""
        populated.register_column_handler("Department", "dpt_name", "from_store", str.upper)
        rows = populated.join("Activity", "department").select(columns=["act_id", "dpt_name"], where={"act_id": 100})
        assert rows[0]["dpt_name"] == "LEIPZIG"
