"""
auth/employees.py -- Employee record lookup (HR database).

The directory proves who someone is; the HR database says which employee
that is. After a successful directory bind the login flow resolves the
login name to an employee id and mobile number here.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import Employee

_metadata = MetaData()

_employees = Table(
    "employee_basic_info",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("login_name", String(255), nullable=False, unique=True),
    Column("employee_id", String(64), nullable=False),
    Column("mobile_number", String(32), nullable=False, server_default=""),
)


class EmployeeStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    def lookup(self, login_name: str) -> Employee | None:
        """Return the employee whose directory login name matches exactly, or None."""
        with self.engine.connect() as conn:
            row = conn.execute(_employees.select().where(_employees.c.login_name == login_name)).fetchone()
        if row is None:
            return None
        return Employee(login_name=row.login_name, employee_id=row.employee_id, mobile_number=row.mobile_number)

    def upsert(self, employee: Employee) -> None:
        """Insert or update an employee by login name. Used for seeding and by the CLI."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _employees.update()
                .where(_employees.c.login_name == employee.login_name)
                .values(employee_id=employee.employee_id, mobile_number=employee.mobile_number)
            )
            if result.rowcount == 0:
                conn.execute(
                    _employees.insert().values(
                        login_name=employee.login_name,
                        employee_id=employee.employee_id,
                        mobile_number=employee.mobile_number,
                    )
                )

    def close(self) -> None:
        self.engine.dispose()
