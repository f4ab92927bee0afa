#!/usr/bin/env python3
"""
hrauth -- operator CLI for the directory login service.

Usage:
  python main.py serve --port 8080
  python main.py init-db
  python main.py grant hr-portal AbC123key --api login --api otp --ip 10.0.0.5
  python main.py revoke 1 --api otp_resend
  python main.py requests --limit 20
  python main.py sessions E1001
  python main.py otp-history <session id>
  python main.py employee alice E1001 9876543210
  python main.py encrypt-credential alice
  python main.py open-envelope '<base64 Data value>'

Configuration comes from the environment or .env (see core/config.py):
  SECRET_KEY, ENCRYPTION_KEY, DATABASE_URL, LDAP_URL, ...
"""

import argparse
import json
import sys
from typing import Optional

from cryptography.exceptions import InvalidTag
from sqlalchemy.exc import IntegrityError

from auth.employees import EmployeeStore
from auth.gatekeeper import AccessKeyFormatError, PolicyStore
from auth.models import Employee
from auth.otp import OtpLedger
from auth.sessions import SessionRegister
from auth.store import create_store_engine
from core.cipher import SymmetricCipher
from core.config import Settings, get_settings

ALL_API_NAMES = ("login", "otp", "otp_resend", "otp_validate", "session_timeout", "session_data")


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _cmd_init_db(args: argparse.Namespace, settings: Settings) -> int:
    """Create every table. Stores create their own schema on construction."""
    engine = create_store_engine(settings.database_url)
    SessionRegister(engine)
    OtpLedger(engine)
    EmployeeStore(create_store_engine(settings.resolved_hr_database_url))
    PolicyStore(create_store_engine(settings.resolved_policy_database_url), settings.secret_key)
    print(f"  Schema ready: {settings.database_url}")
    return 0


def _cmd_grant(args: argparse.Namespace, settings: Settings) -> int:
    policy = PolicyStore(create_store_engine(settings.resolved_policy_database_url), settings.secret_key)
    api_names = args.api or list(ALL_API_NAMES)
    try:
        vendor_id = policy.grant(args.vendor, args.access_key, api_names=api_names, ip_addresses=args.ip)
    except AccessKeyFormatError:
        print("  [!] Access key must contain only letters and digits.")
        return 2
    except IntegrityError:
        print("  [!] That access key is already registered.")
        return 1
    finally:
        policy.close()
    print(f"  Vendor {args.vendor!r} registered (id={vendor_id}): {', '.join(api_names)} from {', '.join(args.ip)}")
    return 0


def _cmd_revoke(args: argparse.Namespace, settings: Settings) -> int:
    """Deactivate (or with --restore, reactivate) a vendor, or some of its APIs and IPs."""
    policy = PolicyStore(create_store_engine(settings.resolved_policy_database_url), settings.secret_key)
    active = args.restore
    missing: list[str] = []
    try:
        if not args.api and not args.ip:
            if not policy.set_vendor_active(args.vendor_id, active):
                missing.append(f"vendor {args.vendor_id}")
        for name in args.api or []:
            if not policy.set_api_active(args.vendor_id, name, active):
                missing.append(f"api {name}")
        for ip in args.ip or []:
            if not policy.set_ip_active(args.vendor_id, ip, active):
                missing.append(f"ip {ip}")
    finally:
        policy.close()
    if missing:
        print(f"  [!] Not registered for vendor {args.vendor_id}: {', '.join(missing)}")
        return 1
    print(f"  Vendor {args.vendor_id} {'restored' if active else 'revoked'}")
    return 0


def _cmd_requests(args: argparse.Namespace, settings: Settings) -> int:
    """Print recent gatekeeper decisions, newest first."""
    policy = PolicyStore(create_store_engine(settings.resolved_policy_database_url), settings.secret_key)
    try:
        rows = policy.request_log(limit=args.limit)
    finally:
        policy.close()
    for row in rows:
        error = f" {row['error']}" if row["error"] else ""
        print(f"  {row['request_on']}  {row['ip_address']:<15}  {row['api_name']:<16}  {row['status']}{error}")
    return 0


def _cmd_sessions(args: argparse.Namespace, settings: Settings) -> int:
    """Print an employee's login history, oldest first."""
    register = SessionRegister(create_store_engine(settings.database_url))
    try:
        records = register.sessions_for(args.employee_id)
    finally:
        register.close()
    if not records:
        print(f"  No sessions for {args.employee_id}")
        return 1
    for s in records:
        state = "active" if s.is_active else ("idle-timeout" if s.idle_timeout else "closed")
        print(f"  {s.session_id}  {s.department:<8}  {state:<12}  {s.login_date}  {s.logout_date or '-'}")
    return 0


def _cmd_otp_history(args: argparse.Namespace, settings: Settings) -> int:
    """Print every code recorded for a session, oldest first. The codes themselves are not shown."""
    ledger = OtpLedger(create_store_engine(settings.database_url))
    try:
        records = ledger.history(args.session_id)
    finally:
        ledger.close()
    if not records:
        print(f"  No OTP records for {args.session_id}")
        return 1
    for r in records:
        state = "verified" if r.status == 1 else "pending"
        print(f"  #{r.resend_count}  {r.username}  {r.mobile_no}  sent {r.sent_on}  till {r.valid_till}  {state}")
    return 0


def _cmd_employee(args: argparse.Namespace, settings: Settings) -> int:
    store = EmployeeStore(create_store_engine(settings.resolved_hr_database_url))
    try:
        store.upsert(Employee(login_name=args.login_name, employee_id=args.employee_id, mobile_number=args.mobile))
    finally:
        store.close()
    print(f"  Employee {args.login_name!r} -> {args.employee_id}")
    return 0


def _cmd_encrypt_credential(args: argparse.Namespace, settings: Settings) -> int:
    """Print the hex ciphertext a client would send for this value."""
    cipher = SymmetricCipher(settings.encryption_key)
    print(cipher.encrypt_block(args.value.encode("utf-8")).hex())
    return 0


def _cmd_open_envelope(args: argparse.Namespace, settings: Settings) -> int:
    cipher = SymmetricCipher(settings.encryption_key)
    try:
        plaintext = cipher.open(args.data)
    except (InvalidTag, ValueError):
        print("  [!] Envelope could not be opened with the configured ENCRYPTION_KEY.")
        return 1
    print(json.dumps(json.loads(plaintext), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hrauth",
        description="Operator tools for the hrauth login service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8080)
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")
    serve.set_defaults(handler=_cmd_serve)

    init_db = sub.add_parser("init-db", help="Create all tables in the configured databases")
    init_db.set_defaults(handler=_cmd_init_db)

    grant = sub.add_parser("grant", help="Register a client access key")
    grant.add_argument("vendor", help="Client application name")
    grant.add_argument("access_key", help="Pre-shared access key (letters and digits)")
    grant.add_argument(
        "--api",
        action="append",
        choices=ALL_API_NAMES,
        metavar="NAME",
        help="API name to allow; repeat for several (default: all)",
    )
    grant.add_argument("--ip", action="append", required=True, metavar="ADDR", help="Client IP to allow; repeatable")
    grant.set_defaults(handler=_cmd_grant)

    revoke = sub.add_parser("revoke", help="Deactivate a vendor, or some of its API names and IPs")
    revoke.add_argument("vendor_id", type=int)
    revoke.add_argument("--api", action="append", choices=ALL_API_NAMES, metavar="NAME", help="API name; repeatable")
    revoke.add_argument("--ip", action="append", metavar="ADDR", help="Client IP; repeatable")
    revoke.add_argument("--restore", action="store_true", help="Reactivate instead of deactivating")
    revoke.set_defaults(handler=_cmd_revoke)

    requests = sub.add_parser("requests", help="Show recent access-key decisions")
    requests.add_argument("--limit", type=int, default=50)
    requests.set_defaults(handler=_cmd_requests)

    sessions = sub.add_parser("sessions", help="Show an employee's login history")
    sessions.add_argument("employee_id")
    sessions.set_defaults(handler=_cmd_sessions)

    otp_history = sub.add_parser("otp-history", help="Show the OTP records of a session")
    otp_history.add_argument("session_id")
    otp_history.set_defaults(handler=_cmd_otp_history)

    employee = sub.add_parser("employee", help="Insert or update an employee record")
    employee.add_argument("login_name")
    employee.add_argument("employee_id")
    employee.add_argument("mobile")
    employee.set_defaults(handler=_cmd_employee)

    encrypt = sub.add_parser("encrypt-credential", help="Encrypt a username or password the way clients do")
    encrypt.add_argument("value")
    encrypt.set_defaults(handler=_cmd_encrypt_credential)

    envelope = sub.add_parser("open-envelope", help="Decrypt the Data field of a response")
    envelope.add_argument("data")
    envelope.set_defaults(handler=_cmd_open_envelope)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "handler", None):
        parser.print_help()
        return 0
    return args.handler(args, get_settings())


if __name__ == "__main__":
    sys.exit(main())
