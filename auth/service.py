"""
auth/service.py -- Login flow orchestration.

    decode_credentials -> DirectoryVerifier -> EmployeeStore -> SessionRegister -> TokenIssuer

The service returns one of two result types: LoginSuccess or LoginRejected
(credential category: decryption failure or directory mismatch). Everything
else is raised:

  CredentialFormatError       -- malformed input, a 400 at the HTTP layer
  DirectoryUnavailableError   -- directory down or service bind refused
  EmployeeRecordMissingError  -- directory identity with no HR record
  sqlalchemy errors           -- store failures

The HTTP layer turns the last three into a generic 500.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging

from auth.credentials import CredentialDecryptionError, decode_credentials
from auth.directory import DirectoryVerifier
from auth.employees import EmployeeStore
from auth.models import LoginRejected, LoginSuccess
from auth.sessions import SessionRegister
from auth.tokens import TokenIssuer
from core.cipher import SymmetricCipher

logger = logging.getLogger("hrauth.login")


class EmployeeRecordMissingError(LookupError):
    """The directory verified a login name that has no employee record."""


class LoginService:
    def __init__(
        self,
        cipher: SymmetricCipher,
        directory: DirectoryVerifier,
        employees: EmployeeStore,
        sessions: SessionRegister,
        tokens: TokenIssuer,
    ) -> None:
        self.cipher = cipher
        self.directory = directory
        self.employees = employees
        self.sessions = sessions
        self.tokens = tokens

    def login(self, encrypted_username: str, encrypted_password: str) -> LoginSuccess | LoginRejected:
        """Authenticate hex-encoded client ciphertext.

        Raises CredentialFormatError before anything is decrypted if either
        field is malformed.
        """
        try:
            credentials = decode_credentials(encrypted_username, encrypted_password, self.cipher)
        except CredentialDecryptionError as exc:
            logger.warning("Credential decryption failed for field %s", exc.field)
            return LoginRejected(error=exc.message, username="Invalid")

        match = self.directory.verify(credentials.username, credentials.password)
        if match is None:
            return LoginRejected(username=credentials.username)

        employee = self.employees.lookup(credentials.username)
        if employee is None:
            raise EmployeeRecordMissingError(f"No employee record for login name {credentials.username!r}")

        session_id = self.sessions.open_session(employee.employee_id, credentials.username, match.scope)
        token = self.tokens.issue(session_id, credentials.username, employee.employee_id)
        return LoginSuccess(
            user_id=session_id,
            username=credentials.username,
            employee_id=employee.employee_id,
            mobile_number=employee.mobile_number,
            token=token,
            scope=match.scope,
        )
