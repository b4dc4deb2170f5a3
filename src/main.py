import argparse
import asyncio
import getpass
import sys
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from accounts.config import ClientConfig, ServerConfig
from accounts.logs import configure_logging
from accounts.policy import PasswordPolicy
from accounts.sessions import SessionManager
from accounts.store import CredentialStore, MemoryCredentialStore, SqliteCredentialStore
from network.client import AuthClient
from network.server import AuthServer
from network.transport import connect
from pake.client import PakeClientEngine
from pake.envelope import Ksf
from pake.errors import AuthError, InvalidCredentials, UserAlreadyRegistered
from pake.server import PakeServerEngine
from pake.server_setup import ServerSetup

EXIT_OK = 0
EXIT_REJECTED = 1
EXIT_FAILURE = 2
CONFIRM_ATTEMPTS = 3

log = structlog.get_logger(__name__)

T = TypeVar("T")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Password authentication where the server never learns the password")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve_parser = subparsers.add_parser("serve", help="Run the authentication server")
    serve_parser.add_argument("--host")
    serve_parser.add_argument("--port", type=int)
    serve_parser.add_argument("--store", dest="store_path", help="SQLite credential store (in-memory if omitted)")
    serve_parser.add_argument("--setup", dest="setup_path", help="Server key file, created on first start")
    serve_parser.add_argument("--ttl", dest="session_ttl", type=float, help="Session inactivity timeout in seconds")

    subparsers.add_parser("generate", help="Print a freshly generated password")

    for name, help_text in [
        ("register", "Register a new account with a generated password"),
        ("login", "Authenticate an existing account"),
        ("delete", "Authenticate and delete an account"),
        ("rotate", "Authenticate and replace the password with a new generated one"),
    ]:
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("username")
        sub.add_argument("--url", help="Server URL, e.g. ws://127.0.0.1:6969")
        sub.add_argument("--ksf", choices=[k.value for k in Ksf], help="Key stretching function")

    return parser


def confirm_generated(policy: PasswordPolicy) -> str | None:
    """
    Show a generated password once and make the user type it back, so it
    is known to have been copied somewhere before the account exists.
    """
    password = policy.generate()
    print("Your password is:")
    print(password)
    for _ in range(CONFIRM_ATTEMPTS):
        if getpass.getpass("Type the password to confirm: ").strip() == password:
            return password
        print("You must use the provided password")
    return None


async def run_client(config: ClientConfig, path: str, action: Callable[[AuthClient], Awaitable[T]]) -> T:
    transport = await connect(config.url.rstrip("/") + path, config.timeout)
    try:
        return await action(AuthClient(PakeClientEngine(config.ksf), transport))
    finally:
        await transport.close()


def client_command(args: argparse.Namespace) -> int:
    config = ClientConfig.from_env(url=args.url, ksf=args.ksf)
    configure_logging(config.log_level)
    policy = PasswordPolicy()
    identity = args.username.encode("utf-8")
    rejected: type[AuthError] = UserAlreadyRegistered if args.command == "register" else InvalidCredentials

    if args.command == "register":
        password = confirm_generated(policy)
        if password is None:
            return EXIT_REJECTED
        action: Callable[[AuthClient], Awaitable[object]] = lambda c: c.register(identity, password)
    else:
        current = getpass.getpass("Password: ").strip()
        if not policy.validate(current):
            # cannot be a password this client ever registered
            print("Invalid credentials")
            return EXIT_REJECTED
        if args.command == "rotate":
            new_password = confirm_generated(policy)
            if new_password is None:
                return EXIT_REJECTED
            action = lambda c: c.rotate(identity, current, new_password)
        elif args.command == "delete":
            action = lambda c: c.delete(identity, current)
        else:
            action = lambda c: c.login(identity, current)

    try:
        asyncio.run(run_client(config, "/" + args.command, action))
    except AuthError as e:
        print(f"{args.command} failed: {e}")
        return EXIT_REJECTED if isinstance(e, rejected) else EXIT_FAILURE

    print(f"{args.command} succeeded for {args.username}")
    return EXIT_OK


def build_store(config: ServerConfig) -> CredentialStore:
    if config.store_path is None:
        log.warning("memory_store", detail="credentials are lost when the server stops")
        return MemoryCredentialStore()
    return SqliteCredentialStore(config.store_path)


def serve_command(args: argparse.Namespace) -> int:
    config = ServerConfig.from_env(
        host=args.host,
        port=args.port,
        store_path=args.store_path,
        setup_path=args.setup_path,
        session_ttl=args.session_ttl,
    )
    configure_logging(config.log_level)
    try:
        setup = ServerSetup.load_or_create(config.setup_path)
        store = build_store(config)
    except AuthError as e:
        log.error("startup_failed", error=str(e))
        return EXIT_FAILURE

    manager = SessionManager(
        PakeServerEngine(setup), store, ttl=config.session_ttl, purge_batch=config.purge_batch
    )
    try:
        asyncio.run(AuthServer(manager, config).serve_forever())
    except KeyboardInterrupt:
        log.info("server_shutdown", reason="keyboard_interrupt")
    finally:
        store.close()
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.command == "serve":
        return serve_command(args)
    if args.command == "generate":
        print(PasswordPolicy().generate())
        return EXIT_OK
    return client_command(args)


if __name__ == "__main__":
    sys.exit(main())
