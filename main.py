#!/usr/bin/env python3
"""
OTP Vault - encrypted TOTP/HOTP authenticator
Main entry point for the command line front end.
"""
import asyncio
import getpass
import logging
import argparse
import sys

from config import Settings
from errors import VaultError, ParseError
from models import OtpCredential, OtpType
from session import SessionState
from utils import format_credential_list, format_codes, mask_secret
from vault import VaultContext

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings):
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=getattr(logging, settings.log_level, logging.INFO),
        handlers=[
            logging.FileHandler(settings.log_file),
            logging.StreamHandler()
        ]
    )


def unlock(vault: VaultContext) -> bool:
    """Prompt for the vault password when one is set."""
    if not vault.auth.is_password_set():
        return True
    password = getpass.getpass("Vault password: ")
    if not vault.auth.login(password):
        print("❌ Invalid password.")
        return False
    return True


def cmd_init_db(vault, args):
    print("Database initialized.")
    return 0


def cmd_set_password(vault, args):
    password = getpass.getpass("New vault password: ")
    if getpass.getpass("Confirm vault password: ") != password:
        print("❌ Passwords don't match.")
        return 1
    if vault.auth.is_password_set():
        old_password = getpass.getpass("Current vault password: ")
        if not vault.change_password(old_password, password):
            print("❌ Invalid password.")
            return 1
        print("✅ Vault password changed.")
    else:
        migrated = vault.setup_password(password)
        print(f"✅ Vault password set. {migrated} credential(s) encrypted.")
    return 0


def cmd_add(vault, args):
    if not unlock(vault):
        return 1
    if args.uri:
        credential = vault.add_from_uri(args.uri, prefix=args.prefix, postfix=args.postfix)
    else:
        if not args.account or not args.secret:
            print("Either --uri or both --account and --secret are required.")
            return 2
        try:
            credential = OtpCredential(
                account_name=args.account,
                secret=args.secret,
                issuer=args.issuer,
                type=OtpType.HOTP if args.hotp else OtpType.TOTP,
                algorithm=args.algorithm.upper(),
                digits=args.digits,
                period=args.period,
                counter=args.counter,
                prefix=args.prefix,
                postfix=args.postfix,
            )
        except ValueError as e:
            print(f"❌ {e}")
            return 2
        vault.repository.save(credential)
    if not credential.has_standard_digits:
        print(f"⚠️  Unusual number of digits: {credential.digits}")
    print(f"✅ Added {credential.account_name} ({credential.id}), secret {mask_secret(credential.secret)}")
    return 0


def cmd_list(vault, args):
    print(format_credential_list(vault.repository.list_public(args.search)))
    return 0


def cmd_codes(vault, args):
    if not unlock(vault):
        return 1
    if not args.watch:
        print(format_codes(vault.current_codes()))
        return 0

    # Decrypt once; each tick only regenerates codes.
    credentials = vault.repository.get_all()

    def show(remaining):
        if vault.auth.state == SessionState.LOCKED:
            print("\n🔒 Session expired.")
            return
        print(format_codes(vault.codes_for(credentials)), end="\n\n", flush=True)

    try:
        asyncio.run(vault.countdown_task(credentials, show, interval=args.interval))
    except KeyboardInterrupt:
        print("\nBye.")
    return 0


def cmd_next(vault, args):
    if not unlock(vault):
        return 1
    print(vault.next_hotp_code(args.id))
    return 0


def cmd_verify(vault, args):
    if not unlock(vault):
        return 1
    ok = vault.verify_code(args.id, args.code, window=args.window)
    print("✅ Valid" if ok else "❌ Invalid")
    return 0 if ok else 1


def cmd_uri(vault, args):
    if not unlock(vault):
        return 1
    print(vault.export_uri(args.id))
    return 0


def cmd_remove(vault, args):
    if not unlock(vault):
        return 1
    if vault.repository.remove(args.id):
        print("✅ Removed.")
        return 0
    print("Credential not found.")
    return 1


def cmd_export(vault, args):
    if not unlock(vault):
        return 1
    with open(args.path, "w", encoding="utf-8") as f:
        f.write(vault.repository.export_json())
    print(f"⚠️  Exported cleartext secrets to {args.path}. Keep this file safe.")
    return 0


def cmd_import(vault, args):
    if not unlock(vault):
        return 1
    with open(args.path, "r", encoding="utf-8") as f:
        count = vault.repository.import_json(f.read(), replace=args.replace)
    print(f"✅ Imported {count} credential(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='OTP Vault - encrypted TOTP/HOTP authenticator')
    sub = parser.add_subparsers(dest='command', required=True)

    p = sub.add_parser('init-db', help='Initialize the database')
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser('set-password', help='Set or change the vault password')
    p.set_defaults(func=cmd_set_password)

    p = sub.add_parser('add', help='Add a credential from an otpauth:// URI or by hand')
    p.add_argument('--uri')
    p.add_argument('--account')
    p.add_argument('--secret')
    p.add_argument('--issuer')
    p.add_argument('--hotp', action='store_true', help='Counter-based instead of time-based')
    p.add_argument('--algorithm', default='SHA1')
    p.add_argument('--digits', type=int, default=6)
    p.add_argument('--period', type=int, default=30)
    p.add_argument('--counter', type=int, default=0)
    p.add_argument('--prefix', default='')
    p.add_argument('--postfix', default='')
    p.set_defaults(func=cmd_add)

    p = sub.add_parser('list', help='List credentials (no password needed)')
    p.add_argument('--search')
    p.set_defaults(func=cmd_list)

    p = sub.add_parser('codes', help='Show current codes')
    p.add_argument('--watch', action='store_true', help='Refresh until interrupted')
    p.add_argument('--interval', type=float, default=1.0)
    p.set_defaults(func=cmd_codes)

    p = sub.add_parser('next', help='Generate the next HOTP code')
    p.add_argument('id')
    p.set_defaults(func=cmd_next)

    p = sub.add_parser('verify', help='Check a code against a credential')
    p.add_argument('id')
    p.add_argument('code')
    p.add_argument('--window', type=int, default=1)
    p.set_defaults(func=cmd_verify)

    p = sub.add_parser('uri', help='Print the otpauth:// URI of a credential')
    p.add_argument('id')
    p.set_defaults(func=cmd_uri)

    p = sub.add_parser('remove', help='Remove a credential')
    p.add_argument('id')
    p.set_defaults(func=cmd_remove)

    p = sub.add_parser('export', help='Export credentials to a JSON file (cleartext)')
    p.add_argument('path')
    p.set_defaults(func=cmd_export)

    p = sub.add_parser('import', help='Import credentials from a JSON file')
    p.add_argument('path')
    p.add_argument('--replace', action='store_true', help='Replace instead of merging')
    p.set_defaults(func=cmd_import)

    return parser


def main(argv=None) -> int:
    """Main function to run the CLI."""
    args = build_parser().parse_args(argv)

    # Get configuration from environment
    try:
        settings = Settings.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings)
    vault = VaultContext.from_settings(settings)

    try:
        return args.func(vault, args)
    except ParseError as e:
        print(f"❌ Invalid otpauth URI: {e}")
        return 1
    except VaultError as e:
        logger.error("%s failed: %s", args.command, e)
        print(f"❌ {e}")
        return 1
    finally:
        vault.close()


if __name__ == '__main__':
    sys.exit(main())
