"""
Authorization Engine - Command Line

Key management, token issuance/inspection and policy linting.
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from config import AuthzConfig, load_config

from .core.auth.errors import InvalidTokenError, TokenRejectedError
from .core.auth.resource_policy import load_policies, validate_policy
from .core.auth.tokens import (
    TokenIssuer,
    TokenVerifier,
    generate_key_pair,
    load_private_key,
    load_public_key,
    serialize_private_key,
    serialize_public_key,
)
from .data.models.authz import GLOBAL_SCOPE_TYPE, Scope

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_scope(value: Optional[str]) -> Optional[Scope]:
    """Parse 'global' or 'type:id'."""
    if not value:
        return None
    if value == GLOBAL_SCOPE_TYPE:
        return Scope.global_()
    scope_type, sep, scope_id = value.partition(":")
    if not sep or not scope_type or not scope_id:
        raise argparse.ArgumentTypeError(f"Scope must be 'global' or 'type:id', got '{value}'")
    return Scope(type=scope_type, id=scope_id)


def parse_context(pairs: Optional[List[str]]) -> Dict[str, str]:
    context: Dict[str, str] = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise argparse.ArgumentTypeError(f"Context entries must be key=value, got '{pair}'")
        context[key] = value
    return context


def _key_path(explicit: Optional[str], configured: Optional[str], config: AuthzConfig, kind: str) -> Path:
    if explicit:
        return Path(explicit)
    if configured:
        return config.resolve_path(configured)
    raise SystemExit(f"No {kind} key given (use --key or set it in authz.yaml)")


# =========================================================================
# COMMANDS
# =========================================================================

def cmd_keygen(args, config: AuthzConfig) -> int:
    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    private_path = out_dir / f"{args.name}.pem"
    public_path = out_dir / f"{args.name}.pub.pem"
    if private_path.exists() and not args.force:
        print(f"Refusing to overwrite {private_path} (use --force)", file=sys.stderr)
        return 1

    private_key, public_key = generate_key_pair()
    private_path.write_bytes(serialize_private_key(private_key))
    private_path.chmod(0o600)
    public_path.write_bytes(serialize_public_key(public_key))

    logger.info(f"Wrote Ed25519 key pair to {private_path} and {public_path}")
    print(private_path)
    print(public_path)
    return 0


def cmd_issue(args, config: AuthzConfig) -> int:
    key = load_private_key(_key_path(args.key, config.tokens.private_key_path, config, "private"))
    issuer = TokenIssuer(
        key,
        audience=args.aud or config.tokens.audience,
        ttl=args.ttl if args.ttl is not None else config.tokens.ttl_seconds,
        authz_version=args.authz_version,
    )
    print(issuer.issue(args.sub, args.sid, scope=parse_scope(args.scope), context=parse_context(args.ctx)))
    return 0


def cmd_verify(args, config: AuthzConfig) -> int:
    key = load_public_key(_key_path(args.key, config.tokens.public_key_path, config, "public"))
    min_version = args.min_authz_version
    if min_version is None:
        min_version = config.tokens.min_authz_version

    verifier = TokenVerifier(key, audience=args.aud or config.tokens.audience, min_authz_version=min_version)

    try:
        claims = verifier.verify(args.token, required_scope=parse_scope(args.scope))
    except TokenRejectedError as e:
        print(json.dumps({"valid": False, "errors": [err.to_dict() for err in e.errors]}, indent=2))
        return 1
    except InvalidTokenError as e:
        print(json.dumps({"valid": False, "errors": [{"field": "token", "code": "invalid", "message": str(e)}]}, indent=2))
        return 1

    print(json.dumps({"valid": True, "claims": claims.model_dump(by_alias=True)}, indent=2))
    return 0


def cmd_lint_policy(args, config: AuthzConfig) -> int:
    path = args.path or config.policies_path
    if not path:
        print("No policy file given", file=sys.stderr)
        return 1

    policies = load_policies(path if args.path else config.resolve_path(path))

    failed = 0
    for policy in policies:
        errors = validate_policy(policy)
        if not errors.has_errors():
            print(f"OK    {policy.id} ({policy.type} v{policy.version})")
            continue
        failed += 1
        print(f"FAIL  {policy.id or '<no id>'} ({policy.type} v{policy.version})")
        for error in errors:
            print(f"        {error.field}: {error.code} - {error.message}")

    return 1 if failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scopeguard",
        description="Scoped authorization engine tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Generate a signing key pair
  python -m scopeguard keygen --out ./keys

  # Issue a token for the orders service, scoped to team 123
  python -m scopeguard issue --key keys/authz.pem --sub u1 --sid s1 --aud orders --scope team:123

  # Verify it
  python -m scopeguard verify --key keys/authz.pub.pem --aud orders <token>

  # Check policy documents
  python -m scopeguard lint-policy config/policies.yaml
"""
    )
    parser.add_argument('--config', '-c', help='Path to authz.yaml')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    sub = parser.add_subparsers(dest='command', required=True)

    keygen = sub.add_parser('keygen', help='Generate an Ed25519 key pair')
    keygen.add_argument('--out', default='./keys', help='Output directory (default: ./keys)')
    keygen.add_argument('--name', default='authz', help='File name stem (default: authz)')
    keygen.add_argument('--force', action='store_true', help='Overwrite existing keys')
    keygen.set_defaults(func=cmd_keygen)

    issue = sub.add_parser('issue', help='Issue a capability token')
    issue.add_argument('--key', help='Private key PEM')
    issue.add_argument('--sub', required=True, help='Subject (user id)')
    issue.add_argument('--sid', required=True, help='Session id')
    issue.add_argument('--aud', help='Audience (default: tokens.audience)')
    issue.add_argument('--ttl', type=int, help='Lifetime in seconds (default: tokens.ttl_seconds)')
    issue.add_argument('--scope', help="'global' or 'type:id'")
    issue.add_argument('--ctx', action='append', metavar='KEY=VALUE', help='Extra context entry')
    issue.add_argument('--authz-version', type=int, default=1, help='Authorization version (default: 1)')
    issue.set_defaults(func=cmd_issue)

    verify = sub.add_parser('verify', help='Verify a capability token')
    verify.add_argument('token')
    verify.add_argument('--key', help='Public key PEM')
    verify.add_argument('--aud', help='Expected audience (default: tokens.audience)')
    verify.add_argument('--scope', help="Required scope: 'global' or 'type:id'")
    verify.add_argument('--min-authz-version', type=int, help='Minimum authorization version')
    verify.set_defaults(func=cmd_verify)

    lint = sub.add_parser('lint-policy', help='Validate resource policy documents')
    lint.add_argument('path', nargs='?', help='Policy file (default: policies_path)')
    lint.set_defaults(func=cmd_lint_policy)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    config = load_config(args.config)
    logging.getLogger().setLevel(logging.DEBUG if args.debug else config.logging.level)

    try:
        return args.func(args, config)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))
    except (OSError, ValueError) as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


def run():
    """Entry point for console script"""
    sys.exit(main())


if __name__ == '__main__':
    run()
