#!/usr/bin/env python3
"""
HybridSeal Command Line Interface

Usage:
    hybridseal keygen --name <name> --email <email> --output <file> [--public <file>]
    hybridseal fingerprint --cert <file>
    hybridseal seal --to <cert> [--to <cert> ...] --input <file> --output <file> [--from <identity>]
    hybridseal open --message <file> --identity <file> --output <file> [--from <cert>]
    hybridseal sign --identity <file> --input <file> --output <file>
    hybridseal verify --message <file> --cert <file>

Passphrases are read from the environment variable named by
--passphrase-env, or prompted for when a key is protected.
"""

import argparse
import getpass
import json
import os
import sys
from typing import List, Optional

from . import config
from .errors import HybridSealError
from .logging_config import configure_logging


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def read_input(path: Optional[str]) -> bytes:
    if path is None or path == "-":
        return sys.stdin.buffer.read()
    with open(path, 'rb') as f:
        return f.read()


def write_output(data: bytes, path: Optional[str]):
    if path is None or path == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.buffer.flush()
        return
    with open(path, 'wb') as f:
        f.write(data)


def load_certificate(path: str):
    """Load a public certificate; an identity file works too."""
    from .identity import PublicKeyCertificate

    data = load_json(path)
    if "certificate" in data:
        data = data["certificate"]
    return PublicKeyCertificate.from_dict(data)


def load_identity(path: str):
    from .identity import Identity
    return Identity.from_dict(load_json(path))


def resolve_passphrase(args, prompt: str, needed: bool = True) -> Optional[str]:
    """Passphrase from --passphrase-env, else a prompt. None when not needed."""
    if not needed:
        return None
    if args.passphrase_env:
        value = os.environ.get(args.passphrase_env)
        if value is None:
            raise ValueError(f"Environment variable {args.passphrase_env} is not set")
        return value
    return getpass.getpass(prompt)


def cmd_keygen(args):
    """Generate a new identity."""
    from .identity import IdentityService, PrincipalInfo

    passphrase = resolve_passphrase(args, "New passphrase: ", needed=not args.no_passphrase)
    service = IdentityService()
    identity = service.generate_identity(
        PrincipalInfo(name=args.name or "", email=args.email),
        passphrase=passphrase,
    )

    save_json(identity.to_dict(), args.output)
    print(f"Identity saved to: {args.output}")
    if args.public:
        save_json(identity.certificate.to_dict(), args.public)
        print(f"Certificate saved to: {args.public}")

    print(f"\nFingerprint: {identity.fingerprint}", file=sys.stderr)
    print(f"User ID: {identity.certificate.primary_user_id}", file=sys.stderr)
    return 0


def cmd_fingerprint(args):
    """Print a certificate's fingerprint after checking it."""
    certificate = load_certificate(args.cert)
    certificate.validate()
    print(certificate.fingerprint)
    for principal in certificate.user_ids:
        print(f"  {principal.user_id()}")
    return 0


def cmd_seal(args):
    """Seal a file for one or more recipients."""
    from .messages import SignatureMode, TransportMode
    from .protocol import EnvelopeProtocol

    recipients = [load_certificate(path) for path in args.to]
    sender = None
    if args.sender:
        identity = load_identity(args.sender)
        sender = (identity, resolve_passphrase(args, "Passphrase: ", needed=identity.protected))

    protocol = EnvelopeProtocol()
    sealed, envelopes = protocol.seal_for_recipients(
        read_input(args.input),
        recipients,
        sender=sender,
        transport=TransportMode(args.transport),
        signature_mode=SignatureMode.DETACHED if args.detached else SignatureMode.EMBEDDED,
        algorithm=args.algorithm,
    )

    save_json({
        "message": sealed.to_dict(),
        "envelopes": {fp: env.to_dict() for fp, env in envelopes.items()},
    }, args.output)
    print(f"Sealed message saved to: {args.output}")
    print(f"\n✓ Sealed for {len(recipients)} recipient(s)", file=sys.stderr)
    return 0


def cmd_open(args):
    """Open a sealed message and optionally verify its sender."""
    from .errors import UnwrapFailure
    from .messages import Envelope, SealedMessage
    from .protocol import EnvelopeProtocol

    data = load_json(args.message)
    sealed = SealedMessage.from_dict(data["message"])
    identity = load_identity(args.identity)
    sender_certificate = load_certificate(args.sender) if args.sender else None

    envelope = None
    envelope_data = data.get("envelopes", {}).get(identity.fingerprint)
    if envelope_data is not None:
        envelope = Envelope.from_dict(envelope_data)
    elif data.get("envelopes"):
        raise UnwrapFailure("Message has no envelope for this identity")

    passphrase = resolve_passphrase(args, "Passphrase: ", needed=identity.protected)
    opened = EnvelopeProtocol().open(sealed, envelope, identity, passphrase, sender_certificate)

    write_output(opened.plaintext, args.output)
    if opened.verified:
        print(f"\n✓ Signature VERIFIED ({opened.signer_fingerprint})", file=sys.stderr)
    else:
        print("\n! Signature NOT_ATTEMPTED (no sender certificate)", file=sys.stderr)
    return 0


def cmd_sign(args):
    """Create a cleartext signed message."""
    from .protocol import EnvelopeProtocol

    identity = load_identity(args.identity)
    passphrase = resolve_passphrase(args, "Passphrase: ", needed=identity.protected)
    signed = EnvelopeProtocol().sign_message(read_input(args.input), (identity, passphrase))

    save_json(signed.to_dict(), args.output)
    print(f"Signed message saved to: {args.output}")
    return 0


def cmd_verify(args):
    """Verify a cleartext signed message."""
    from .signing import SignatureEngine, SignedMessage

    try:
        signed = SignedMessage.from_dict(load_json(args.message))
    except (KeyError, TypeError, ValueError) as e:
        print(f"✗ INVALID: malformed signed message ({e})")
        return 1

    result = SignatureEngine().check(signed.payload, signed.signature, load_certificate(args.cert))
    if result.is_verified():
        print(f"✓ {result.outcome.value}")
        if args.output:
            write_output(signed.payload, args.output)
        return 0

    print(f"✗ {result.outcome.value}: {result.reason}")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hybridseal",
        description="HybridSeal envelope encryption CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  hybridseal keygen -n Alice -e alice@example.com -o alice.json -p alice.pub.json
  hybridseal seal -t bob.pub.json -f alice.json -i note.txt -o note.sealed.json
  hybridseal open -m note.sealed.json -I bob.json -f alice.pub.json -o note.txt
  hybridseal sign -I alice.json -i note.txt -o note.signed.json
  hybridseal verify -m note.signed.json -c alice.pub.json
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def passphrase_option(p):
        p.add_argument("--passphrase-env", help="Environment variable holding the passphrase")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate an identity")
    keygen_parser.add_argument("-n", "--name", help="Display name")
    keygen_parser.add_argument("-e", "--email", required=True, help="Email address")
    keygen_parser.add_argument("-o", "--output", required=True, help="Output file for the identity")
    keygen_parser.add_argument("-p", "--public", help="Output file for the public certificate")
    keygen_parser.add_argument("--no-passphrase", action="store_true", help="Store the private key unprotected")
    passphrase_option(keygen_parser)

    # fingerprint
    fp_parser = subparsers.add_parser("fingerprint", help="Show a certificate fingerprint")
    fp_parser.add_argument("-c", "--cert", required=True, help="Certificate or identity JSON file")

    # seal
    seal_parser = subparsers.add_parser("seal", help="Encrypt for recipients")
    seal_parser.add_argument("-t", "--to", action="append", required=True, help="Recipient certificate (repeatable)")
    seal_parser.add_argument("-f", "--from", dest="sender", help="Sender identity file; signs the message")
    seal_parser.add_argument("-i", "--input", help="Plaintext file (default: stdin)")
    seal_parser.add_argument("-o", "--output", required=True, help="Output file for the sealed message")
    seal_parser.add_argument(
        "--transport",
        default="wrapped-key",
        choices=["wrapped-key", "wrapped-password", "asymmetric-only"],
        help="Content key transport"
    )
    seal_parser.add_argument("--algorithm", choices=list(config.CONTENT_CIPHERS), help="Content cipher")
    seal_parser.add_argument("--detached", action="store_true", help="Carry the signature outside the ciphertext")
    passphrase_option(seal_parser)

    # open
    open_parser = subparsers.add_parser("open", help="Decrypt a sealed message")
    open_parser.add_argument("-m", "--message", required=True, help="Sealed message JSON file")
    open_parser.add_argument("-I", "--identity", required=True, help="Recipient identity file")
    open_parser.add_argument("-f", "--from", dest="sender", help="Expected sender certificate")
    open_parser.add_argument("-o", "--output", help="Output file for the plaintext (default: stdout)")
    passphrase_option(open_parser)

    # sign
    sign_parser = subparsers.add_parser("sign", help="Sign without encrypting")
    sign_parser.add_argument("-I", "--identity", required=True, help="Signer identity file")
    sign_parser.add_argument("-i", "--input", help="Payload file (default: stdin)")
    sign_parser.add_argument("-o", "--output", required=True, help="Output file for the signed message")
    passphrase_option(sign_parser)

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a signed message")
    verify_parser.add_argument("-m", "--message", required=True, help="Signed message JSON file")
    verify_parser.add_argument("-c", "--cert", required=True, help="Signer certificate")
    verify_parser.add_argument("-o", "--output", help="Write the payload here when verified")

    return parser


COMMANDS = {
    "keygen": cmd_keygen,
    "fingerprint": cmd_fingerprint,
    "seal": cmd_seal,
    "open": cmd_open,
    "sign": cmd_sign,
    "verify": cmd_verify,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    handler = COMMANDS.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    invalid = [name for name, ok in config.validate_config().items() if not ok]
    if invalid:
        print(f"✗ Invalid configuration: {', '.join(invalid)}", file=sys.stderr)
        return 1

    level = "DEBUG" if config.is_debug() else config.LOG_LEVEL
    configure_logging(level, config.LOG_JSON, config.LOG_FILE)

    try:
        return handler(args)
    except HybridSealError as e:
        print(f"✗ {type(e).__name__}: {e}", file=sys.stderr)
        return 1
    except (OSError, KeyError, ValueError) as e:
        print(f"✗ Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
