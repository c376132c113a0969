#!/usr/bin/env python3
"""
Generate the RSA key pair used to sign access and ID tokens.

Writes keys/private.pem (PKCS#8, mode 0600) and keys/public.pem (SPKI).
Point OAUTH_PRIVATE_KEY_PATH at the private key, or paste it into
OAUTH_PRIVATE_KEY. When replacing a key, add the old public key to
OAUTH_PREVIOUS_PUBLIC_KEYS so tokens already issued keep verifying.

Usage:
  python -m src.scripts.generate_keys
  python -m src.scripts.generate_keys --out-dir keys --key-size 4096 --force
"""

import argparse
import os
import sys
from pathlib import Path

from cryptography.hazmat.primitives import serialization

from src.common.keys import SigningKey, generate_private_key_pem


def write_key_pair(out_dir: Path, key_size: int = 2048, force: bool = False) -> SigningKey:
    private_path = out_dir / "private.pem"
    public_path = out_dir / "public.pem"

    if private_path.exists() and not force:
        raise FileExistsError(f"{private_path} exists; use --force to overwrite")

    out_dir.mkdir(parents=True, exist_ok=True)

    private_pem = generate_private_key_pem(key_size)
    signing_key = SigningKey.from_pem(private_pem)
    public_pem = signing_key.private_key.public_key().public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )

    # Owner-only from the moment the file exists; fchmod covers --force on an existing file
    fd = os.open(private_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, "w") as fh:
        fh.write(private_pem)
    public_path.write_bytes(public_pem)
    return signing_key


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the OAuth signing key pair")
    parser.add_argument("--out-dir", default="keys", help="target directory (default: keys)")
    parser.add_argument("--key-size", type=int, default=2048, choices=(2048, 3072, 4096))
    parser.add_argument("--force", action="store_true", help="overwrite an existing key pair")
    args = parser.parse_args(argv)

    try:
        signing_key = write_key_pair(Path(args.out_dir), args.key_size, args.force)
    except FileExistsError as exc:
        print(str(exc), file=sys.stderr)
        print("Replacing the key invalidates every token signed with it.", file=sys.stderr)
        return 1

    print(f"Wrote {args.out_dir}/private.pem and {args.out_dir}/public.pem")
    print(f"kid: {signing_key.kid}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
