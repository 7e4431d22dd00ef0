#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.append(str(ROOT))

from autopecas.core.config import DEV_ADMIN_EMAIL, DEV_ADMIN_PASSWORD, IS_DEV  # noqa: E402
from autopecas.core.database import SessionLocal  # noqa: E402
from autopecas.services.passwords import validate_password_strength  # noqa: E402
from autopecas.services.users import ensure_dev_admin  # noqa: E402


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cria (ou reativa) o usuário DEV inicial.")
    parser.add_argument("--email", default=DEV_ADMIN_EMAIL, help="Email do usuário DEV")
    parser.add_argument("--password", default=DEV_ADMIN_PASSWORD, help="Senha do usuário DEV")
    parser.add_argument(
        "--force",
        action="store_true",
        help="Permite executar fora do ambiente de desenvolvimento",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not IS_DEV and not args.force:
        print("Bootstrap DEV desabilitado fora de ENV=dev. Use --force.")
        return 1
    if not args.email or not args.password:
        print("Informe --email e --password (ou DEV_ADMIN_EMAIL / DEV_ADMIN_PASSWORD).")
        return 1

    try:
        validate_password_strength(args.password)
    except ValueError as exc:
        print(str(exc))
        return 1

    db = SessionLocal()
    try:
        user = ensure_dev_admin(db, email=args.email, password=args.password)
    finally:
        db.close()

    if user is None:
        print(f"Usuário DEV já existe: email={args.email.strip().lower()}")
    else:
        print(f"Usuário DEV criado: id={user.id} email={user.email}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
